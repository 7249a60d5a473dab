import pytest
from eth_utils import encode_hex, keccak
from sqlalchemy import select, func

from onchain_sync.pipeline.dedup import DedupStore
from onchain_sync.pipeline.errors import UnknownEventSignature
from onchain_sync.pipeline.router import EventHandler, EventRouter, POOL_DOMAIN
from onchain_sync.sources.evm import abi
from onchain_sync.storage.models.processing_record import ProcessingRecord, PENDING, PROCESSED, REVERSED
from onchain_sync.tests.factories import make_event, pool_created, tier_committed, removed


def _set_status(session_factory, event, status):
    with session_factory() as db:
        record = db.execute(
            select(ProcessingRecord).where(ProcessingRecord.transaction_hash == event.transaction_hash)
        ).scalar_one()
        record.status = status
        db.commit()


# ── dedup ────────────────────────────────────────────────────────────
def test_claim_has_a_single_winner(session_factory):
    store_a = DedupStore(session_factory)
    store_b = DedupStore(session_factory)
    event = tier_committed(100)

    assert store_a.claim(event, "webhook") is True
    assert store_b.claim(event, "backfill") is False

    with session_factory() as db:
        records = db.execute(select(ProcessingRecord)).scalars().all()
    assert len(records) == 1
    assert records[0].status == PENDING
    assert records[0].source == "webhook"
    assert records[0].raw_event["logIndex"] == "0x0"


def test_filter_unseen_drops_processed_and_reversed(session_factory):
    store = DedupStore(session_factory)
    fresh = tier_committed(1, block_number=101)
    pending = tier_committed(2, block_number=102)
    done = tier_committed(3, block_number=103)
    undone = tier_committed(4, block_number=104)

    for event in (pending, done, undone):
        store.claim(event, "webhook")
    _set_status(session_factory, done, PROCESSED)
    _set_status(session_factory, undone, REVERSED)

    assert store.filter_unseen([fresh, pending, done, undone]) == [fresh, pending]


def test_filter_unseen_keeps_removal_of_processed_event(session_factory):
    store = DedupStore(session_factory)
    event = tier_committed(5)
    store.claim(event, "webhook")
    _set_status(session_factory, event, PROCESSED)

    assert store.filter_unseen([removed(event)]) == [removed(event)]

    _set_status(session_factory, event, REVERSED)
    assert store.filter_unseen([removed(event)]) == []


def test_filter_unseen_is_scoped_to_network(session_factory):
    store = DedupStore(session_factory)
    event = tier_committed(6)
    store.claim(event, "webhook")
    _set_status(session_factory, event, PROCESSED)

    other_chain = event._replace(network="base-mainnet")
    assert store.filter_unseen([other_chain]) == [other_chain]


def test_filter_unseen_handles_many_transactions(session_factory):
    store = DedupStore(session_factory)
    events = [tier_committed(i, block_number=1000 + i) for i in range(1200)]
    for event in events[:600]:
        store.claim(event, "backfill")
    with session_factory() as db:
        db.query(ProcessingRecord).update({"status": PROCESSED})
        db.commit()
        assert db.execute(select(func.count()).select_from(ProcessingRecord)).scalar() == 600

    assert store.filter_unseen(events) == events[600:]


# ── router ───────────────────────────────────────────────────────────
def test_default_registry_covers_both_domains(router):
    assert router.classify(pool_created()).name == "PoolCreated"
    assert router.classify(tier_committed(1)).domain == POOL_DOMAIN
    assert set(router.topics("amm")) == {
        abi.PAIR_CREATED_TOPIC, abi.MINT_TOPIC, abi.BURN_TOPIC,
        abi.SWAP_TOPIC, abi.SYNC_TOPIC, abi.TRANSFER_TOPIC,
    }
    assert len(router.topics()) == 11


@pytest.mark.parametrize("topic, signature", [
    (abi.POOL_CREATED_TOPIC, "PoolCreated(address,string,string,uint256,address,address,address,uint256,uint256)"),
    (abi.TIER_COMMITTED_TOPIC, "TierCommitted(address,uint256,uint256)"),
    (abi.POOL_STATUS_UPDATED_TOPIC, "PoolStatusUpdated(uint8)"),
    (abi.REVENUE_RECEIVED_TOPIC, "RevenueReceived(uint256)"),
    (abi.REVENUE_DISTRIBUTED_TOPIC, "RevenueDistributed(uint256)"),
    (abi.SYNC_TOPIC, "Sync(uint112,uint112)"),
])
def test_topics_match_declared_signatures(topic, signature):
    # a redeployed contract with another signature must show up here, not as silently unknown logs
    assert topic == encode_hex(keccak(text=signature))


def test_unknown_signature_is_none(router):
    unknown_abi = {"name": "Ping", "type": "event", "anonymous": False,
                   "inputs": [{"indexed": False, "name": "x", "type": "uint256"}]}
    assert router.classify(make_event(unknown_abi, {"x": 1}, address="0x" + "12" * 20)) is None


def test_require_raises_for_unknown_topic(router):
    with pytest.raises(UnknownEventSignature):
        router.require("0x" + "00" * 32)
    assert router.require(abi.SYNC_TOPIC).name == "Sync"


def test_registry_is_injectable():
    handler = EventHandler(
        abi.REVENUE_RECEIVED_TOPIC, "OnlyRevenue", POOL_DOMAIN,
        apply=lambda db, e: {},
        revert=lambda db, e, r: None,
    )
    router = EventRouter({abi.REVENUE_RECEIVED_TOPIC: handler})

    assert router.classify(pool_created()) is None
    assert router.topics() == [abi.REVENUE_RECEIVED_TOPIC]


def test_duplicate_topics_rejected():
    handler = EventHandler("0x01", "A", POOL_DOMAIN, lambda db, e: {}, lambda db, e, r: None)
    with pytest.raises(ValueError, match="duplicate"):
        EventRouter.from_handlers([handler, handler._replace(name="B")])
