import pytest
from sqlalchemy import select

from onchain_sync.pipeline.errors import StoreUnavailable
from onchain_sync.pipeline.outcomes import OutcomeKind
from onchain_sync.pipeline.processor import EventProcessor
from onchain_sync.storage.base import Base
from onchain_sync.storage.models.pool_state import PoolState
from onchain_sync.storage.models.processing_record import ProcessingRecord
from onchain_sync.tests.factories import (
    POOL, make_event, pool_created, tier_committed, revenue_received, removed,
)

UNKNOWN_ABI = {
    "name": "Heartbeat", "type": "event", "anonymous": False,
    "inputs": [{"indexed": False, "name": "beat", "type": "uint256"}],
}


def raised(session_factory):
    with session_factory() as db:
        return db.execute(select(PoolState.raised_amount).where(PoolState.contract_address == POOL)).scalar_one()


def records(session_factory):
    with session_factory() as db:
        return db.execute(select(ProcessingRecord).order_by(ProcessingRecord.id)).scalars().all()


def test_replayed_batch_is_idempotent(processor, session_factory):
    batch = [pool_created(), tier_committed(100), revenue_received(7)]

    first = processor.process_batch(batch, "webhook")
    assert first.summary() == {"processed": 3, "skipped": 0, "failed": 0, "total": 3}

    for _ in range(3):
        again = processor.process_batch(batch, "webhook")
        assert again.summary() == {"processed": 0, "skipped": 3, "failed": 0, "total": 3}

    assert raised(session_factory) == 100
    assert len(records(session_factory)) == 3


def test_concurrent_sources_apply_once(session_factory, router):
    webhook_side = EventProcessor(session_factory, router)
    backfill_side = EventProcessor(session_factory, router)
    webhook_side.process_batch([pool_created()], "webhook")

    commit = tier_committed(100)
    # both passed the bulk filter before either claimed
    a = webhook_side.process_event(commit, "webhook")
    b = backfill_side.process_event(commit, "backfill")

    assert a.kind is OutcomeKind.APPLIED
    assert b.kind is OutcomeKind.SKIPPED
    assert b.reason == "already claimed"
    assert raised(session_factory) == 100
    assert records(session_factory)[-1].source == "webhook"


def test_unknown_signature_skipped_without_record(processor, session_factory):
    event = make_event(UNKNOWN_ABI, {"beat": 1}, address="0x" + "12" * 20)
    result = processor.process_batch([event], "webhook")

    assert result.summary() == {"processed": 0, "skipped": 1, "failed": 0, "total": 1}
    assert result.outcomes[0].reason == "unknown signature"
    assert records(session_factory) == []


def test_empty_batch(processor):
    assert processor.process_batch([], "webhook").summary() == {
        "processed": 0, "skipped": 0, "failed": 0, "total": 0,
    }


def test_store_errors_propagate(processor, engine):
    Base.metadata.drop_all(engine)
    with pytest.raises(StoreUnavailable):
        processor.process_batch([pool_created()], "webhook")


def test_pending_gives_up_after_max_attempts(processor, session_factory):
    commit = tier_committed(100)
    processor.process_batch([commit], "webhook")          # attempt 1
    assert processor.reprocess_pending().count(OutcomeKind.DEFERRED) == 1   # attempt 2

    last = processor.reprocess_pending()                    # attempt 3
    assert last.failed == 1
    record = records(session_factory)[0]
    assert record.status == "failed"
    assert record.attempts == 3
    assert processor.reprocess_pending().total == 0


def test_manual_reprocess_of_failed_record(processor, session_factory):
    commit = tier_committed(100)
    processor.process_batch([commit], "webhook")
    processor.reprocess_pending()
    processor.reprocess_pending()
    assert records(session_factory)[0].status == "failed"

    processor.process_batch([pool_created()], "webhook")
    outcome = processor.reprocess(commit.natural_key)

    assert outcome.kind is OutcomeKind.APPLIED
    record = [r for r in records(session_factory) if r.transaction_hash == commit.transaction_hash][0]
    assert record.status == "processed"
    assert record.source == "manual"
    assert raised(session_factory) == 100


def test_manual_reprocess_leaves_processed_records(processor):
    created = pool_created()
    processor.process_batch([created], "webhook")

    outcome = processor.reprocess(created.natural_key)
    assert outcome.kind is OutcomeKind.SKIPPED
    assert outcome.reason == "already processed"
    assert processor.reprocess(("base-sepolia", "0x" + "00" * 32, 0)).reason == "not found"


def test_purge_allows_a_fresh_claim(processor, session_factory):
    commit = tier_committed(100)
    processor.process_batch([commit], "webhook")

    assert processor.purge(commit.natural_key) is True
    assert processor.purge(commit.natural_key) is False
    assert records(session_factory) == []

    processor.process_batch([pool_created(), commit], "backfill")
    assert raised(session_factory) == 100


def test_removal_of_unseen_event_is_noop(processor, session_factory):
    result = processor.process_batch([removed(tier_committed(100))], "webhook")
    assert result.outcomes[0].reason == "not seen"
    assert records(session_factory) == []


def test_removal_while_pending_blocks_later_apply(processor, session_factory):
    commit = tier_committed(100)
    processor.process_batch([commit], "webhook")
    processor.process_batch([removed(commit)], "webhook")

    record = records(session_factory)[0]
    assert record.status == "failed"
    assert record.error_message == "removed before apply"

    processor.process_batch([pool_created()], "webhook")
    assert processor.reprocess_pending().total == 0
    assert raised(session_factory) == 0


def test_reversed_event_redelivered_is_ignored(processor, session_factory):
    processor.process_batch([pool_created()], "webhook")
    commit = tier_committed(100)
    processor.process_batch([commit], "webhook")
    processor.process_batch([removed(commit)], "webhook")

    again = processor.process_batch([commit, removed(commit)], "webhook")
    assert again.summary() == {"processed": 0, "skipped": 2, "failed": 0, "total": 2}
    assert raised(session_factory) == 0
