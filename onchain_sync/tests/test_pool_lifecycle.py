from sqlalchemy import select

from onchain_sync.storage.models.pool_state import PoolState, TierCommitment
from onchain_sync.storage.models.processing_record import ProcessingRecord
from onchain_sync.tests.factories import (
    NETWORK, POOL, pool_created, tier_committed, status_updated, revenue_received, revenue_distributed, removed,
)

ACTIVE, FUNDED, FAILED, EXECUTING, CLOSED, PAUSED = 1, 4, 6, 7, 8, 2


def pool_row(session_factory, address=POOL):
    with session_factory() as db:
        return db.execute(select(PoolState).where(PoolState.contract_address == address)).scalar_one_or_none()


def snapshot(session_factory):
    pool = pool_row(session_factory)
    with session_factory() as db:
        commitments = db.execute(select(TierCommitment.transaction_hash, TierCommitment.amount)).all()
    return {
        "status": pool.status,
        "raised": pool.raised_amount,
        "revenue": pool.revenue_accumulated,
        "distributed": pool.revenue_distributed,
        "commitments": sorted(commitments),
    }


def record_for(session_factory, event):
    with session_factory() as db:
        return db.execute(
            select(ProcessingRecord).where(
                ProcessingRecord.network == event.network,
                ProcessingRecord.transaction_hash == event.transaction_hash,
                ProcessingRecord.log_index == event.log_index,
            )
        ).scalar_one_or_none()


def test_pool_created_inserts_active_pool(processor, session_factory):
    result = processor.process_batch([pool_created(target=5_000 * 10**18, cap=0)], "webhook")

    assert result.summary() == {"processed": 1, "skipped": 0, "failed": 0, "total": 1}
    pool = pool_row(session_factory)
    assert pool.status == "active"
    assert pool.network == NETWORK
    assert pool.name == "Solar Farm #1"
    assert pool.unique_id == "solar-1"
    assert pool.target_amount == 5_000 * 10**18
    assert pool.cap_amount is None
    assert pool.raised_amount == 0
    assert pool.ends_at is not None


def test_tier_commitments_accumulate(processor, session_factory):
    processor.process_batch([
        pool_created(),
        tier_committed(300, log_index=0),
        tier_committed(200, log_index=1, tier_id=2),
    ], "webhook")

    pool = pool_row(session_factory)
    assert pool.raised_amount == 500
    with session_factory() as db:
        rows = db.execute(select(TierCommitment).order_by(TierCommitment.log_index)).scalars().all()
    assert [(r.amount, r.tier_id) for r in rows] == [(300, 1), (200, 2)]
    assert rows[0].user_address == "0x" + "22" * 20


def test_commit_before_pool_waits_in_pending(processor, session_factory):
    commit = tier_committed(250)
    result = processor.process_batch([commit], "webhook")

    assert result.summary()["processed"] == 0
    record = record_for(session_factory, commit)
    assert record.status == "pending"
    assert record.attempts == 1
    assert "not created yet" in record.error_message

    processor.process_batch([pool_created()], "webhook")
    sweep = processor.reprocess_pending(limit=10)

    assert sweep.processed == 1
    assert record_for(session_factory, commit).status == "processed"
    assert pool_row(session_factory).raised_amount == 250


def test_illegal_transition_fails_record_and_keeps_status(processor, session_factory):
    processor.process_batch([
        pool_created(),
        status_updated(FUNDED, block_number=102),
        status_updated(EXECUTING, block_number=103),
    ], "webhook")
    assert pool_row(session_factory).status == "executing"

    back_to_active = status_updated(ACTIVE, block_number=104)
    result = processor.process_batch([back_to_active], "webhook")

    assert result.summary() == {"processed": 0, "skipped": 0, "failed": 1, "total": 1}
    record = record_for(session_factory, back_to_active)
    assert record.status == "failed"
    assert "executing -> active" in record.error_message
    assert pool_row(session_factory).status == "executing"


def test_failed_record_is_not_retried(processor, session_factory):
    processor.process_batch([pool_created()], "webhook")
    bad = status_updated(EXECUTING)
    processor.process_batch([bad], "webhook")
    assert record_for(session_factory, bad).status == "failed"

    assert processor.reprocess_pending().total == 0
    again = processor.process_batch([bad], "webhook")
    assert again.summary()["processed"] == 0
    assert record_for(session_factory, bad).status == "failed"


def test_full_lifecycle_to_closed(processor, session_factory):
    processor.process_batch([
        pool_created(),
        status_updated(ACTIVE, block_number=101),           # same state: accepted no-op
        status_updated(FAILED, block_number=102),
        status_updated(EXECUTING, block_number=103),
        status_updated(CLOSED, block_number=104),
    ], "webhook")
    assert pool_row(session_factory).status == "closed"


def test_status_code_without_lifecycle_state_is_rejected(processor, session_factory):
    processor.process_batch([pool_created()], "webhook")
    paused = status_updated(PAUSED)
    processor.process_batch([paused], "webhook")

    assert record_for(session_factory, paused).status == "failed"
    assert pool_row(session_factory).status == "active"


def test_revenue_counters(processor, session_factory):
    processor.process_batch([pool_created(), revenue_received(70), revenue_received(30, log_index=1)], "webhook")
    assert pool_row(session_factory).revenue_accumulated == 100

    distributed = revenue_distributed(60)
    processor.process_batch([distributed], "webhook")
    assert pool_row(session_factory).revenue_distributed == 60

    processor.process_batch([removed(distributed)], "webhook")
    assert pool_row(session_factory).revenue_distributed == 0


def test_reorg_of_commitment_restores_state(processor, session_factory):
    processor.process_batch([pool_created(), tier_committed(100, block_number=101)], "webhook")
    before = snapshot(session_factory)

    commit = tier_committed(400, block_number=105)
    processor.process_batch([commit], "webhook")
    assert pool_row(session_factory).raised_amount == 500

    result = processor.process_batch([removed(commit)], "webhook")

    assert result.summary()["processed"] == 1
    assert snapshot(session_factory) == before
    assert record_for(session_factory, commit).status == "reversed"


def test_reorg_of_status_update_restores_previous_status(processor, session_factory):
    processor.process_batch([pool_created()], "webhook")
    funded = status_updated(FUNDED)
    processor.process_batch([funded], "webhook")
    assert pool_row(session_factory).status == "funded"

    processor.process_batch([removed(funded)], "webhook")
    assert pool_row(session_factory).status == "active"


def test_reorg_of_revenue(processor, session_factory):
    processor.process_batch([pool_created()], "webhook")
    before = snapshot(session_factory)
    revenue = revenue_received(42)
    processor.process_batch([revenue], "webhook")
    processor.process_batch([removed(revenue)], "webhook")
    assert snapshot(session_factory) == before


def test_reorg_of_creation_deletes_pool(processor, session_factory):
    created = pool_created()
    processor.process_batch([created], "webhook")
    processor.process_batch([removed(created)], "webhook")
    assert pool_row(session_factory) is None


def test_draft_row_is_promoted_and_restored(processor, session_factory):
    with session_factory() as db:
        db.add(PoolState(contract_address=POOL, network=NETWORK, name="Draft name", status="draft",
                         raised_amount=0, revenue_accumulated=0, revenue_distributed=0))
        db.commit()

    created = pool_created()
    processor.process_batch([created], "webhook")
    pool = pool_row(session_factory)
    assert pool.status == "active"
    assert pool.name == "Solar Farm #1"

    processor.process_batch([removed(created)], "webhook")
    pool = pool_row(session_factory)
    assert pool.status == "draft"
    assert pool.name == "Draft name"
    assert pool.target_amount is None
