from celery import shared_task
from redis import Redis
from redlock import Redlock
from onchain_sync.config.settings import REDIS_URL, BACKFILL_LOCK_MS, BACKFILL_LOOKBACK_HOURS
from onchain_sync.pipeline.errors import StoreUnavailable
from onchain_sync.pipeline.factory import build_orchestrator
from onchain_sync.storage.db import WorkerSessionFactory
import logging
log = logging.getLogger(__name__)

# ── global Redis lock (only ONE backfill may run at a time) ─────────────
LOCKER = Redlock([Redis.from_url(REDIS_URL)])
LOCK_NAME = "onchain_sync_backfill_lock"


def run_locked_backfill(hours: float, locker=LOCKER, orchestrator_factory=None) -> dict:
    lock = locker.lock(LOCK_NAME, BACKFILL_LOCK_MS)
    if not lock:
        log.info("🔒 Another backfill is running; skipping.")
        return {"skipped": True}

    try:
        orchestrator = (orchestrator_factory or (lambda: build_orchestrator(WorkerSessionFactory)))()
        return orchestrator.run_recent(hours, job_name="backfill-scheduled")
    finally:
        locker.unlock(lock)


@shared_task(
    name="backfill_recent",
    queue="backfill",
    bind=True,
    autoretry_for=(StoreUnavailable,),
    retry_backoff=True,
    max_retries=3,
)
def backfill_recent(self, hours: float = BACKFILL_LOOKBACK_HOURS) -> dict:
    """Timer-driven backfill of the last ``hours`` of blocks plus the pending sweep."""
    log.info(f"🔄  Starting scheduled backfill ({hours}h lookback)…")
    return run_locked_backfill(hours)
