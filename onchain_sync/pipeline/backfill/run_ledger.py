import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from onchain_sync.pipeline.errors import StoreUnavailable
from onchain_sync.storage.models.processing_run import ProcessingRun, RUNNING, COMPLETED, FAILED

log = logging.getLogger(__name__)


@dataclass
class RunStats:
    from_block: int
    to_block: int
    chunk_size: int
    chunks_total: int = 0
    chunks_failed: int = 0
    events_found: int = 0
    events_new: int = 0
    events_processed: int = 0
    events_skipped: int = 0
    events_failed: int = 0
    pending_reprocessed: int = 0
    duration_seconds: float = 0.0

    def to_dict(self) -> dict:
        out = asdict(self)
        out["block_range"] = {"from": self.from_block, "to": self.to_block}
        return out


class RunLedger:
    """One ``processing_runs`` row per backfill invocation."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def start(self, job_name: str, source: str, stats: RunStats) -> int:
        try:
            with self.session_factory() as db:
                run = ProcessingRun(
                    job_name=job_name,
                    source=source,
                    status=RUNNING,
                    from_block=stats.from_block,
                    to_block=stats.to_block,
                    chunk_size=stats.chunk_size,
                    started_at=datetime.utcnow(),
                )
                db.add(run)
                db.commit()
                return run.id
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"could not open run ledger row: {exc}") from exc

    def finish(self, run_id: int, stats: RunStats, error: Optional[str] = None) -> None:
        try:
            with self.session_factory() as db:
                run = db.get(ProcessingRun, run_id)
                if run is None:
                    log.warning(f"⚠️ run ledger row {run_id} vanished")
                    return
                run.status              = FAILED if error else COMPLETED
                run.chunks_total        = stats.chunks_total
                run.chunks_failed       = stats.chunks_failed
                run.events_found        = stats.events_found
                run.events_new          = stats.events_new
                run.events_processed    = stats.events_processed
                run.events_skipped      = stats.events_skipped
                run.events_failed       = stats.events_failed
                run.pending_reprocessed = stats.pending_reprocessed
                run.duration_seconds    = round(stats.duration_seconds, 2)
                run.error_message       = error
                run.finished_at         = datetime.utcnow()
                db.commit()
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"could not close run ledger row {run_id}: {exc}") from exc

    def recent(self, limit: int = 20) -> List[dict]:
        with self.session_factory() as db:
            runs = db.execute(
                select(ProcessingRun).order_by(ProcessingRun.started_at.desc(), ProcessingRun.id.desc()).limit(limit)
            ).scalars().all()
            return [r.to_dict() for r in runs]

    def stats(self, now: Optional[datetime] = None) -> dict:
        """Counts per status, last-24h totals and average duration of completed runs."""
        since = (now or datetime.utcnow()) - timedelta(hours=24)
        with self.session_factory() as db:
            by_status = dict(
                db.execute(select(ProcessingRun.status, func.count()).group_by(ProcessingRun.status)).all()
            )
            found, processed, failed_events, runs_24h = db.execute(
                select(
                    func.coalesce(func.sum(ProcessingRun.events_found), 0),
                    func.coalesce(func.sum(ProcessingRun.events_processed), 0),
                    func.coalesce(func.sum(ProcessingRun.events_failed), 0),
                    func.count(ProcessingRun.id),
                ).where(ProcessingRun.started_at >= since)
            ).one()
            avg_duration = db.execute(
                select(func.avg(ProcessingRun.duration_seconds)).where(ProcessingRun.status == COMPLETED)
            ).scalar()

        return {
            "runs_by_status": by_status,
            "last_24h": {
                "runs": int(runs_24h),
                "events_found": int(found),
                "events_processed": int(processed),
                "events_failed": int(failed_events),
            },
            "avg_duration_seconds": round(float(avg_duration), 2) if avg_duration is not None else None,
        }
