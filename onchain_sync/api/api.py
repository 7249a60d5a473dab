import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select

from onchain_sync.api.dependencies import (
    get_backfill_api_key, get_orchestrator, get_processor, get_session_factory,
)
from onchain_sync.config import settings
from onchain_sync.pipeline.backfill.run_ledger import RunLedger
from onchain_sync.pipeline.errors import StoreUnavailable
from onchain_sync.pipeline.processor import MANUAL
from onchain_sync.storage.models.processing_record import ProcessingRecord, STATUSES

log = logging.getLogger(__name__)

router = APIRouter()


def require_secret(secret: Optional[str] = Query(None), api_key=Depends(get_backfill_api_key)):
    if not api_key:
        raise HTTPException(status_code=401, detail="Backfill API key not configured")
    if not secret or not hmac.compare_digest(secret, api_key):
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.get("/")
def read_root():
    return {"message": "onchain-sync is running"}


@router.get("/backfill", dependencies=[Depends(require_secret)])
def trigger_backfill(
    hours: Optional[float] = None,
    from_block: Optional[int] = None,
    to_block: Optional[int] = None,
    chunk_size: Optional[int] = None,
    orchestrator=Depends(get_orchestrator),
):
    """Manual backfill: ``hours`` lookback, or an explicit ``from_block``/``to_block`` range."""
    try:
        if from_block is not None or to_block is not None:
            if from_block is None or to_block is None:
                raise ValueError("from_block and to_block go together")
            return orchestrator.run(from_block, to_block, job_name="backfill-manual", chunk_size=chunk_size)
        return orchestrator.run_recent(
            hours or settings.BACKFILL_LOOKBACK_HOURS, job_name="backfill-manual", chunk_size=chunk_size,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except StoreUnavailable as exc:
        log.error(f"❌ manual backfill failed: {exc}")
        raise HTTPException(status_code=500, detail="Backfill failed")


# ── operator views ──────────────────────────────────────────────────
@router.get("/admin/runs", dependencies=[Depends(require_secret)])
def list_runs(limit: int = Query(20, ge=1, le=500), session_factory=Depends(get_session_factory)):
    return {"runs": RunLedger(session_factory).recent(limit)}


@router.get("/admin/runs/stats", dependencies=[Depends(require_secret)])
def run_stats(session_factory=Depends(get_session_factory)):
    return RunLedger(session_factory).stats()


@router.get("/admin/events", dependencies=[Depends(require_secret)])
def list_events(
    status: str = "failed",
    limit: int = Query(50, ge=1, le=500),
    session_factory=Depends(get_session_factory),
):
    if status not in STATUSES:
        raise HTTPException(status_code=400, detail=f"status must be one of {', '.join(STATUSES)}")
    with session_factory() as db:
        records = db.execute(
            select(ProcessingRecord)
            .where(ProcessingRecord.status == status)
            .order_by(ProcessingRecord.block_number.desc(), ProcessingRecord.log_index.desc())
            .limit(limit)
        ).scalars().all()
        return {
            "events": [
                {
                    "id": r.id,
                    "network": r.network,
                    "transactionHash": r.transaction_hash,
                    "logIndex": r.log_index,
                    "blockNumber": r.block_number,
                    "event": r.event_name,
                    "status": r.status,
                    "source": r.source,
                    "attempts": r.attempts,
                    "error": r.error_message,
                }
                for r in records
            ]
        }


@router.post("/admin/events/{record_id}/reprocess", dependencies=[Depends(require_secret)])
def reprocess_event(record_id: int, session_factory=Depends(get_session_factory), processor=Depends(get_processor)):
    with session_factory() as db:
        record = db.get(ProcessingRecord, record_id)
        if record is None:
            raise HTTPException(status_code=404, detail="record not found")
        key = record.natural_key
    try:
        outcome = processor.reprocess(key, source=MANUAL)
    except StoreUnavailable as exc:
        log.error(f"❌ reprocess of {key} failed: {exc}")
        raise HTTPException(status_code=500, detail="Reprocess failed")
    return outcome.to_dict()
