# onchain_sync/pipeline/processor.py
"""
Batch driver shared by the webhook and backfill paths.

    events ─► dedup.filter_unseen ─► router ─┬─► removed ─► ReorgHandler
                                             └─► claim ─► apply + mark processed (one tx)

Per-event problems never abort the batch; they fold into ``BatchResult``.
Only ``StoreUnavailable`` propagates.
"""
import logging
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from onchain_sync.pipeline.dedup import DedupStore
from onchain_sync.pipeline.errors import (
    ApplyError, DependencyNotReady, StoreUnavailable, UnknownEventSignature,
)
from onchain_sync.pipeline.outcomes import BatchResult, EventOutcome, OutcomeKind
from onchain_sync.pipeline.reorg import ReorgHandler, lock_record
from onchain_sync.pipeline.router import EventHandler, EventRouter
from onchain_sync.storage.models.processing_record import (
    ProcessingRecord, PENDING, PROCESSED, FAILED,
)
from onchain_sync.utils.types import CanonicalEvent

log = logging.getLogger(__name__)

WEBHOOK   = "webhook"
BACKFILL  = "backfill"
REPROCESS = "reprocess"
MANUAL    = "manual"


class EventProcessor:

    def __init__(
        self,
        session_factory: Callable[[], Session],
        router: EventRouter,
        dedup: Optional[DedupStore] = None,
        reorg: Optional[ReorgHandler] = None,
        max_pending_attempts: int = 24,
    ):
        self.session_factory = session_factory
        self.router = router
        self.dedup = dedup or DedupStore(session_factory)
        self.reorg = reorg or ReorgHandler(session_factory, router)
        self.max_pending_attempts = max_pending_attempts

    # ------------------------------------------------------------------
    # batch entry points
    # ------------------------------------------------------------------
    def process_batch(self, events: List[CanonicalEvent], source: str) -> BatchResult:
        result = BatchResult(total=len(events))
        if not events:
            return result

        for event in self.dedup.filter_unseen(events):
            result.add(self.process_event(event, source))

        log.info(f"📦 [{source}] batch done: {result.summary()}")
        return result

    def process_event(self, event: CanonicalEvent, source: str) -> EventOutcome:
        key = event.natural_key

        if event.removed:
            return self.reorg.reverse(event)

        handler = self.router.classify(event)
        if handler is None:
            return EventOutcome(key, OutcomeKind.SKIPPED, reason="unknown signature")

        if handler.accepts is not None and not self._accepts(handler, event):
            return EventOutcome(key, OutcomeKind.SKIPPED, handler.name, "not tracked")

        if not self.dedup.claim(event, source, handler.domain, handler.name):
            log.debug(f"{key} already claimed elsewhere; skipping")
            return EventOutcome(key, OutcomeKind.SKIPPED, handler.name, "already claimed")

        return self._apply(event, handler)

    def reprocess_pending(self, limit: int = 50, source: str = REPROCESS) -> BatchResult:
        """Re-run records left ``pending``, oldest block first, from their stored event."""
        try:
            with self.session_factory() as db:
                records = db.execute(
                    select(ProcessingRecord)
                    .where(ProcessingRecord.status == PENDING)
                    .order_by(ProcessingRecord.block_number, ProcessingRecord.log_index)
                    .limit(limit)
                ).scalars().all()
                stored = [(r.natural_key, r.raw_event, r.event_topic) for r in records]
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"pending lookup failed: {exc}") from exc

        result = BatchResult(total=len(stored))
        for key, raw_event, topic in stored:
            result.add(self._replay(key, raw_event, topic, source))

        if stored:
            log.info(f"🔁 pending sweep: {result.summary()}")
        return result

    def reprocess(self, key: Tuple[str, str, int], source: str = MANUAL) -> EventOutcome:
        """Operator retry of one record; a ``failed`` record is put back to ``pending`` first."""
        try:
            with self.session_factory() as db:
                record = lock_record(db, key)
                if record is None:
                    return EventOutcome(key, OutcomeKind.SKIPPED, reason="not found")
                if record.status not in (PENDING, FAILED):
                    return EventOutcome(key, OutcomeKind.SKIPPED, record.event_name, f"already {record.status}")
                record.status = PENDING
                record.attempts = 0
                record.error_message = None
                raw_event, topic = record.raw_event, record.event_topic
                db.commit()
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"reprocess of {key} failed: {exc}") from exc

        return self._replay(key, raw_event, topic, source)

    def purge(self, key: Tuple[str, str, int]) -> bool:
        """Delete one processing record (operator action only)."""
        try:
            with self.session_factory() as db:
                record = lock_record(db, key)
                if record is None:
                    return False
                db.delete(record)
                db.commit()
                log.warning(f"🗑️ purged processing record {key} ({record.status})")
                return True
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"purge of {key} failed: {exc}") from exc

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------
    def _accepts(self, handler: EventHandler, event: CanonicalEvent) -> bool:
        try:
            with self.session_factory() as db:
                return handler.accepts(db, event)
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"relevance check failed: {exc}") from exc

    def _replay(self, key, raw_event: dict, topic: Optional[str], source: str) -> EventOutcome:
        try:
            handler = self.router.require(topic)
        except UnknownEventSignature as exc:
            return self._mark_failed(key, None, str(exc))
        try:
            event = CanonicalEvent.from_raw(raw_event, network=key[0])
        except (KeyError, TypeError, ValueError) as exc:
            return self._mark_failed(key, handler.name, f"stored event unreadable: {exc!r}")
        return self._apply(event, handler, source=source)

    def _apply(self, event: CanonicalEvent, handler: EventHandler, source: Optional[str] = None) -> EventOutcome:
        """Domain writes and ``pending → processed`` commit together or not at all."""
        key = event.natural_key
        try:
            with self.session_factory() as db:
                record = lock_record(db, key)
                if record is None or record.status != PENDING:
                    return EventOutcome(key, OutcomeKind.SKIPPED, handler.name,
                                        f"record is {record.status if record else 'missing'}")
                try:
                    outcome = handler.apply(db, event)
                except (ApplyError, DependencyNotReady):
                    db.rollback()
                    raise

                record.status = PROCESSED
                record.result = outcome
                record.error_message = None
                record.attempts = (record.attempts or 0) + 1
                record.processed_at = datetime.utcnow()
                if source:
                    record.source = source
                db.commit()
        except DependencyNotReady as exc:
            return self._defer(key, handler.name, str(exc))
        except ApplyError as exc:
            return self._mark_failed(key, handler.name, str(exc))
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"apply of {key} failed: {exc}") from exc

        log.info(f"✅ {handler.name} {event.transaction_hash}:{event.log_index} applied")
        return EventOutcome(key, OutcomeKind.APPLIED, handler.name)

    def _defer(self, key, event_name: Optional[str], reason: str) -> EventOutcome:
        try:
            with self.session_factory() as db:
                record = lock_record(db, key)
                if record is None or record.status != PENDING:
                    return EventOutcome(key, OutcomeKind.SKIPPED, event_name, reason)
                record.attempts = (record.attempts or 0) + 1
                record.error_message = reason
                give_up = record.attempts >= self.max_pending_attempts
                if give_up:
                    record.status = FAILED
                db.commit()
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"defer of {key} failed: {exc}") from exc

        if give_up:
            log.error(f"❌ {event_name} {key} still waiting after {self.max_pending_attempts} attempts: {reason}")
            return EventOutcome(key, OutcomeKind.FAILED, event_name, reason)
        log.info(f"⏳ {event_name} {key} deferred: {reason}")
        return EventOutcome(key, OutcomeKind.DEFERRED, event_name, reason)

    def _mark_failed(self, key, event_name: Optional[str], reason: str) -> EventOutcome:
        try:
            with self.session_factory() as db:
                record = lock_record(db, key)
                if record is not None and record.status == PENDING:
                    record.status = FAILED
                    record.error_message = reason
                    record.attempts = (record.attempts or 0) + 1
                    db.commit()
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"marking {key} failed: {exc}") from exc

        log.warning(f"🚫 {event_name} {key} rejected: {reason}")
        return EventOutcome(key, OutcomeKind.FAILED, event_name, reason)
