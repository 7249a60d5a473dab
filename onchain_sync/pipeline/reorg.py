import logging
from datetime import datetime
from typing import Callable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from onchain_sync.pipeline.errors import ApplyError, StoreUnavailable
from onchain_sync.pipeline.outcomes import EventOutcome, OutcomeKind
from onchain_sync.pipeline.router import EventRouter
from onchain_sync.storage.models.processing_record import (
    ProcessingRecord, PENDING, PROCESSED, REVERSED, FAILED,
)
from onchain_sync.utils.types import CanonicalEvent

log = logging.getLogger(__name__)


def lock_record(db: Session, key) -> ProcessingRecord:
    network, tx_hash, log_index = key
    return db.execute(
        select(ProcessingRecord)
        .where(
            ProcessingRecord.network == network,
            ProcessingRecord.transaction_hash == tx_hash,
            ProcessingRecord.log_index == log_index,
        )
        .with_for_update()
    ).scalar_one_or_none()


class ReorgHandler:
    """Undo the effect of a ``removed=true`` event and mark its record ``reversed``."""

    def __init__(self, session_factory: Callable[[], Session], router: EventRouter):
        self.session_factory = session_factory
        self.router = router

    def reverse(self, event: CanonicalEvent) -> EventOutcome:
        key = event.natural_key
        try:
            with self.session_factory() as db:
                record = lock_record(db, key)

                if record is None:
                    log.info(f"↩️ removal of unseen event {key}; nothing to reverse")
                    return EventOutcome(key, OutcomeKind.SKIPPED, reason="not seen")

                if record.status == PENDING:
                    # claimed but never applied: make sure it never will be
                    record.status = FAILED
                    record.error_message = "removed before apply"
                    db.commit()
                    log.info(f"↩️ {key} removed while pending; marked failed")
                    return EventOutcome(key, OutcomeKind.SKIPPED, record.event_name, "removed before apply")

                if record.status != PROCESSED:
                    log.info(f"↩️ removal of {key} in status {record.status}; no-op")
                    return EventOutcome(key, OutcomeKind.SKIPPED, record.event_name, f"already {record.status}")

                handler = self.router.handler_for_topic(record.event_topic)
                if handler is None:
                    log.warning(f"⚠️ no handler for {record.event_topic}; cannot reverse {key}")
                    return EventOutcome(key, OutcomeKind.FAILED, record.event_name, "no handler to reverse with")

                stored = CanonicalEvent.from_raw(record.raw_event, network=record.network)
                try:
                    handler.revert(db, stored, record.result or {})
                except ApplyError as exc:
                    db.rollback()
                    log.error(f"❌ reversal of {key} rejected: {exc}")
                    return EventOutcome(key, OutcomeKind.FAILED, record.event_name, str(exc))

                record.status = REVERSED
                record.reversed_at = datetime.utcnow()
                db.commit()
                log.info(f"⏪ reversed {handler.name} {key}")
                return EventOutcome(key, OutcomeKind.REVERSED, handler.name)
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"reversal of {key} failed: {exc}") from exc
