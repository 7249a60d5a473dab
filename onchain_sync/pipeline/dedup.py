import logging
from collections import defaultdict
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from onchain_sync.pipeline.errors import StoreUnavailable
from onchain_sync.storage.models.processing_record import (
    ProcessingRecord, PENDING, PROCESSED, REVERSED,
)
from onchain_sync.utils.log_utils import batched
from onchain_sync.utils.types import CanonicalEvent

log = logging.getLogger(__name__)

TX_HASH_BATCH = 500

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def insert_or_ignore(session: Session, model, values: dict, index_elements: list):
    """``INSERT … ON CONFLICT DO NOTHING`` for the session's dialect."""
    dialect = session.get_bind().dialect.name
    try:
        insert = _INSERTS[dialect]
    except KeyError:
        raise StoreUnavailable(f"insert-or-ignore not supported on {dialect}") from None
    stmt = insert(model).values(**values).on_conflict_do_nothing(index_elements=index_elements)
    return session.execute(stmt)


class DedupStore:
    """
    Persisted natural-key ledger (``blockchain_events``), the idempotency gate.

    ``filter_unseen`` is the cheap bulk pre-filter; ``claim`` is the race-safe
    single-winner step every event goes through before it is applied.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def lookup_statuses(self, events: List[CanonicalEvent]) -> Dict[Tuple[str, str, int], str]:
        by_network = defaultdict(set)
        for e in events:
            by_network[e.network].add(e.transaction_hash)

        statuses = {}
        try:
            with self.session_factory() as db:
                for network, hashes in by_network.items():
                    for chunk in batched(sorted(hashes), TX_HASH_BATCH):
                        rows = db.execute(
                            select(
                                ProcessingRecord.transaction_hash,
                                ProcessingRecord.log_index,
                                ProcessingRecord.status,
                            ).where(
                                ProcessingRecord.network == network,
                                ProcessingRecord.transaction_hash.in_(chunk),
                            )
                        ).all()
                        for tx_hash, log_index, status in rows:
                            statuses[(network, tx_hash, log_index)] = status
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"dedup lookup failed: {exc}") from exc
        return statuses

    def filter_unseen(self, events: List[CanonicalEvent]) -> List[CanonicalEvent]:
        """
        Keep events whose effect is still outstanding, preserving order.

        A normal event is dropped once its key is processed or reversed; a
        ``removed`` event only once the key is reversed.
        """
        if not events:
            return []
        statuses = self.lookup_statuses(events)

        unseen = []
        for e in events:
            status = statuses.get(e.natural_key)
            done = (REVERSED,) if e.removed else (PROCESSED, REVERSED)
            if status in done:
                continue
            unseen.append(e)

        dropped = len(events) - len(unseen)
        if dropped:
            log.info(f"🔁 {dropped}/{len(events)} events already handled; skipping")
        return unseen

    def claim(self, event: CanonicalEvent, source: str,
              domain: Optional[str] = None, event_name: Optional[str] = None) -> bool:
        """Insert a ``pending`` record for the key; True only for the single winner."""
        values = {
            "network": event.network,
            "transaction_hash": event.transaction_hash,
            "log_index": event.log_index,
            "block_number": event.block_number,
            "block_hash": event.block_hash,
            "contract_address": event.contract_address,
            "event_topic": event.signature,
            "event_name": event_name,
            "domain": domain,
            "status": PENDING,
            "source": source,
            "raw_event": event.to_raw(),
            "attempts": 0,
        }
        try:
            with self.session_factory() as db:
                result = insert_or_ignore(
                    db, ProcessingRecord, values,
                    index_elements=["network", "transaction_hash", "log_index"],
                )
                db.commit()
                return result.rowcount == 1
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"claim failed for {event.natural_key}: {exc}") from exc
