from enum import Enum
from typing import List, NamedTuple, Optional, Tuple


class OutcomeKind(str, Enum):
    APPLIED  = "applied"
    REVERSED = "reversed"
    SKIPPED  = "skipped"
    DEFERRED = "deferred"    # dependency missing, record left pending
    FAILED   = "failed"


class EventOutcome(NamedTuple):
    key: Tuple[str, str, int]
    kind: OutcomeKind
    event_name: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        network, tx_hash, log_index = self.key
        return {
            "network": network,
            "transactionHash": tx_hash,
            "logIndex": log_index,
            "event": self.event_name,
            "outcome": self.kind.value,
            "reason": self.reason,
        }


class BatchResult:
    """Fold of per-event outcomes for one batch."""

    def __init__(self, total: int = 0):
        self.total = total
        self.outcomes: List[EventOutcome] = []

    def add(self, outcome: EventOutcome) -> "BatchResult":
        self.outcomes.append(outcome)
        return self

    def count(self, *kinds: OutcomeKind) -> int:
        return sum(1 for o in self.outcomes if o.kind in kinds)

    @property
    def processed(self) -> int:
        return self.count(OutcomeKind.APPLIED, OutcomeKind.REVERSED)

    @property
    def skipped(self) -> int:
        # events filtered out before routing never produce an outcome
        return self.total - len(self.outcomes) + self.count(OutcomeKind.SKIPPED, OutcomeKind.DEFERRED)

    @property
    def failed(self) -> int:
        return self.count(OutcomeKind.FAILED)

    def summary(self) -> dict:
        return {
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
            "total": self.total,
        }

    def __repr__(self) -> str:
        return f"<BatchResult {self.summary()}>"
