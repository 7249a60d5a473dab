# onchain_sync/pipeline/appliers/pool_lifecycle.py
"""
Funding-pool projection: ``pools`` + ``tier_commitments``.

Every ``apply_*`` returns a JSON-safe dict that is stored on the processing
record; the matching ``revert_*`` reads it back on a reorg.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from onchain_sync.pipeline.errors import ApplyError, DependencyNotReady, InvalidStateTransition
from onchain_sync.pipeline.router import EventHandler, POOL_DOMAIN
from onchain_sync.sources.evm import abi
from onchain_sync.sources.evm.decoder import decode_event
from onchain_sync.storage.models.pool_state import (
    PoolState, TierCommitment, DRAFT, ACTIVE, FUNDED, FAILED, EXECUTING, CLOSED,
)
from onchain_sync.utils.types import CanonicalEvent

log = logging.getLogger(__name__)

# on-chain PoolStatus enum → lifecycle state (PAUSED=2, CANCELLED=9 have no lifecycle state)
STATUS_CODES = {
    0: DRAFT,        # INACTIVE
    1: ACTIVE,
    3: CLOSED,
    4: FUNDED,
    5: FUNDED,       # FULLY_FUNDED
    6: FAILED,
    7: EXECUTING,
    8: CLOSED,       # COMPLETED
}

ALLOWED_TRANSITIONS = {
    DRAFT:     {ACTIVE},
    ACTIVE:    {FUNDED, FAILED},
    FUNDED:    {EXECUTING},
    FAILED:    {EXECUTING},
    EXECUTING: {CLOSED},
    CLOSED:    set(),
}


# columns PoolCreated overwrites on a pre-registered draft row
_CREATION_FIELDS = (
    "name", "unique_id", "creator_address", "owner_address", "deposit_token_address",
    "target_amount", "cap_amount", "ends_at", "created_block", "created_tx_hash",
)


def _json_safe(value):
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, int) and not isinstance(value, bool) and value > 2**53:
        return str(value)
    return value


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def _to_datetime(ts: Optional[int]) -> Optional[datetime]:
    if not ts:
        return None
    try:
        return datetime.fromtimestamp(int(ts), tz=timezone.utc).replace(tzinfo=None)
    except (OverflowError, OSError, ValueError):
        return None


def _lock_pool(db: Session, address: str) -> Optional[PoolState]:
    return db.execute(
        select(PoolState).where(PoolState.contract_address == address).with_for_update()
    ).scalar_one_or_none()


def _require_pool(db: Session, event: CanonicalEvent) -> PoolState:
    pool = _lock_pool(db, event.contract_address)
    if pool is None:
        raise DependencyNotReady(f"pool {event.contract_address} not created yet")
    return pool


class PoolLifecycleApplier:

    def handlers(self) -> List[EventHandler]:
        return [
            EventHandler(abi.POOL_CREATED_TOPIC, "PoolCreated", POOL_DOMAIN,
                         self.apply_pool_created, self.revert_pool_created),
            EventHandler(abi.TIER_COMMITTED_TOPIC, "TierCommitted", POOL_DOMAIN,
                         self.apply_tier_committed, self.revert_tier_committed),
            EventHandler(abi.POOL_STATUS_UPDATED_TOPIC, "PoolStatusUpdated", POOL_DOMAIN,
                         self.apply_status_updated, self.revert_status_updated),
            EventHandler(abi.REVENUE_RECEIVED_TOPIC, "RevenueReceived", POOL_DOMAIN,
                         self.apply_revenue_received, self.revert_revenue_received),
            EventHandler(abi.REVENUE_DISTRIBUTED_TOPIC, "RevenueDistributed", POOL_DOMAIN,
                         self.apply_revenue_distributed, self.revert_revenue_distributed),
        ]

    # ------------------------------------------------------------------
    # PoolCreated
    # ------------------------------------------------------------------
    def apply_pool_created(self, db: Session, event: CanonicalEvent) -> dict:
        args = decode_event(abi.POOL_CREATED_ABI, event)
        address = args["pool"]
        cap = args["capAmount"] or None

        pool = _lock_pool(db, address)
        if pool is not None and pool.status != DRAFT:
            raise ApplyError(f"pool {address} already exists with status {pool.status}")

        promoted = pool is not None
        draft_snapshot = None
        if promoted:
            draft_snapshot = {f: _json_safe(getattr(pool, f)) for f in _CREATION_FIELDS}
        else:
            pool = PoolState(contract_address=address, network=event.network)
            db.add(pool)

        pool.name                  = args["name"]
        pool.unique_id             = args["uniqueId"]
        pool.status                = ACTIVE
        pool.creator_address       = args["creator"]
        pool.owner_address         = args["owner"]
        pool.deposit_token_address = args["depositToken"]
        pool.target_amount         = args["targetAmount"]
        pool.cap_amount            = cap
        pool.ends_at               = _to_datetime(args["endTime"])
        pool.created_block         = event.block_number
        pool.created_tx_hash       = event.transaction_hash
        if pool.raised_amount is None:
            pool.raised_amount = 0
        if pool.revenue_accumulated is None:
            pool.revenue_accumulated = 0
        if pool.revenue_distributed is None:
            pool.revenue_distributed = 0

        log.info(f"🆕 pool {address} ({args['name']}) active{' (promoted from draft)' if promoted else ''}")
        return {"pool": address, "promoted_from_draft": promoted, "draft": draft_snapshot}

    def revert_pool_created(self, db: Session, event: CanonicalEvent, result: dict) -> None:
        address = result["pool"]
        pool = _lock_pool(db, address)
        if pool is None:
            return
        if result.get("promoted_from_draft"):
            draft = result.get("draft") or {}
            for field in _CREATION_FIELDS:
                value = draft.get(field)
                if field in ("target_amount", "cap_amount") and value is not None:
                    value = int(value)
                elif field == "ends_at" and value is not None:
                    value = datetime.fromisoformat(value)
                setattr(pool, field, value)
            pool.status = DRAFT
            return
        db.delete(pool)

    # ------------------------------------------------------------------
    # TierCommitted
    # ------------------------------------------------------------------
    def apply_tier_committed(self, db: Session, event: CanonicalEvent) -> dict:
        args = decode_event(abi.TIER_COMMITTED_ABI, event)
        pool = _require_pool(db, event)

        db.add(TierCommitment(
            network=event.network,
            transaction_hash=event.transaction_hash,
            log_index=event.log_index,
            pool_address=pool.contract_address,
            user_address=args["user"],
            tier_id=args["tierId"],
            amount=args["amount"],
            block_number=event.block_number,
            committed_at=_to_datetime(event.block_timestamp),
        ))
        pool.raised_amount = (pool.raised_amount or 0) + args["amount"]
        return {"pool": pool.contract_address, "amount": str(args["amount"])}

    def revert_tier_committed(self, db: Session, event: CanonicalEvent, result: dict) -> None:
        db.execute(
            delete(TierCommitment).where(
                TierCommitment.network == event.network,
                TierCommitment.transaction_hash == event.transaction_hash,
                TierCommitment.log_index == event.log_index,
            )
        )
        pool = _lock_pool(db, result["pool"])
        if pool is not None:
            pool.raised_amount = max(0, (pool.raised_amount or 0) - int(result["amount"]))

    # ------------------------------------------------------------------
    # PoolStatusUpdated
    # ------------------------------------------------------------------
    def apply_status_updated(self, db: Session, event: CanonicalEvent) -> dict:
        args = decode_event(abi.POOL_STATUS_UPDATED_ABI, event)
        pool = _require_pool(db, event)
        current = pool.status
        code = args["newStatus"]
        target = STATUS_CODES.get(code)

        if target is None:
            raise InvalidStateTransition(pool.contract_address, current, f"code {code}")
        if target == current:
            return {"pool": pool.contract_address, "previous_status": current, "status": target, "changed": False}
        if not can_transition(current, target):
            raise InvalidStateTransition(pool.contract_address, current, target)

        pool.status = target
        log.info(f"🔀 pool {pool.contract_address}: {current} → {target}")
        return {"pool": pool.contract_address, "previous_status": current, "status": target, "changed": True}

    def revert_status_updated(self, db: Session, event: CanonicalEvent, result: dict) -> None:
        if not result.get("changed"):
            return
        pool = _lock_pool(db, result["pool"])
        # a later update already moved the pool on; leave it
        if pool is not None and pool.status == result["status"]:
            pool.status = result["previous_status"]

    # ------------------------------------------------------------------
    # Revenue
    # ------------------------------------------------------------------
    def apply_revenue_received(self, db: Session, event: CanonicalEvent) -> dict:
        args = decode_event(abi.REVENUE_RECEIVED_ABI, event)
        pool = _require_pool(db, event)
        pool.revenue_accumulated = (pool.revenue_accumulated or 0) + args["amount"]
        return {"pool": pool.contract_address, "amount": str(args["amount"])}

    def revert_revenue_received(self, db: Session, event: CanonicalEvent, result: dict) -> None:
        pool = _lock_pool(db, result["pool"])
        if pool is not None:
            pool.revenue_accumulated = max(0, (pool.revenue_accumulated or 0) - int(result["amount"]))

    def apply_revenue_distributed(self, db: Session, event: CanonicalEvent) -> dict:
        args = decode_event(abi.REVENUE_DISTRIBUTED_ABI, event)
        pool = _require_pool(db, event)
        pool.revenue_distributed = (pool.revenue_distributed or 0) + args["amount"]
        return {"pool": pool.contract_address, "amount": str(args["amount"])}

    def revert_revenue_distributed(self, db: Session, event: CanonicalEvent, result: dict) -> None:
        pool = _lock_pool(db, result["pool"])
        if pool is not None:
            pool.revenue_distributed = max(0, (pool.revenue_distributed or 0) - int(result["amount"]))
