# onchain_sync/pipeline/appliers/amm_pair.py
# --------------------------------------------------------------
# Uniswap V2 pair projection: amm_pairs + amm_transactions.
# --------------------------------------------------------------
import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from onchain_sync.pipeline.errors import DependencyNotReady
from onchain_sync.pipeline.router import EventHandler, AMM_DOMAIN
from onchain_sync.sources.evm import abi
from onchain_sync.sources.evm.decoder import decode_event
from onchain_sync.storage.models.amm_pair import (
    AmmPairState, AmmTransactionRecord, MINT, BURN, SWAP, SYNC, LP_MINT, LP_BURN,
)
from onchain_sync.utils.types import CanonicalEvent

log = logging.getLogger(__name__)


def _to_datetime(ts: Optional[int]) -> Optional[datetime]:
    if not ts:
        return None
    return datetime.fromtimestamp(int(ts), tz=timezone.utc).replace(tzinfo=None)


def _lock_pair(db: Session, address: str) -> Optional[AmmPairState]:
    return db.execute(
        select(AmmPairState).where(AmmPairState.pair_address == address).with_for_update()
    ).scalar_one_or_none()


def _require_pair(db: Session, event: CanonicalEvent) -> AmmPairState:
    pair = _lock_pair(db, event.contract_address)
    if pair is None:
        raise DependencyNotReady(f"pair {event.contract_address} not created yet")
    return pair


def replay_reserves(rows: List[AmmTransactionRecord]) -> dict:
    """
    Fold a pair's ledger (ordered by block, log index) into its current state.

    A V2 pair emits ``Sync`` with the post-event reserves in the same
    transaction as every Mint/Burn/Swap, so Sync is authoritative; the
    amounts of a Mint/Burn/Swap are only applied when its transaction
    carries no Sync for this pair.
    """
    synced_txs = {r.transaction_hash for r in rows if r.event_type == SYNC}

    state = {
        "reserve0": 0, "reserve1": 0, "total_supply": 0,
        "last_sync_block": None, "last_sync_timestamp": None,
        "last_event_block": None, "last_event_log_index": None,
    }
    for r in rows:
        state["last_event_block"] = r.block_number
        state["last_event_log_index"] = r.log_index
        if r.event_type == SYNC:
            state["reserve0"] = r.reserve0 or 0
            state["reserve1"] = r.reserve1 or 0
            state["last_sync_block"] = r.block_number
            state["last_sync_timestamp"] = r.block_timestamp
        elif r.event_type == LP_MINT:
            state["total_supply"] += r.liquidity or 0
        elif r.event_type == LP_BURN:
            state["total_supply"] -= r.liquidity or 0
        elif r.transaction_hash in synced_txs:
            continue
        elif r.event_type in (MINT, SWAP, BURN):
            state["reserve0"] += (r.amount0_in or 0) - (r.amount0_out or 0)
            state["reserve1"] += (r.amount1_in or 0) - (r.amount1_out or 0)
    return state


class AmmPairApplier:

    def handlers(self) -> List[EventHandler]:
        return [
            EventHandler(abi.PAIR_CREATED_TOPIC, "PairCreated", AMM_DOMAIN,
                         self.apply_pair_created, self.revert_pair_created),
            EventHandler(abi.MINT_TOPIC, "Mint", AMM_DOMAIN,
                         self.apply_mint, self.revert_transaction,
                         accepts=self.is_known_pair),
            EventHandler(abi.BURN_TOPIC, "Burn", AMM_DOMAIN,
                         self.apply_burn, self.revert_transaction,
                         accepts=self.is_known_pair),
            EventHandler(abi.SWAP_TOPIC, "Swap", AMM_DOMAIN,
                         self.apply_swap, self.revert_transaction,
                         accepts=self.is_known_pair),
            EventHandler(abi.SYNC_TOPIC, "Sync", AMM_DOMAIN,
                         self.apply_sync, self.revert_transaction,
                         accepts=self.is_known_pair),
            EventHandler(abi.TRANSFER_TOPIC, "Transfer", AMM_DOMAIN,
                         self.apply_lp_transfer, self.revert_transaction,
                         accepts=self.is_known_pair),
        ]

    # ------------------------------------------------------------------
    # reserves
    # ------------------------------------------------------------------
    def recompute(self, db: Session, pair: AmmPairState) -> dict:
        """Replace the pair's reserves/supply with the replay of its live ledger."""
        db.flush()
        rows = db.execute(
            select(AmmTransactionRecord)
            .where(
                AmmTransactionRecord.pair_address == pair.pair_address,
                AmmTransactionRecord.reversed.is_(False),
            )
            .order_by(AmmTransactionRecord.block_number, AmmTransactionRecord.log_index)
        ).scalars().all()

        state = replay_reserves(rows)
        pair.reserve0            = state["reserve0"]
        pair.reserve1            = state["reserve1"]
        pair.total_supply        = state["total_supply"]
        pair.last_sync_block     = state["last_sync_block"]
        pair.last_sync_timestamp = state["last_sync_timestamp"]
        pair.last_event_block     = state["last_event_block"]
        pair.last_event_log_index = state["last_event_log_index"]
        return state

    def _extends_ledger(self, pair: AmmPairState, event: CanonicalEvent) -> bool:
        if pair.last_event_block is None:
            return True
        return (event.block_number, event.log_index) > (pair.last_event_block, pair.last_event_log_index or 0)

    def _tx_has_sync(self, db: Session, pair: AmmPairState, tx_hash: str) -> bool:
        return db.execute(
            select(AmmTransactionRecord.id).where(
                AmmTransactionRecord.network == pair.network,
                AmmTransactionRecord.transaction_hash == tx_hash,
                AmmTransactionRecord.pair_address == pair.pair_address,
                AmmTransactionRecord.event_type == SYNC,
                AmmTransactionRecord.reversed.is_(False),
            )
        ).first() is not None

    def advance(self, db: Session, pair: AmmPairState, row: AmmTransactionRecord) -> None:
        """Fold one ledger row that sorts after everything already applied; same rules as the replay."""
        if row.event_type == SYNC:
            pair.reserve0 = row.reserve0 or 0
            pair.reserve1 = row.reserve1 or 0
            pair.last_sync_block = row.block_number
            pair.last_sync_timestamp = row.block_timestamp
        elif row.event_type == LP_MINT:
            pair.total_supply = (pair.total_supply or 0) + (row.liquidity or 0)
        elif row.event_type == LP_BURN:
            pair.total_supply = (pair.total_supply or 0) - (row.liquidity or 0)
        elif not self._tx_has_sync(db, pair, row.transaction_hash):
            pair.reserve0 = (pair.reserve0 or 0) + (row.amount0_in or 0) - (row.amount0_out or 0)
            pair.reserve1 = (pair.reserve1 or 0) + (row.amount1_in or 0) - (row.amount1_out or 0)
        pair.last_event_block = row.block_number
        pair.last_event_log_index = row.log_index

    def is_known_pair(self, db: Session, event: CanonicalEvent) -> bool:
        return db.execute(
            select(AmmPairState.id).where(AmmPairState.pair_address == event.contract_address)
        ).first() is not None

    # ------------------------------------------------------------------
    # PairCreated (factory)
    # ------------------------------------------------------------------
    def apply_pair_created(self, db: Session, event: CanonicalEvent) -> dict:
        args = decode_event(abi.PAIR_CREATED_ABI, event)
        address = args["pair"]

        pair = _lock_pair(db, address)
        if pair is not None:
            return {"pair": address, "created": False}

        pair = AmmPairState(
            pair_address=address,
            network=event.network,
            token0_address=args["token0"],
            token1_address=args["token1"],
            factory_address=event.contract_address,
            created_at_block=event.block_number,
            reserve0=0,
            reserve1=0,
            total_supply=0,
        )
        db.add(pair)
        # ledger rows that arrived before the factory event
        self.recompute(db, pair)
        log.info(f"🆕 pair {address} ({args['token0']}/{args['token1']})")
        return {"pair": address, "created": True}

    def revert_pair_created(self, db: Session, event: CanonicalEvent, result: dict) -> None:
        if not result.get("created"):
            return
        pair = _lock_pair(db, result["pair"])
        if pair is not None:
            db.delete(pair)

    # ------------------------------------------------------------------
    # pair events
    # ------------------------------------------------------------------
    def _record(self, db: Session, event: CanonicalEvent, pair: AmmPairState,
                event_type: str, args: dict, **amounts) -> dict:
        before = (pair.reserve0, pair.reserve1)
        row = AmmTransactionRecord(
            network=event.network,
            transaction_hash=event.transaction_hash,
            log_index=event.log_index,
            block_number=event.block_number,
            block_timestamp=_to_datetime(event.block_timestamp),
            pair_address=pair.pair_address,
            event_type=event_type,
            raw_event_data={k: (str(v) if isinstance(v, int) else v) for k, v in args.items()},
            **amounts,
        )
        db.add(row)
        if self._extends_ledger(pair, event):
            self.advance(db, pair, row)
        else:
            # landed behind rows already applied
            log.info(f"↩️ {event_type} for {pair.pair_address} at {event.block_number}:{event.log_index} "
                     f"is out of order, replaying")
            self.recompute(db, pair)
        return {
            "pair": pair.pair_address,
            "event_type": event_type,
            "reserves_before": [str(before[0]), str(before[1])],
            "reserves_after": [str(pair.reserve0), str(pair.reserve1)],
        }

    def apply_mint(self, db: Session, event: CanonicalEvent) -> dict:
        args = decode_event(abi.MINT_ABI, event)
        pair = _require_pair(db, event)
        return self._record(db, event, pair, MINT, args,
                            sender=args["sender"],
                            amount0_in=args["amount0"], amount1_in=args["amount1"])

    def apply_burn(self, db: Session, event: CanonicalEvent) -> dict:
        args = decode_event(abi.BURN_ABI, event)
        pair = _require_pair(db, event)
        return self._record(db, event, pair, BURN, args,
                            sender=args["sender"], recipient=args["to"],
                            amount0_out=args["amount0"], amount1_out=args["amount1"])

    def apply_swap(self, db: Session, event: CanonicalEvent) -> dict:
        args = decode_event(abi.SWAP_ABI, event)
        pair = _require_pair(db, event)
        return self._record(db, event, pair, SWAP, args,
                            sender=args["sender"], recipient=args["to"],
                            amount0_in=args["amount0In"], amount1_in=args["amount1In"],
                            amount0_out=args["amount0Out"], amount1_out=args["amount1Out"])

    def apply_sync(self, db: Session, event: CanonicalEvent) -> dict:
        args = decode_event(abi.SYNC_ABI, event)
        pair = _require_pair(db, event)
        return self._record(db, event, pair, SYNC, args,
                            reserve0=args["reserve0"], reserve1=args["reserve1"])

    def apply_lp_transfer(self, db: Session, event: CanonicalEvent) -> dict:
        args = decode_event(abi.TRANSFER_ABI, event)
        pair = _require_pair(db, event)
        if args["from"] == abi.ZERO_ADDRESS:
            return self._record(db, event, pair, LP_MINT, args,
                                recipient=args["to"], liquidity=args["value"])
        if args["to"] == abi.ZERO_ADDRESS:
            return self._record(db, event, pair, LP_BURN, args,
                                sender=args["from"], liquidity=args["value"])
        # LP tokens moving between holders do not touch supply
        return {"pair": pair.pair_address, "event_type": None}

    def revert_transaction(self, db: Session, event: CanonicalEvent, result: dict) -> None:
        if not result.get("event_type"):
            return
        pair = _lock_pair(db, result["pair"])
        row = db.execute(
            select(AmmTransactionRecord).where(
                AmmTransactionRecord.network == event.network,
                AmmTransactionRecord.transaction_hash == event.transaction_hash,
                AmmTransactionRecord.log_index == event.log_index,
            )
        ).scalar_one_or_none()
        if row is not None and not row.reversed:
            row.reversed = True
            row.reversed_at = datetime.utcnow()
        if pair is not None:
            self.recompute(db, pair)
