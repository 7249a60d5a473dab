# models/amm_pair.py
from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, DateTime, JSON, Index, UniqueConstraint
from onchain_sync.storage.base import Base
from onchain_sync.storage.types import BigUint

MINT    = "mint"
BURN    = "burn"
SWAP    = "swap"
SYNC    = "sync"
LP_MINT = "lp_mint"
LP_BURN = "lp_burn"


class AmmPairState(Base):
    __tablename__ = "amm_pairs"

    id                  = Column(Integer, primary_key=True)
    pair_address        = Column(String(42), nullable=False, unique=True)
    network             = Column(String(64), nullable=False)
    token0_address      = Column(String(42), nullable=False)
    token1_address      = Column(String(42), nullable=False)
    factory_address     = Column(String(42), nullable=True)
    created_at_block    = Column(Integer,    nullable=True)
    reserve0            = Column(BigUint,    nullable=False, default=0)
    reserve1            = Column(BigUint,    nullable=False, default=0)
    total_supply        = Column(BigUint,    nullable=False, default=0)
    last_sync_block     = Column(Integer,    nullable=True)
    last_sync_timestamp = Column(DateTime,   nullable=True)
    last_event_block    = Column(Integer,    nullable=True)    # newest ledger row applied
    last_event_log_index = Column(Integer,   nullable=True)
    updated_at          = Column(DateTime,   nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<AmmPairState {self.pair_address} r0={self.reserve0} r1={self.reserve1}>"


class AmmTransactionRecord(Base):
    """Append-only ledger of pair events; reserves are rebuilt from it."""

    __tablename__ = "amm_transactions"

    id               = Column(Integer, primary_key=True)
    network          = Column(String(64), nullable=False)
    transaction_hash = Column(String(66), nullable=False)
    log_index        = Column(Integer,    nullable=False)
    block_number     = Column(Integer,    nullable=False)
    block_timestamp  = Column(DateTime,   nullable=True)
    pair_address     = Column(String(42), nullable=False)
    event_type       = Column(String(16), nullable=False)   # mint / burn / swap / sync / lp_mint / lp_burn
    sender           = Column(String(42), nullable=True)
    recipient        = Column(String(42), nullable=True)
    amount0_in       = Column(BigUint,    nullable=False, default=0)
    amount1_in       = Column(BigUint,    nullable=False, default=0)
    amount0_out      = Column(BigUint,    nullable=False, default=0)
    amount1_out      = Column(BigUint,    nullable=False, default=0)
    reserve0         = Column(BigUint,    nullable=True)    # sync only
    reserve1         = Column(BigUint,    nullable=True)
    liquidity        = Column(BigUint,    nullable=True)    # lp_mint / lp_burn only
    raw_event_data   = Column(JSON,       nullable=True)
    reversed         = Column(Boolean,    nullable=False, default=False)
    reversed_at      = Column(DateTime,   nullable=True)
    created_at       = Column(DateTime,   nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("network", "transaction_hash", "log_index", name="uq_amm_transactions_natural_key"),
        Index("ix_amm_transactions_pair_order", "pair_address", "block_number", "log_index"),
    )

    def __repr__(self) -> str:
        return f"<AmmTransactionRecord {self.event_type} {self.pair_address} {self.transaction_hash}:{self.log_index}>"
