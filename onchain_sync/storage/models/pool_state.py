# models/pool_state.py
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Index, UniqueConstraint
from onchain_sync.storage.base import Base
from onchain_sync.storage.types import BigUint

DRAFT     = "draft"
ACTIVE    = "active"
FUNDED    = "funded"
FAILED    = "failed"
EXECUTING = "executing"
CLOSED    = "closed"


class PoolState(Base):
    __tablename__ = "pools"

    id                     = Column(Integer, primary_key=True)
    contract_address       = Column(String(42),  nullable=False, unique=True)   # lower‑case
    network                = Column(String(64),  nullable=False)
    unique_id              = Column(String(128), nullable=True)
    name                   = Column(String(256), nullable=True)
    status                 = Column(String(16),  nullable=False, default=DRAFT)
    creator_address        = Column(String(42),  nullable=True)
    owner_address          = Column(String(42),  nullable=True)
    deposit_token_address  = Column(String(42),  nullable=True)
    lp_token_address       = Column(String(42),  nullable=True)
    target_amount          = Column(BigUint,     nullable=True)
    cap_amount             = Column(BigUint,     nullable=True)       # NULL when uncapped
    raised_amount          = Column(BigUint,     nullable=False, default=0)
    revenue_accumulated    = Column(BigUint,     nullable=False, default=0)
    revenue_distributed    = Column(BigUint,     nullable=False, default=0)
    ends_at                = Column(DateTime,    nullable=True)
    created_block          = Column(Integer,     nullable=True)
    created_tx_hash        = Column(String(66),  nullable=True)
    created_at             = Column(DateTime,    nullable=False, default=datetime.utcnow)
    updated_at             = Column(DateTime,    nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_pools_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<PoolState {self.contract_address} {self.status} raised={self.raised_amount}>"


class TierCommitment(Base):
    __tablename__ = "tier_commitments"

    id               = Column(Integer, primary_key=True)
    network          = Column(String(64), nullable=False)
    transaction_hash = Column(String(66), nullable=False)
    log_index        = Column(Integer,    nullable=False)
    pool_address     = Column(String(42), nullable=False)
    user_address     = Column(String(42), nullable=False)
    tier_id          = Column(BigUint,    nullable=False)
    amount           = Column(BigUint,    nullable=False)
    block_number     = Column(Integer,    nullable=False)
    committed_at     = Column(DateTime,   nullable=True)

    __table_args__ = (
        UniqueConstraint("network", "transaction_hash", "log_index", name="uq_tier_commitments_natural_key"),
        Index("ix_tier_commitments_pool", "pool_address"),
    )

    def __repr__(self) -> str:
        return f"<TierCommitment {self.pool_address} {self.user_address} tier={self.tier_id} {self.amount}>"
