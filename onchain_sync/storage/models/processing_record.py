# models/processing_record.py
from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, Index, UniqueConstraint
from onchain_sync.storage.base import Base

PENDING   = "pending"
PROCESSED = "processed"
REVERSED  = "reversed"
FAILED    = "failed"

STATUSES = (PENDING, PROCESSED, REVERSED, FAILED)


class ProcessingRecord(Base):
    """One row per natural key ``(network, transaction_hash, log_index)`` ever seen."""

    __tablename__ = "blockchain_events"

    id               = Column(Integer, primary_key=True)
    network          = Column(String(64),  nullable=False)
    transaction_hash = Column(String(66),  nullable=False)
    log_index        = Column(Integer,     nullable=False)
    block_number     = Column(Integer,     nullable=False)
    block_hash       = Column(String(66),  nullable=True)
    contract_address = Column(String(42),  nullable=False)
    event_topic      = Column(String(66),  nullable=True)
    event_name       = Column(String(64),  nullable=True)      # PoolCreated / Swap …
    domain           = Column(String(16),  nullable=True)      # pool / amm
    status           = Column(String(16),  nullable=False, default=PENDING)
    source           = Column(String(32),  nullable=False)     # webhook / backfill / reprocess / manual
    raw_event        = Column(JSON,        nullable=False)
    result           = Column(JSON,        nullable=True)      # what the applier wrote, read back on reversal
    error_message    = Column(Text,        nullable=True)
    attempts         = Column(Integer,     nullable=False, default=0)
    created_at       = Column(DateTime,    nullable=False, default=datetime.utcnow)
    updated_at       = Column(DateTime,    nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    processed_at     = Column(DateTime,    nullable=True)
    reversed_at      = Column(DateTime,    nullable=True)

    __table_args__ = (
        UniqueConstraint("network", "transaction_hash", "log_index", name="uq_blockchain_events_natural_key"),
        Index("ix_blockchain_events_status_block", "status", "block_number"),
        Index("ix_blockchain_events_tx_hash", "transaction_hash"),
    )

    @property
    def natural_key(self) -> tuple:
        return (self.network, self.transaction_hash, self.log_index)

    def __repr__(self) -> str:
        return f"<ProcessingRecord {self.event_name} {self.transaction_hash}:{self.log_index} {self.status}>"
