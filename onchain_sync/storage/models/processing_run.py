from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, DateTime, Numeric, Index
from onchain_sync.storage.base import Base

RUNNING   = "running"
COMPLETED = "completed"
FAILED    = "failed"


class ProcessingRun(Base):
    __tablename__ = "processing_runs"

    id                  = Column(Integer, primary_key=True)
    job_name            = Column(String(64), nullable=False)
    source              = Column(String(32), nullable=False)
    status              = Column(String(16), nullable=False, default=RUNNING)
    from_block          = Column(Integer,    nullable=True)
    to_block            = Column(Integer,    nullable=True)
    chunk_size          = Column(Integer,    nullable=True)
    chunks_total        = Column(Integer,    nullable=False, default=0)
    chunks_failed       = Column(Integer,    nullable=False, default=0)
    events_found        = Column(Integer,    nullable=False, default=0)
    events_new          = Column(Integer,    nullable=False, default=0)
    events_processed    = Column(Integer,    nullable=False, default=0)
    events_skipped      = Column(Integer,    nullable=False, default=0)
    events_failed       = Column(Integer,    nullable=False, default=0)
    pending_reprocessed = Column(Integer,    nullable=False, default=0)
    started_at          = Column(DateTime,   nullable=False, default=datetime.utcnow)
    finished_at         = Column(DateTime,   nullable=True)
    duration_seconds    = Column(Numeric(10, 2), nullable=True)
    error_message       = Column(Text,       nullable=True)

    __table_args__ = (
        Index("ix_processing_runs_started", "started_at"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "job_name": self.job_name,
            "source": self.source,
            "status": self.status,
            "from_block": self.from_block,
            "to_block": self.to_block,
            "chunk_size": self.chunk_size,
            "chunks_total": self.chunks_total,
            "chunks_failed": self.chunks_failed,
            "events_found": self.events_found,
            "events_new": self.events_new,
            "events_processed": self.events_processed,
            "events_skipped": self.events_skipped,
            "events_failed": self.events_failed,
            "pending_reprocessed": self.pending_reprocessed,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": float(self.duration_seconds) if self.duration_seconds is not None else None,
            "error_message": self.error_message,
        }

    def __repr__(self) -> str:
        return f"<ProcessingRun {self.job_name} {self.from_block}-{self.to_block} {self.status}>"
