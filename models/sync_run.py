from sqlalchemy import Column, String, Enum, DateTime, Float, Integer, Text, Index, Uuid
from datetime import datetime
import uuid
from models.base import Base, BigIntegerType, JSONType, SyncStatus


class SyncRun(Base):
    """
    One execution of the item-to-stock reconciliation.

    Purpose:
    - Audit trail of every run (who triggered it, when, outcome)
    - History and statistics for the operations dashboard
    - Full error list for the run detail screen

    Lifecycle:
    - created as RUNNING once the sync lock is held
    - progress counts are committed at every batch boundary
    - finalized exactly once into SUCCEEDED / PARTIAL / FAILED and never
      revised afterwards
    """
    __tablename__ = "sync_runs"

    id = Column(BigIntegerType, primary_key=True, autoincrement=True)
    run_id = Column(Uuid, default=uuid.uuid4, unique=True, nullable=False, index=True)

    status = Column(Enum(SyncStatus), default=SyncStatus.RUNNING, nullable=False, index=True)

    # Timestamps
    started_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    ended_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Float, nullable=True)

    # Statistics
    total_items = Column(Integer, nullable=False, default=0)
    inserted_count = Column(Integer, nullable=False, default=0)
    updated_count = Column(Integer, nullable=False, default=0)
    unchanged_count = Column(Integer, nullable=False, default=0)
    error_count = Column(Integer, nullable=False, default=0)
    orphaned_count = Column(Integer, nullable=False, default=0)

    # Error tracking: ordered [{item_code, message, error_type}]
    errors = Column(JSONType, nullable=True)
    error_message = Column(Text, nullable=True)

    # Audit
    triggered_by = Column(String(100), nullable=True)
    trigger_source = Column(String(50), nullable=False, default="manual")
    batch_size = Column(Integer, nullable=True)
    lock_token = Column(String(64), nullable=True)

    __table_args__ = (
        Index("idx_sync_run_status_started", "status", "started_at"),
    )
