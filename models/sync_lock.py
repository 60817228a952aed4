from sqlalchemy import Column, String, DateTime
from datetime import datetime
from models.base import Base


class SyncLock(Base):
    """
    Mutual-exclusion marker for reconciliation runs.

    Design:
    - One row per lock name; the stock sync uses a single row
    - holder_token is NULL while the lock is free
    - Acquisition is a conditional UPDATE (compare-and-set), never a
      read-then-write
    - expires_at bounds how long a crashed holder can block new runs;
      the holder pushes it forward at every batch boundary
    """
    __tablename__ = "sync_locks"

    name = Column(String(100), primary_key=True)

    holder_token = Column(String(64), nullable=True)
    owner = Column(String(100), nullable=True)

    acquired_at = Column(DateTime, nullable=True)
    heartbeat_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)

    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
