from sqlalchemy import Column, String, Text, Float, Boolean, DateTime, ForeignKey, Index
from datetime import datetime
from models.base import Base, BigIntegerType


class StockRecord(Base):
    """
    Derived on-hand stock record, one per catalog item_code.

    Ownership:
    - quantity / adjust belong to stock movements; reconciliation only
      initialises them when the record is first inserted
    - the catalog mirror fields below are overwritten on every changed sync
    - last_synced_at never moves backwards for a given item
    - orphaned_at is set when the catalog item disappears (soft flag,
      records are never deleted by reconciliation)
    """
    __tablename__ = "stock_records"

    id = Column(BigIntegerType, primary_key=True, autoincrement=True)
    item_code = Column(String(50), nullable=False)

    # On-hand quantities
    quantity = Column(Float, nullable=False, default=0)
    adjust = Column(Float, nullable=False, default=0)

    # Mirrored catalog fields
    description = Column(Text, nullable=True)
    posting_group = Column(String(50), nullable=True, index=True)
    base_unit_code = Column(String(20), nullable=True)
    unit_price = Column(Float, nullable=True)
    vendor_code = Column(String(50), nullable=True)
    brand = Column(String(100), nullable=True)
    attribut_1 = Column(String(100), nullable=True)
    pricelist = Column(Boolean, nullable=True)

    # Sync tracking
    last_synced_at = Column(DateTime, nullable=True, index=True)
    orphaned_at = Column(DateTime, nullable=True)
    last_sync_run_id = Column(BigIntegerType, ForeignKey("sync_runs.id"), nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_stock_item_code", "item_code", unique=True),
        Index("idx_stock_orphaned", "orphaned_at"),
    )
