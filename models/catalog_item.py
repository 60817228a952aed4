from sqlalchemy import Column, String, Text, Float, Boolean, DateTime, Index
from datetime import datetime
from models.base import Base, BigIntegerType


class CatalogItem(Base):
    """
    Authoritative catalog record for a sellable/stocked item.

    Written only by the catalog management screens; the reconciliation
    core treats this table as read-only input.

    item_code is nullable on purpose: rows imported with a missing code
    exist in practice and must surface as per-item sync errors rather than
    being rejected at the storage layer.
    """
    __tablename__ = "catalog_items"

    id = Column(BigIntegerType, primary_key=True, autoincrement=True)
    item_code = Column(String(50), nullable=True)

    description = Column(Text, nullable=True)
    posting_group = Column(String(50), nullable=True, index=True)  # category key
    base_unit_code = Column(String(20), nullable=True)
    unit_price = Column(Float, nullable=True)
    vendor_code = Column(String(50), nullable=True, index=True)
    brand = Column(String(100), nullable=True)
    attribut_1 = Column(String(100), nullable=True)
    pricelist = Column(Boolean, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_catalog_item_code", "item_code", unique=True),
    )
