from sqlalchemy import Column, String, Integer, Float, DateTime
from datetime import datetime
from models.base import Base, BigIntegerType


class StockSummary(Base):
    """
    Precomputed per-category stock totals for reporting dashboards.

    Rebuilt wholesale by the view refresher from non-orphaned stock
    records; rows are never edited in place.
    """
    __tablename__ = "stock_summary"

    id = Column(BigIntegerType, primary_key=True, autoincrement=True)
    posting_group = Column(String(50), nullable=True, index=True)

    item_count = Column(Integer, nullable=False, default=0)
    total_quantity = Column(Float, nullable=False, default=0)
    total_adjusted_quantity = Column(Float, nullable=False, default=0)  # sum(max(0, quantity - adjust))
    total_stock_value = Column(Float, nullable=False, default=0)

    refreshed_at = Column(DateTime, nullable=False, default=datetime.utcnow)
