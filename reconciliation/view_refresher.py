"""
Rebuilds the stock_summary aggregate from non-orphaned stock records
"""

from datetime import datetime
from sqlalchemy import select, delete, func, case
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from models.stock_record import StockRecord
from models.stock_summary import StockSummary
from schemas.sync import ViewRefreshResult

logger = logging.getLogger(__name__)


class ViewRefresher:
    """Recomputes the per-category stock summary in a single transaction"""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def refresh_stock_summary_view(self) -> ViewRefreshResult:
        """
        Replace every stock_summary row with freshly aggregated totals.

        Returns:
            ViewRefreshResult; success=False (and nothing changed) on failure
        """
        adjusted = case(
            (StockRecord.quantity - StockRecord.adjust > 0, StockRecord.quantity - StockRecord.adjust),
            else_=0
        )

        try:
            result = await self.db.execute(
                select(
                    StockRecord.posting_group,
                    func.count(StockRecord.id),
                    func.coalesce(func.sum(StockRecord.quantity), 0),
                    func.coalesce(func.sum(adjusted), 0),
                    func.coalesce(func.sum(adjusted * func.coalesce(StockRecord.unit_price, 0)), 0),
                )
                .where(StockRecord.orphaned_at.is_(None))
                .group_by(StockRecord.posting_group)
            )
            groups = result.all()

            refreshed_at = datetime.utcnow()
            await self.db.execute(delete(StockSummary))
            self.db.add_all([
                StockSummary(
                    posting_group=posting_group,
                    item_count=item_count,
                    total_quantity=float(total_quantity),
                    total_adjusted_quantity=float(total_adjusted),
                    total_stock_value=float(total_value),
                    refreshed_at=refreshed_at
                )
                for posting_group, item_count, total_quantity, total_adjusted, total_value in groups
            ])
            await self.db.commit()

        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Stock summary refresh failed: {str(e)}")
            return ViewRefreshResult(
                success=False,
                message=f"Stock summary refresh failed: {str(e)}"
            )

        logger.info(f"Stock summary refreshed: {len(groups)} posting groups")
        return ViewRefreshResult(
            success=True,
            message=f"Stock summary refreshed with {len(groups)} posting groups",
            rows_written=len(groups),
            refreshed_at=refreshed_at
        )
