"""
Read and write stock records with dialect-aware upsert logic (idempotency)
"""

from typing import Dict, Iterable, List, Optional
from datetime import datetime
from sqlalchemy import select, update, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from core.database import dialect_insert
from core.exceptions import PersistenceError
from models.catalog_item import CatalogItem
from models.stock_record import StockRecord
from schemas.catalog import CatalogItemSnapshot, SYNCED_FIELDS
import logging

logger = logging.getLogger(__name__)


class StockLoader:
    """
    Store operations used by the reconciliation engine.

    Ensures:
    - One stock record per item_code, however many times a batch is replayed
    - quantity / adjust are only initialised on insert, never overwritten
    - No commit: the engine commits each batch together with run progress

    Every database failure surfaces as PersistenceError so the engine can
    account for it at batch granularity.
    """

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def read(self, item_codes: Iterable[str]) -> Dict[str, StockRecord]:
        """Return existing stock records keyed by item_code"""
        codes = list(item_codes)
        if not codes:
            return {}

        try:
            result = await self.db.execute(
                select(StockRecord)
                .where(StockRecord.item_code.in_(codes))
                .execution_options(populate_existing=True)
            )
        except SQLAlchemyError as e:
            raise PersistenceError(
                "Failed to read stock records",
                context={"operation": "SELECT", "table_name": "stock_records", "batch_size": len(codes)},
                original_exception=e
            )

        return {record.item_code: record for record in result.scalars().all()}

    async def upsert(
        self,
        snapshots: List[CatalogItemSnapshot],
        synced_at: datetime,
        sync_run_id: Optional[int] = None
    ) -> int:
        """
        Insert new stock records and overwrite mirrored fields of existing ones
        (INSERT ... ON CONFLICT (item_code) DO UPDATE).

        Returns:
            Number of rows written
        """
        if not snapshots:
            return 0

        rows = []
        for snapshot in snapshots:
            row = snapshot.stock_values()
            row.update({
                "quantity": 0,
                "adjust": 0,
                "last_synced_at": synced_at,
                "orphaned_at": None,
                "last_sync_run_id": sync_run_id,
                "created_at": synced_at,
                "updated_at": synced_at,
            })
            rows.append(row)

        insert = dialect_insert(self.db)
        stmt = insert(StockRecord).values(rows)

        set_ = {field: getattr(stmt.excluded, field) for field in SYNCED_FIELDS}
        set_.update({
            "last_synced_at": stmt.excluded.last_synced_at,
            "orphaned_at": None,
            "last_sync_run_id": stmt.excluded.last_sync_run_id,
            "updated_at": stmt.excluded.updated_at,
        })
        stmt = stmt.on_conflict_do_update(index_elements=["item_code"], set_=set_)

        try:
            await self.db.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceError(
                "Failed to upsert stock records",
                context={"operation": "UPSERT", "table_name": "stock_records", "batch_size": len(rows)},
                original_exception=e
            )

        logger.debug(f"Upserted {len(rows)} stock records")
        return len(rows)

    async def touch(
        self,
        item_codes: Iterable[str],
        synced_at: datetime,
        sync_run_id: Optional[int] = None
    ) -> int:
        """Stamp unchanged records with the sync time without altering any field"""
        codes = list(item_codes)
        if not codes:
            return 0

        try:
            result = await self.db.execute(
                update(StockRecord)
                .where(StockRecord.item_code.in_(codes))
                .values(last_synced_at=synced_at, last_sync_run_id=sync_run_id)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            raise PersistenceError(
                "Failed to stamp unchanged stock records",
                context={"operation": "TOUCH", "table_name": "stock_records", "batch_size": len(codes)},
                original_exception=e
            )

        return result.rowcount

    async def flag_orphans(self, flagged_at: datetime) -> int:
        """
        Soft-flag stock records whose item_code is absent from the catalog.

        The anti-join runs in the database, so no stock rows are loaded
        into memory. Records are never deleted; previously flagged ones
        keep their original orphaned_at.

        Returns:
            Number of stock records without a catalog item after this call
        """
        catalog_codes = (
            select(func.trim(CatalogItem.item_code))
            .where(CatalogItem.item_code.isnot(None))
        )
        is_orphan = StockRecord.item_code.notin_(catalog_codes)

        try:
            result = await self.db.execute(
                update(StockRecord)
                .where(is_orphan, StockRecord.orphaned_at.is_(None))
                .values(orphaned_at=flagged_at)
                .execution_options(synchronize_session=False)
            )
            orphaned = await self.db.scalar(
                select(func.count(StockRecord.id)).where(is_orphan)
            )
        except SQLAlchemyError as e:
            raise PersistenceError(
                "Failed to flag orphaned stock records",
                context={"operation": "FLAG_ORPHANS", "table_name": "stock_records"},
                original_exception=e
            )

        if result.rowcount:
            logger.info(f"Flagged {result.rowcount} stock records as orphaned")

        return orphaned or 0
