# ============================================================================
# File: reconciliation/validation.py
# Description: Read-only diagnostics of the reconciliation system
# ============================================================================
"""
Validation Service - checks that a sync can run and what it would trip on.

Checks, in order:
- Structure: required tables, columns and unique item_code indexes
- Data: missing/blank codes, duplicate codes, negative prices, orphans
- Operations: stuck lock, empty history, last run failed

Nothing here writes to the database.
"""

from typing import Dict, List, Optional
from datetime import datetime
from sqlalchemy import select, func, inspect, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from core.exceptions import ConfigurationError
from models.base import SyncStatus
from models.catalog_item import CatalogItem
from models.stock_record import StockRecord
from models.sync_lock import SyncLock
from models.sync_run import SyncRun
from reconciliation.lock import STOCK_SYNC_LOCK
from schemas.sync import ValidationIssue, ValidationResult

logger = logging.getLogger(__name__)

INIT_DB_RECOMMENDATION = "Run scripts/init_db.py to create the missing schema objects"

REQUIRED_COLUMNS: Dict[str, List[str]] = {
    "catalog_items": ["id", "item_code", "posting_group", "unit_price"],
    "stock_records": ["id", "item_code", "quantity", "adjust", "last_synced_at", "orphaned_at"],
    "sync_runs": ["id", "run_id", "status", "started_at", "total_items", "error_count"],
    "sync_locks": ["name", "holder_token", "expires_at"],
}

UNIQUE_ITEM_CODE_TABLES = ("catalog_items", "stock_records")

# Keep the report readable on badly broken catalogs
MAX_ISSUES_PER_CHECK = 50


class ValidationService:
    """Diagnoses the catalog, stock and sync bookkeeping tables"""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def validate_sync_system(self) -> ValidationResult:
        issues: List[ValidationIssue] = []
        recommendations: List[str] = []

        try:
            config_errors = await self.db.run_sync(self._inspect_schema)
        except SQLAlchemyError as e:
            logger.error(f"Schema inspection failed: {str(e)}")
            return ValidationResult(
                is_valid=False,
                issues=[ValidationIssue(category="system", description=f"Could not inspect database schema: {str(e)}")],
                recommendations=["Check database connectivity and DATABASE_URL"]
            )

        for error in config_errors:
            issues.append(ValidationIssue(category="configuration", description=error.message))
            if error.recommendation and error.recommendation not in recommendations:
                recommendations.append(error.recommendation)

        # Data checks need the tables; skip them when the structure is broken
        if not config_errors:
            try:
                issues.extend(await self._check_missing_codes())
                issues.extend(await self._check_duplicate_codes())
                issues.extend(await self._check_negative_prices())
                issues.extend(await self._check_orphans(recommendations))
                recommendations.extend(await self._operational_recommendations())
            except SQLAlchemyError as e:
                logger.error(f"Data validation failed: {str(e)}")
                issues.append(ValidationIssue(category="system", description=f"Data validation query failed: {str(e)}"))
            finally:
                # Leave no transaction open on the caller's session
                await self.db.rollback()

        result = ValidationResult(
            is_valid=not issues,
            issues=issues,
            recommendations=recommendations,
            checked_at=datetime.utcnow()
        )
        logger.info(f"Sync system validation: valid={result.is_valid}, issues={len(issues)}")
        return result

    # --------------------------------------------------
    # Structure
    # --------------------------------------------------

    @staticmethod
    def _inspect_schema(sync_session) -> List[ConfigurationError]:
        inspector = inspect(sync_session.connection())
        tables = set(inspector.get_table_names())
        errors: List[ConfigurationError] = []

        for table, columns in REQUIRED_COLUMNS.items():
            if table not in tables:
                errors.append(ConfigurationError(
                    f"Required table '{table}' does not exist",
                    recommendation=INIT_DB_RECOMMENDATION,
                    context={"table_name": table}
                ))
                continue

            present = {column["name"] for column in inspector.get_columns(table)}
            missing = [column for column in columns if column not in present]
            if missing:
                errors.append(ConfigurationError(
                    f"Table '{table}' is missing columns: {', '.join(missing)}",
                    recommendation=INIT_DB_RECOMMENDATION,
                    context={"table_name": table, "missing_columns": missing}
                ))

        for table in UNIQUE_ITEM_CODE_TABLES:
            if table not in tables:
                continue
            if not ValidationService._has_unique_item_code(inspector, table):
                errors.append(ConfigurationError(
                    f"Table '{table}' has no unique index on item_code",
                    recommendation=f"Create a unique index on {table}.item_code; duplicate codes break idempotent upserts",
                    context={"table_name": table}
                ))

        return errors

    @staticmethod
    def _has_unique_item_code(inspector, table: str) -> bool:
        for index in inspector.get_indexes(table):
            if index.get("unique") and index.get("column_names") == ["item_code"]:
                return True
        for constraint in inspector.get_unique_constraints(table):
            if constraint.get("column_names") == ["item_code"]:
                return True
        return False

    # --------------------------------------------------
    # Data
    # --------------------------------------------------

    async def _check_missing_codes(self) -> List[ValidationIssue]:
        result = await self.db.execute(
            select(CatalogItem.id)
            .where(or_(CatalogItem.item_code.is_(None), func.trim(CatalogItem.item_code) == ""))
            .order_by(CatalogItem.id)
            .limit(MAX_ISSUES_PER_CHECK)
        )
        return [
            ValidationIssue(
                category="missing_item_code",
                description=f"Catalog item id={catalog_id} has no item_code"
            )
            for catalog_id in result.scalars().all()
        ]

    async def _check_duplicate_codes(self) -> List[ValidationIssue]:
        code = func.trim(CatalogItem.item_code)
        result = await self.db.execute(
            select(code, func.count(CatalogItem.id))
            .where(CatalogItem.item_code.isnot(None), code != "")
            .group_by(code)
            .having(func.count(CatalogItem.id) > 1)
            .order_by(code)
            .limit(MAX_ISSUES_PER_CHECK)
        )
        return [
            ValidationIssue(
                item_code=item_code,
                category="duplicate_item_code",
                description=f"item_code '{item_code}' appears {count} times in the catalog"
            )
            for item_code, count in result.all()
        ]

    async def _check_negative_prices(self) -> List[ValidationIssue]:
        result = await self.db.execute(
            select(CatalogItem.item_code, CatalogItem.unit_price)
            .where(CatalogItem.unit_price < 0)
            .order_by(CatalogItem.id)
            .limit(MAX_ISSUES_PER_CHECK)
        )
        return [
            ValidationIssue(
                item_code=item_code,
                category="invalid_unit_price",
                description=f"unit_price {unit_price} is negative"
            )
            for item_code, unit_price in result.all()
        ]

    async def _check_orphans(self, recommendations: List[str]) -> List[ValidationIssue]:
        """Stock records with no catalog item; flagged ones are already known"""
        catalog_codes = select(func.trim(CatalogItem.item_code)).where(CatalogItem.item_code.isnot(None))

        result = await self.db.execute(
            select(StockRecord.item_code)
            .where(StockRecord.orphaned_at.is_(None), StockRecord.item_code.notin_(catalog_codes))
            .order_by(StockRecord.item_code)
            .limit(MAX_ISSUES_PER_CHECK)
        )
        issues = [
            ValidationIssue(
                item_code=item_code,
                category="orphaned_stock_record",
                description=f"Stock record '{item_code}' has no matching catalog item"
            )
            for item_code in result.scalars().all()
        ]
        if issues:
            recommendations.append("Run a manual sync to flag stock records whose catalog item was removed")

        flagged = await self.db.scalar(
            select(func.count(StockRecord.id)).where(StockRecord.orphaned_at.isnot(None))
        )
        if flagged:
            recommendations.append(
                f"{flagged} stock records are flagged as orphaned; review them before archiving"
            )

        return issues

    # --------------------------------------------------
    # Operations
    # --------------------------------------------------

    async def _operational_recommendations(self) -> List[str]:
        recommendations: List[str] = []
        now = datetime.utcnow()

        lock = await self.db.scalar(select(SyncLock).where(SyncLock.name == STOCK_SYNC_LOCK))
        if lock is not None and lock.holder_token and lock.expires_at and lock.expires_at < now:
            recommendations.append(
                f"Sync lock is held by {lock.owner or 'an unknown holder'} but expired at "
                f"{lock.expires_at.isoformat()}; the next trigger will reclaim it"
            )

        last_run: Optional[SyncRun] = await self.db.scalar(
            select(SyncRun)
            .where(SyncRun.status != SyncStatus.RUNNING)
            .order_by(SyncRun.ended_at.desc(), SyncRun.id.desc())
            .limit(1)
        )
        if last_run is None:
            recommendations.append("No sync history found - consider running a manual sync to test the system")
        elif last_run.status == SyncStatus.FAILED:
            recommendations.append(
                f"Last sync run {last_run.run_id} failed: {last_run.error_message or 'no error recorded'}"
            )

        return recommendations
