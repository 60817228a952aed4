# ============================================================================
# File: reconciliation/engine.py
# Description: Catalog → stock reconciliation with per-item failure isolation
# ============================================================================
"""
Reconciliation Engine - Converges stock records toward the catalog.

This module provides:
- Bounded, sequential batches read from the catalog (keyset pagination)
- Explicit per-item classification: insert / update / unchanged / error
- Fail-soft processing: bad items and failed batches are recorded and the
  run moves on
- Progress committed at every batch boundary together with the writes,
  only while the run still owns the sync lock
- Soft-flagging of stock records whose catalog item no longer exists
"""

from typing import Awaitable, Callable, List, Optional, Set, Tuple
from datetime import datetime
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import asyncio
import logging

from core.config import settings
from core.exceptions import ItemValidationError, PersistenceError, SyncSystemError
from models.base import SyncAction, SyncStatus
from models.catalog_item import CatalogItem
from models.sync_lock import SyncLock
from models.sync_run import SyncRun
from reconciliation.loaders.stock_loader import StockLoader
from schemas.catalog import CatalogItemSnapshot
from schemas.sync import ItemResult, ReconciliationReport

logger = logging.getLogger(__name__)

Heartbeat = Callable[[], Awaitable[None]]


def owned_run(run_pk: int, lock_token: Optional[str]) -> list:
    """
    WHERE criteria matching a run only while it is still RUNNING under the
    lease that created it.
    """
    criteria = [SyncRun.id == run_pk, SyncRun.status == SyncStatus.RUNNING]
    if lock_token is not None:
        criteria.append(SyncRun.lock_token == lock_token)
        criteria.append(
            select(SyncLock.name).where(SyncLock.holder_token == lock_token).exists()
        )
    return criteria


class ReconciliationEngine:
    """
    Diffs catalog items against stock records and applies the difference.

    Responsibilities:
    - Validate each catalog row (required fields, duplicate codes)
    - Classify it against the existing stock record
    - Apply inserts/updates and stamp unchanged records per batch
    - Keep the run's counts consistent after every batch
    """

    def __init__(
        self,
        db_session: AsyncSession,
        batch_size: Optional[int] = None,
        loader: Optional[StockLoader] = None,
        max_stored_errors: Optional[int] = None
    ):
        self.db = db_session
        self.batch_size = settings.SYNC_BATCH_SIZE if batch_size is None else batch_size
        self.loader = loader or StockLoader(db_session)
        self.max_stored_errors = (
            settings.SYNC_MAX_STORED_ERRORS if max_stored_errors is None else max_stored_errors
        )
        self.report = ReconciliationReport()
        self._catalog_codes: Set[str] = set()
        self._run_pk: Optional[int] = None
        self._run_ref = ""
        self._lock_token: Optional[str] = None

        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")

    async def reconcile(self, run: SyncRun, heartbeat: Optional[Heartbeat] = None) -> ReconciliationReport:
        """
        Reconcile every catalog item into the stock dataset.

        Args:
            run: The RUNNING sync run, attached to this engine's session
            heartbeat: Awaited before every write phase (lock lease renewal);
                expected to raise when the lease was lost

        Returns:
            The final ReconciliationReport

        Raises:
            SyncSystemError: If the catalog cannot be read, the run lost
                ownership of the lock, or progress cannot be committed.
                self.report then covers the committed batches only.
        """
        self.report = ReconciliationReport()
        self._catalog_codes = set()
        self._run_pk = run.id
        self._run_ref = str(run.run_id)
        self._lock_token = run.lock_token

        last_id = 0
        batch_index = 0

        logger.info(f"Starting reconciliation for run {self._run_ref} (batch_size={self.batch_size})")

        while True:
            rows = await self._fetch_catalog_batch(last_id)
            if not rows:
                break
            last_id = rows[-1].id

            # Prove we still hold the lock before writing anything
            if heartbeat is not None:
                await heartbeat()

            pending = self.report.copy(deep=True)
            for result in await self._process_batch(rows, batch_index, pending):
                pending.record(result)
            pending.batches_processed += 1

            await self._commit_progress(pending)
            self.report = pending

            logger.info(
                f"Batch {batch_index + 1}: {len(rows)} items "
                f"(totals: inserted={self.report.inserted_count}, updated={self.report.updated_count}, "
                f"unchanged={self.report.unchanged_count}, errors={self.report.error_count})"
            )
            batch_index += 1

            # Batch boundary: let other work run
            await asyncio.sleep(0)

        if heartbeat is not None:
            await heartbeat()
        await self._flag_orphans()

        logger.info(
            f"Reconciliation finished for run {self._run_ref}: "
            f"total={self.report.total_items}, inserted={self.report.inserted_count}, "
            f"updated={self.report.updated_count}, unchanged={self.report.unchanged_count}, "
            f"errors={self.report.error_count}, orphaned={self.report.orphaned_count}"
        )
        return self.report

    # --------------------------------------------------
    # Catalog reading
    # --------------------------------------------------

    async def _fetch_catalog_batch(self, last_id: int) -> List[CatalogItem]:
        try:
            result = await self.db.execute(
                select(CatalogItem)
                .where(CatalogItem.id > last_id)
                .order_by(CatalogItem.id)
                .limit(self.batch_size)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise SyncSystemError(
                "Failed to read catalog items",
                context={"operation": "SELECT", "table_name": "catalog_items", "after_id": last_id},
                original_exception=e
            )

    # --------------------------------------------------
    # Classification
    # --------------------------------------------------

    def _validate(self, row: CatalogItem) -> Tuple[Optional[CatalogItemSnapshot], Optional[ItemResult]]:
        """Turn a catalog row into a snapshot, or into an error result"""
        raw_code = (row.item_code or "").strip()

        if raw_code and raw_code in self._catalog_codes:
            return None, ItemResult(
                item_code=raw_code,
                action=SyncAction.ERROR,
                message=f"Duplicate item_code '{raw_code}' in catalog (catalog id={row.id})",
                error_type=ItemValidationError.__name__
            )
        if raw_code:
            self._catalog_codes.add(raw_code)

        try:
            return CatalogItemSnapshot.from_catalog(row), None
        except ItemValidationError as e:
            logger.error(
                f"Catalog item id={row.id} failed validation: {e.message}",
                extra={"error_context": e.to_dict()}
            )
            return None, ItemResult(
                item_code=row.item_code,
                action=SyncAction.ERROR,
                message=e.message,
                error_type=type(e).__name__
            )

    @staticmethod
    def classify(snapshot: CatalogItemSnapshot, existing) -> ItemResult:
        """Decide what to do with a valid snapshot given its stock record (or None)"""
        if existing is None:
            return ItemResult(item_code=snapshot.item_code, action=SyncAction.INSERT)

        changed = snapshot.changed_fields(existing)
        if existing.orphaned_at is not None:
            changed.append("orphaned_at")

        if changed:
            return ItemResult(
                item_code=snapshot.item_code,
                action=SyncAction.UPDATE,
                message=f"changed: {', '.join(changed)}"
            )

        return ItemResult(item_code=snapshot.item_code, action=SyncAction.UNCHANGED)


    # --------------------------------------------------
    # Batch processing
    # --------------------------------------------------

    async def _process_batch(
        self,
        rows: List[CatalogItem],
        batch_index: int,
        pending: ReconciliationReport
    ) -> List[ItemResult]:
        entries = [self._validate(row) for row in rows]
        snapshots = [snapshot for snapshot, _ in entries if snapshot is not None]

        results: List[ItemResult] = []
        try:
            existing = await self.loader.read(s.item_code for s in snapshots)

            to_write: List[CatalogItemSnapshot] = []
            to_touch: List[str] = []
            for snapshot, error in entries:
                if error is not None:
                    results.append(error)
                    continue

                result = self.classify(snapshot, existing.get(snapshot.item_code))
                if result.action == SyncAction.UNCHANGED:
                    to_touch.append(snapshot.item_code)
                else:
                    to_write.append(snapshot)
                results.append(result)

            synced_at = self._sync_stamp(existing.values())
            await self.loader.upsert(to_write, synced_at, sync_run_id=self._run_pk)
            await self.loader.touch(to_touch, synced_at, sync_run_id=self._run_pk)

        except PersistenceError as e:
            logger.error(
                f"Batch {batch_index + 1} failed to persist: {e.message}",
                extra={"error_context": e.to_dict()}
            )
            await self._rollback()
            pending.batches_failed += 1
            results = [self._as_batch_failure(snapshot, error, e, batch_index) for snapshot, error in entries]

        return results

    @staticmethod
    def _as_batch_failure(
        snapshot: Optional[CatalogItemSnapshot],
        error: Optional[ItemResult],
        exc: PersistenceError,
        batch_index: int
    ) -> ItemResult:
        if error is not None:
            return error
        return ItemResult(
            item_code=snapshot.item_code,
            action=SyncAction.ERROR,
            message=f"Batch {batch_index + 1} could not be saved: {exc.message}",
            error_type=type(exc).__name__
        )

    @staticmethod
    def _sync_stamp(existing_records) -> datetime:
        """Current time, but never earlier than any stamp already in the batch"""
        stamp = datetime.utcnow()
        for record in existing_records:
            if record.last_synced_at is not None and record.last_synced_at > stamp:
                stamp = record.last_synced_at
        return stamp

    # --------------------------------------------------
    # Orphans
    # --------------------------------------------------

    async def _flag_orphans(self) -> None:
        pending = self.report.copy(deep=True)
        try:
            pending.orphaned_count = await self.loader.flag_orphans(datetime.utcnow())
        except PersistenceError as e:
            logger.error(
                f"Orphan flagging failed for run {self._run_ref}: {e.message}",
                extra={"error_context": e.to_dict()}
            )
            await self._rollback()
            return

        await self._commit_progress(pending)
        self.report = pending

    # --------------------------------------------------
    # Transaction handling
    # --------------------------------------------------

    async def _rollback(self) -> None:
        try:
            await self.db.rollback()
        except SQLAlchemyError as e:
            raise SyncSystemError(
                "Failed to recover session after persistence error",
                context={"run_id": self._run_ref},
                original_exception=e
            )

    async def _commit_progress(self, pending: ReconciliationReport) -> None:
        """
        Write the pending totals onto the run and commit them with the batch.

        The run row is only updated while it is RUNNING under this lease;
        otherwise the batch is rolled back and the run aborts.
        """
        try:
            result = await self.db.execute(
                update(SyncRun)
                .where(*owned_run(self._run_pk, self._lock_token))
                .values(**pending.run_values(self.max_stored_errors))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self.db.rollback()
                raise SyncSystemError(
                    "Sync run lost ownership of the sync lock; batch discarded",
                    context={"run_id": self._run_ref, "batches_processed": self.report.batches_processed}
                )
            await self.db.commit()
        except SQLAlchemyError as e:
            raise SyncSystemError(
                "Failed to commit reconciliation progress",
                context={"run_id": self._run_ref, "batches_processed": self.report.batches_processed},
                original_exception=e
            )
