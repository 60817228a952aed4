# ============================================================================
# File: reconciliation/coordinator.py
# Description: Orchestrates sync runs: lock, reconcile, finalize, report
# ============================================================================
"""
Sync Coordinator - the entry point used by the consumer layer.

This module provides:
- Manual sync triggering guarded by the single-row sync lock
- Run record lifecycle (running → succeeded / partial / failed)
- Recovery of runs abandoned by a crashed holder
- Status, history and statistics queries for polling consumers
"""

from typing import List, Optional
from datetime import datetime, timedelta
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
import logging
import uuid

from core.config import settings
from core.exceptions import ConcurrencyError, SyncException, SyncSystemError
from models.base import SyncStatus
from models.sync_run import SyncRun
from reconciliation.engine import ReconciliationEngine, owned_run
from reconciliation.lock import SyncLease, SyncLockManager
from reconciliation.view_refresher import ViewRefresher
from schemas.sync import (
    ReconciliationReport,
    SyncErrorEntry,
    SyncLockState,
    SyncResult,
    SyncRunDetail,
    SyncRunSummary,
    SyncStatistics,
    SyncStatusResponse,
)

logger = logging.getLogger(__name__)

ABANDONED_RUN_MESSAGE = "Run abandoned: the sync lock expired before the run was finalized"
LOST_OWNERSHIP_MESSAGE = "Sync lock lease was lost; the run was closed by the next lock holder"


class RunHandle:
    """Identity of a run, captured while its row is loaded"""

    def __init__(self, run: SyncRun):
        self.pk = run.id
        self.run_id = str(run.run_id)
        self.started_at = run.started_at
        self.lock_token = run.lock_token


class SyncCoordinator:
    """
    Orchestrates one reconciliation run at a time.

    Responsibilities:
    - Acquire and always release the sync lock
    - Create, progress and finalize the SyncRun record
    - Turn any outcome into a SyncResult for the caller
    - Answer polling queries (running?, last run, history, statistics)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        batch_size: Optional[int] = None,
        lock_ttl_seconds: Optional[int] = None,
        refresh_view_after_run: Optional[bool] = None
    ):
        self.session_factory = session_factory
        self.batch_size = settings.SYNC_BATCH_SIZE if batch_size is None else batch_size
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.lock = SyncLockManager(session_factory, ttl_seconds=lock_ttl_seconds)
        self.refresh_view_after_run = (
            settings.SYNC_REFRESH_VIEW_AFTER_RUN
            if refresh_view_after_run is None
            else refresh_view_after_run
        )

    # --------------------------------------------------
    # Triggering
    # --------------------------------------------------

    async def trigger_manual_sync(self, triggered_by: Optional[str] = None) -> SyncResult:
        """
        Run a full reconciliation now.

        Returns:
            SyncResult describing the finalized run, including failures

        Raises:
            ConcurrencyError: If a run is already active; no run is recorded
        """
        try:
            async with self.lock.acquire(owner=triggered_by) as lease:
                result = await self._execute_run(lease, triggered_by)
        except ConcurrencyError as e:
            logger.warning(f"Manual sync rejected for {triggered_by or 'anonymous'}: {e.message}")
            raise
        except SyncSystemError as e:
            logger.error(
                f"Manual sync could not start: {e.message}",
                extra={"error_context": e.to_dict()}
            )
            return SyncResult(
                success=False,
                status=SyncStatus.FAILED,
                errors=[SyncErrorEntry(message=e.message, error_type=type(e).__name__)],
                first_error=e.message,
                completed_at=datetime.utcnow()
            )

        if self.refresh_view_after_run and result.status != SyncStatus.FAILED:
            await self._refresh_view()

        return result

    async def _execute_run(self, lease: SyncLease, triggered_by: Optional[str]) -> SyncResult:
        async with self.session_factory() as session:
            try:
                await self._fail_abandoned_runs(session)

                run = SyncRun(
                    run_id=uuid.uuid4(),
                    status=SyncStatus.RUNNING,
                    started_at=datetime.utcnow(),
                    triggered_by=triggered_by,
                    trigger_source="manual",
                    batch_size=self.batch_size,
                    lock_token=lease.token
                )
                session.add(run)
                await session.commit()
                await session.refresh(run)
            except SQLAlchemyError as e:
                await session.rollback()
                raise SyncSystemError(
                    "Failed to create sync run record",
                    context={"triggered_by": triggered_by},
                    original_exception=e
                )

            handle = RunHandle(run)
            logger.info(f"Sync run {handle.run_id} started by {triggered_by or 'anonymous'}")

            engine = ReconciliationEngine(session, batch_size=self.batch_size)
            try:
                report = await engine.reconcile(run, heartbeat=lease.renew)
            except SyncException as e:
                logger.error(
                    f"Sync run {handle.run_id} aborted: {e.message}",
                    extra={"error_context": e.to_dict()}
                )
                return await self._abort(session, handle, engine.report, e)
            except Exception as e:
                logger.exception(f"Unexpected error in sync run {handle.run_id}")
                error = SyncSystemError(
                    "Unexpected error during stock reconciliation",
                    context={"run_id": handle.run_id},
                    original_exception=e
                )
                return await self._abort(session, handle, engine.report, error)

            return await self._finalize(session, handle, report)

    async def _fail_abandoned_runs(self, session: AsyncSession) -> int:
        """
        Close runs left RUNNING by a holder that died.

        Only called while holding the lock. A previous holder that is still
        executing can no longer write: its progress and finalize updates
        require the run to be RUNNING under a lease it still holds.
        """
        result = await session.execute(
            select(SyncRun).where(SyncRun.status == SyncStatus.RUNNING)
        )
        abandoned = result.scalars().all()

        now = datetime.utcnow()
        for run in abandoned:
            run.status = SyncStatus.FAILED
            run.ended_at = now
            run.duration_seconds = (now - run.started_at).total_seconds()
            run.error_message = ABANDONED_RUN_MESSAGE
            logger.warning(f"Marked abandoned sync run {run.run_id} as failed")

        if abandoned:
            await session.commit()
        return len(abandoned)

    # --------------------------------------------------
    # Finalization
    # --------------------------------------------------

    @staticmethod
    def resolve_status(report: ReconciliationReport) -> SyncStatus:
        """succeeded: no errors; partial: some items errored; failed: every item errored"""
        if report.error_count == 0:
            return SyncStatus.SUCCEEDED
        if report.error_count < report.total_items:
            return SyncStatus.PARTIAL
        return SyncStatus.FAILED

    async def _abort(
        self,
        session: AsyncSession,
        handle: RunHandle,
        report: ReconciliationReport,
        error: SyncException
    ) -> SyncResult:
        """Discard uncommitted writes, then finalize as failed with the committed totals"""
        try:
            await session.rollback()
        except SQLAlchemyError:
            logger.exception(f"Could not roll back sync run {handle.run_id} after abort")
            return self._build_result(handle, datetime.utcnow(), SyncStatus.FAILED, report, error.message)

        return await self._finalize(session, handle, report, abort_error=error)

    async def _finalize(
        self,
        session: AsyncSession,
        handle: RunHandle,
        report: ReconciliationReport,
        abort_error: Optional[SyncException] = None
    ) -> SyncResult:
        """
        Write the outcome onto the run, once.

        The UPDATE only matches while the run is RUNNING under its own lease.
        A run already closed by the next lock holder is left untouched and
        reported as failed.
        """
        ended_at = datetime.utcnow()
        if abort_error is not None:
            status = SyncStatus.FAILED
            error_message = abort_error.message
        else:
            status = self.resolve_status(report)
            error_message = report.errors[0].message if report.errors else None

        values = report.run_values(settings.SYNC_MAX_STORED_ERRORS)
        values.update({
            "status": status,
            "ended_at": ended_at,
            "duration_seconds": (ended_at - handle.started_at).total_seconds(),
            "error_message": error_message,
        })

        result = self._build_result(handle, ended_at, status, report, error_message)

        try:
            outcome = await session.execute(
                update(SyncRun)
                .where(*owned_run(handle.pk, handle.lock_token))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if outcome.rowcount != 1:
                await session.rollback()
                logger.warning(
                    f"Sync run {handle.run_id} was closed by another lock holder; outcome not recorded"
                )
                result.status = SyncStatus.FAILED
                result.success = False
                result.first_error = LOST_OWNERSHIP_MESSAGE
                return result
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.exception(f"Failed to record outcome of sync run {handle.run_id}")
            result.status = SyncStatus.FAILED
            result.success = False
            result.first_error = f"Failed to record run outcome: {e}"
            return result

        log = logger.info if status == SyncStatus.SUCCEEDED else logger.warning
        log(
            f"Sync run {handle.run_id} finished: {status.value} - total={report.total_items}, "
            f"inserted={report.inserted_count}, updated={report.updated_count}, "
            f"unchanged={report.unchanged_count}, errors={report.error_count} "
            f"in {result.duration_seconds:.2f}s"
        )
        return result

    @staticmethod
    def _build_result(
        handle: RunHandle,
        ended_at: datetime,
        status: SyncStatus,
        report: ReconciliationReport,
        first_error: Optional[str]
    ) -> SyncResult:
        return SyncResult(
            success=status == SyncStatus.SUCCEEDED,
            run_id=handle.run_id,
            status=status,
            total_items=report.total_items,
            inserted_count=report.inserted_count,
            updated_count=report.updated_count,
            unchanged_count=report.unchanged_count,
            error_count=report.error_count,
            orphaned_count=report.orphaned_count,
            errors=list(report.errors),
            first_error=first_error,
            duration_seconds=(ended_at - handle.started_at).total_seconds(),
            started_at=handle.started_at,
            completed_at=ended_at
        )

    async def _refresh_view(self) -> None:
        async with self.session_factory() as session:
            outcome = await ViewRefresher(session).refresh_stock_summary_view()
        if not outcome.success:
            logger.warning(f"Stock summary refresh after sync failed: {outcome.message}")

    # --------------------------------------------------
    # Queries
    # --------------------------------------------------

    async def is_sync_running(self) -> bool:
        return await self.lock.is_locked()

    async def get_lock_state(self) -> SyncLockState:
        return await self.lock.get_state()

    @staticmethod
    def poll_interval(is_running: bool) -> int:
        """Polling cadence for consumers: fast while a run is active, slow otherwise"""
        if is_running:
            return settings.SYNC_POLL_ACTIVE_SECONDS
        return settings.SYNC_POLL_IDLE_SECONDS

    async def get_status(self) -> SyncStatusResponse:
        lock_state = await self.get_lock_state()
        return SyncStatusResponse(
            is_running=lock_state.is_locked,
            lock=lock_state,
            last_run=await self.get_last_sync_info(),
            next_poll_seconds=self.poll_interval(lock_state.is_locked)
        )

    async def get_last_sync_info(self) -> Optional[SyncRunSummary]:
        """Most recently finalized run, or None when no run has finished yet"""
        async with self.session_factory() as session:
            result = await session.execute(
                select(SyncRun)
                .where(SyncRun.status != SyncStatus.RUNNING)
                .order_by(SyncRun.ended_at.desc(), SyncRun.id.desc())
                .limit(1)
            )
            run = result.scalar_one_or_none()

        return SyncRunSummary.from_run(run) if run else None

    async def get_recent_runs(self, limit: int = 10) -> List[SyncRunSummary]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(SyncRun)
                .order_by(SyncRun.started_at.desc(), SyncRun.id.desc())
                .limit(limit)
            )
            runs = result.scalars().all()

        return [SyncRunSummary.from_run(run) for run in runs]

    async def get_run(self, run_id: str) -> Optional[SyncRunDetail]:
        try:
            parsed = uuid.UUID(str(run_id))
        except ValueError:
            return None

        async with self.session_factory() as session:
            result = await session.execute(
                select(SyncRun).where(SyncRun.run_id == parsed)
            )
            run = result.scalar_one_or_none()

        return SyncRunDetail.from_run(run) if run else None

    async def get_sync_statistics(self, window_days: Optional[int] = None) -> SyncStatistics:
        """
        Aggregate finalized runs started within the trailing window.

        Args:
            window_days: Window length in days (defaults to SYNC_STATS_WINDOW_DAYS)
        """
        days = settings.SYNC_STATS_WINDOW_DAYS if window_days is None else window_days
        if days < 1:
            raise ValueError("window_days must be at least 1")

        since = datetime.utcnow() - timedelta(days=days)

        async with self.session_factory() as session:
            result = await session.execute(
                select(SyncRun).where(
                    SyncRun.status != SyncStatus.RUNNING,
                    SyncRun.started_at >= since
                )
            )
            runs = result.scalars().all()

        stats = SyncStatistics(window_days=days, since=since)
        durations = []

        for run in runs:
            stats.total_runs += 1
            if run.status == SyncStatus.SUCCEEDED:
                stats.successful_runs += 1
                if not stats.last_success_at or run.ended_at > stats.last_success_at:
                    stats.last_success_at = run.ended_at
            elif run.status == SyncStatus.PARTIAL:
                stats.partial_runs += 1
            elif run.status == SyncStatus.FAILED:
                stats.failed_runs += 1
                if not stats.last_failure_at or run.ended_at > stats.last_failure_at:
                    stats.last_failure_at = run.ended_at

            if run.duration_seconds is not None:
                durations.append(run.duration_seconds)

            stats.total_items_processed += run.total_items or 0
            stats.total_inserted += run.inserted_count or 0
            stats.total_updated += run.updated_count or 0
            stats.total_errors += run.error_count or 0

        stats.total_records_touched = stats.total_inserted + stats.total_updated
        if stats.total_runs:
            stats.success_rate = round(stats.successful_runs / stats.total_runs * 100, 1)
        if durations:
            stats.average_duration_seconds = round(sum(durations) / len(durations), 2)

        return stats
