# ============================================================================
# File: tests/integration/test_sync_failure_recovery.py
# ============================================================================

import pytest
from unittest.mock import patch

from core.exceptions import PersistenceError, SyncSystemError
from models.base import SyncStatus
from reconciliation.coordinator import SyncCoordinator
from reconciliation.engine import ReconciliationEngine
from reconciliation.lock import SyncLockManager
from reconciliation.loaders.stock_loader import StockLoader


@pytest.mark.asyncio
async def test_failed_batch_is_recorded_and_run_continues(session_factory, seed_catalog, fetch_stock, fetch_runs):
    """
    Batch persistence failure:
    1. First batch upsert fails
    2. Every item of that batch becomes an error
    3. Later batches are still synced
    """
    await seed_catalog([{"item_code": f"A{i}"} for i in range(1, 5)])

    original_upsert = StockLoader.upsert
    calls = {"count": 0}

    async def flaky_upsert(self, snapshots, synced_at, sync_run_id=None):
        calls["count"] += 1
        if calls["count"] == 1:
            raise PersistenceError("Simulated deadlock", context={"operation": "UPSERT"})
        return await original_upsert(self, snapshots, synced_at, sync_run_id=sync_run_id)

    with patch.object(StockLoader, "upsert", flaky_upsert):
        result = await SyncCoordinator(session_factory, batch_size=2).trigger_manual_sync()

    assert result.status == SyncStatus.PARTIAL
    assert result.error_count == 2
    assert result.inserted_count == 2
    assert result.total_items == 4
    assert all(e.error_type == "PersistenceError" for e in result.errors)
    assert result.errors[0].message.startswith("Batch 1 could not be saved")

    assert set(await fetch_stock()) == {"A3", "A4"}

    run = (await fetch_runs())[0]
    assert run.error_count == 2
    assert [e["item_code"] for e in run.errors] == ["A1", "A2"]

    # Re-running picks up the items lost with the failed batch
    retry = await SyncCoordinator(session_factory, batch_size=2).trigger_manual_sync()
    assert retry.status == SyncStatus.SUCCEEDED
    assert retry.inserted_count == 2
    assert retry.unchanged_count == 2


@pytest.mark.asyncio
async def test_catalog_read_failure_aborts_run_and_releases_lock(session_factory, seed_catalog, fetch_runs):
    """
    Catastrophic failure:
    1. Catalog becomes unreadable after the first batch
    2. Run is finalized as failed with counts of the settled batch
    3. Lock is released so the next trigger can run
    """
    await seed_catalog([{"item_code": f"A{i}"} for i in range(1, 5)])

    original_fetch = ReconciliationEngine._fetch_catalog_batch
    calls = {"count": 0}

    async def failing_fetch(self, last_id):
        calls["count"] += 1
        if calls["count"] == 2:
            raise SyncSystemError("Failed to read catalog items", context={"after_id": last_id})
        return await original_fetch(self, last_id)

    coordinator = SyncCoordinator(session_factory, batch_size=2)
    with patch.object(ReconciliationEngine, "_fetch_catalog_batch", failing_fetch):
        result = await coordinator.trigger_manual_sync()

    assert result.success is False
    assert result.status == SyncStatus.FAILED
    assert result.first_error == "Failed to read catalog items"
    assert result.total_items == 2
    assert result.inserted_count == 2

    run = (await fetch_runs())[0]
    assert run.status == SyncStatus.FAILED
    assert run.error_message == "Failed to read catalog items"
    assert run.ended_at is not None
    assert run.total_items == run.inserted_count + run.updated_count + run.unchanged_count + run.error_count

    assert await coordinator.is_sync_running() is False

    retry = await coordinator.trigger_manual_sync()
    assert retry.status == SyncStatus.SUCCEEDED
    assert retry.inserted_count == 2
    assert retry.unchanged_count == 2


@pytest.mark.asyncio
async def test_unexpected_exception_fails_run(session_factory, seed_catalog, fetch_runs):
    await seed_catalog([{"item_code": "A1"}])
    coordinator = SyncCoordinator(session_factory)

    with patch.object(ReconciliationEngine, "reconcile", side_effect=RuntimeError("boom")):
        result = await coordinator.trigger_manual_sync()

    assert result.status == SyncStatus.FAILED
    assert result.first_error == "Unexpected error during stock reconciliation"

    runs = await fetch_runs()
    assert len(runs) == 1
    assert runs[0].status == SyncStatus.FAILED
    assert await coordinator.is_sync_running() is False


@pytest.mark.asyncio
async def test_lost_lease_aborts_run(session_factory, seed_catalog, fetch_stock, fetch_runs):
    """A heartbeat that finds the lock taken over stops the run"""
    await seed_catalog([{"item_code": f"A{i}"} for i in range(1, 5)])

    original_renew = SyncLockManager.renew
    calls = {"count": 0}

    async def lost_renew(self, lease):
        calls["count"] += 1
        if calls["count"] == 2:
            raise SyncSystemError("Sync lock lease was lost before the run finished")
        return await original_renew(self, lease)

    with patch.object(SyncLockManager, "renew", lost_renew):
        result = await SyncCoordinator(session_factory, batch_size=2).trigger_manual_sync()

    assert result.status == SyncStatus.FAILED
    assert result.total_items == 2
    assert set(await fetch_stock()) == {"A1", "A2"}
    assert (await fetch_runs())[0].error_message == "Sync lock lease was lost before the run finished"


@pytest.mark.asyncio
async def test_failed_progress_commit_excludes_batch_from_counts(session_factory, seed_catalog, fetch_stock, fetch_runs):
    """
    Progress commit failure:
    1. First batch commits
    2. Commit of the second batch fails and its writes are rolled back
    3. Run is finalized as failed with the first batch's counts only
    """
    await seed_catalog([{"item_code": f"A{i}"} for i in range(1, 5)])

    original_commit = ReconciliationEngine._commit_progress
    calls = {"count": 0}

    async def failing_commit(self, pending):
        calls["count"] += 1
        if calls["count"] == 2:
            await self.db.rollback()
            raise SyncSystemError("Failed to commit reconciliation progress")
        return await original_commit(self, pending)

    with patch.object(ReconciliationEngine, "_commit_progress", failing_commit):
        result = await SyncCoordinator(session_factory, batch_size=2).trigger_manual_sync()

    assert result.status == SyncStatus.FAILED
    assert result.first_error == "Failed to commit reconciliation progress"
    assert result.total_items == 2
    assert result.inserted_count == 2

    assert set(await fetch_stock()) == {"A1", "A2"}

    run = (await fetch_runs())[0]
    assert run.status == SyncStatus.FAILED
    assert run.total_items == 2
    assert run.inserted_count == 2
    assert run.total_items == run.inserted_count + run.updated_count + run.unchanged_count + run.error_count


@pytest.mark.asyncio
async def test_store_unavailable_at_start_returns_failed_result(session_factory, fetch_runs):
    async def broken_acquire(self, owner=None):
        raise SyncSystemError("Failed to acquire sync lock")

    with patch.object(SyncLockManager, "try_acquire", broken_acquire):
        result = await SyncCoordinator(session_factory).trigger_manual_sync()

    assert result.success is False
    assert result.status == SyncStatus.FAILED
    assert result.run_id is None
    assert result.first_error == "Failed to acquire sync lock"
    assert await fetch_runs() == []
