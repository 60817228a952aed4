# ============================================================================
# File: tests/integration/test_orphans.py
# ============================================================================

import pytest
from sqlalchemy import delete

from models.base import SyncStatus
from models.catalog_item import CatalogItem
from reconciliation.coordinator import SyncCoordinator


@pytest.mark.asyncio
async def test_removed_catalog_item_is_flagged_not_deleted(session_factory, seed_catalog, fetch_stock):
    await seed_catalog([{"item_code": "A1"}, {"item_code": "A2"}])
    coordinator = SyncCoordinator(session_factory)
    await coordinator.trigger_manual_sync()

    async with session_factory() as session:
        await session.execute(delete(CatalogItem).where(CatalogItem.item_code == "A2"))
        await session.commit()

    result = await coordinator.trigger_manual_sync()

    assert result.status == SyncStatus.SUCCEEDED
    assert result.total_items == 1
    assert result.orphaned_count == 1

    stock = await fetch_stock()
    assert set(stock) == {"A1", "A2"}
    assert stock["A2"].orphaned_at is not None
    assert stock["A1"].orphaned_at is None


@pytest.mark.asyncio
async def test_orphan_flag_keeps_first_timestamp(session_factory, seed_catalog, seed_stock, fetch_stock):
    await seed_catalog([{"item_code": "A1"}])
    await seed_stock([{"item_code": "GONE", "quantity": 3}])
    coordinator = SyncCoordinator(session_factory)

    first = await coordinator.trigger_manual_sync()
    flagged_at = (await fetch_stock())["GONE"].orphaned_at
    second = await coordinator.trigger_manual_sync()

    assert first.orphaned_count == 1
    assert second.orphaned_count == 1
    record = (await fetch_stock())["GONE"]
    assert record.orphaned_at == flagged_at
    assert record.quantity == 3


@pytest.mark.asyncio
async def test_reappearing_item_is_updated_and_unflagged(session_factory, seed_catalog, seed_stock, fetch_stock):
    await seed_stock([{"item_code": "BACK", "quantity": 8}])
    coordinator = SyncCoordinator(session_factory)
    await coordinator.trigger_manual_sync()
    assert (await fetch_stock())["BACK"].orphaned_at is not None

    await seed_catalog([{"item_code": "BACK"}])
    result = await coordinator.trigger_manual_sync()

    assert result.updated_count == 1
    assert result.orphaned_count == 0
    record = (await fetch_stock())["BACK"]
    assert record.orphaned_at is None
    assert record.quantity == 8


@pytest.mark.asyncio
async def test_orphan_check_ignores_padding_and_missing_codes(session_factory, seed_catalog, seed_stock, fetch_stock):
    """A catalog row without a code must not hide orphans, and padded codes still match"""
    await seed_catalog([{"item_code": " P1 "}, {"item_code": None}])
    await seed_stock([{"item_code": "GONE", "quantity": 1}])

    result = await SyncCoordinator(session_factory).trigger_manual_sync()

    assert result.orphaned_count == 1
    stock = await fetch_stock()
    assert stock["P1"].orphaned_at is None
    assert stock["GONE"].orphaned_at is not None
