# ============================================================================
# File: tests/integration/test_view_refresher.py
# ============================================================================

import pytest
from datetime import datetime
from unittest.mock import patch
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from models.stock_summary import StockSummary
from reconciliation.view_refresher import ViewRefresher


async def summary_rows(session_factory):
    async with session_factory() as session:
        result = await session.execute(select(StockSummary))
        return {row.posting_group: row for row in result.scalars().all()}


@pytest.mark.asyncio
async def test_refresh_aggregates_non_orphaned_stock(db_session, session_factory, seed_stock):
    await seed_stock([
        {"item_code": "A1", "posting_group": "HARDWARE", "quantity": 10, "adjust": 2, "unit_price": 0.5},
        {"item_code": "A2", "posting_group": "HARDWARE", "quantity": 3, "adjust": 5, "unit_price": 1.0},
        {"item_code": "B1", "posting_group": "ELECTRICAL", "quantity": 4, "adjust": 0, "unit_price": None},
        {"item_code": "OLD", "posting_group": "HARDWARE", "quantity": 100, "orphaned_at": datetime.utcnow()},
    ])

    result = await ViewRefresher(db_session).refresh_stock_summary_view()

    assert result.success is True
    assert result.rows_written == 2
    assert result.refreshed_at is not None

    rows = await summary_rows(session_factory)
    hardware = rows["HARDWARE"]
    assert hardware.item_count == 2
    assert hardware.total_quantity == 13
    assert hardware.total_adjusted_quantity == 8     # 8 + max(0, -2)
    assert hardware.total_stock_value == pytest.approx(4.0)
    assert rows["ELECTRICAL"].total_stock_value == 0


@pytest.mark.asyncio
async def test_refresh_replaces_previous_rows(db_session, session_factory, seed_stock):
    await seed_stock([{"item_code": "A1", "posting_group": "HARDWARE", "quantity": 1}])
    await ViewRefresher(db_session).refresh_stock_summary_view()

    await seed_stock([{"item_code": "C1", "posting_group": "CHEMICALS", "quantity": 2}])
    result = await ViewRefresher(db_session).refresh_stock_summary_view()

    assert result.rows_written == 2
    assert set(await summary_rows(session_factory)) == {"HARDWARE", "CHEMICALS"}


@pytest.mark.asyncio
async def test_refresh_failure_returns_unsuccessful_result(db_session, session_factory, seed_stock):
    await seed_stock([{"item_code": "A1", "posting_group": "HARDWARE", "quantity": 1}])
    await ViewRefresher(db_session).refresh_stock_summary_view()

    with patch.object(db_session, "commit", side_effect=OperationalError("COMMIT", {}, Exception("database is locked"))):
        result = await ViewRefresher(db_session).refresh_stock_summary_view()

    assert result.success is False
    assert "database is locked" in result.message
    assert set(await summary_rows(session_factory)) == {"HARDWARE"}
