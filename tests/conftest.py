"""
Pytest configuration and fixtures
"""

import os
import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool
from models import Base
from models.catalog_item import CatalogItem
from models.stock_record import StockRecord
from models.sync_run import SyncRun
from typing import AsyncGenerator, Dict, List


def _test_database_url(tmp_path) -> str:
    """TEST_DATABASE_URL if set, otherwise a throwaway SQLite file per test"""
    return os.getenv("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'stock_sync_test.db'}"


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """Create test database engine"""
    engine = create_async_engine(
        _test_database_url(tmp_path),
        echo=False,
        poolclass=NullPool,  # Disable connection pooling for tests
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables after test
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(test_engine) -> async_sessionmaker:
    """Session factory bound to the test engine (used by coordinator and lock)"""
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def seed_catalog(session_factory):
    """Insert catalog rows; each dict holds CatalogItem column values"""

    async def _seed(items: List[Dict]) -> List[CatalogItem]:
        async with session_factory() as session:
            rows = [CatalogItem(**item) for item in items]
            session.add_all(rows)
            await session.commit()
            return rows

    return _seed


@pytest.fixture
def seed_stock(session_factory):
    """Insert stock records directly, bypassing reconciliation"""

    async def _seed(items: List[Dict]) -> List[StockRecord]:
        async with session_factory() as session:
            rows = [StockRecord(**item) for item in items]
            session.add_all(rows)
            await session.commit()
            return rows

    return _seed


@pytest.fixture
def fetch_stock(session_factory):
    """Read stock records in a fresh session, keyed by item_code"""

    async def _fetch() -> Dict[str, StockRecord]:
        async with session_factory() as session:
            result = await session.execute(select(StockRecord))
            return {record.item_code: record for record in result.scalars().all()}

    return _fetch


@pytest.fixture
def fetch_runs(session_factory):
    """Read sync runs in a fresh session, oldest first"""

    async def _fetch() -> List[SyncRun]:
        async with session_factory() as session:
            result = await session.execute(select(SyncRun).order_by(SyncRun.id))
            return list(result.scalars().all())

    return _fetch


@pytest.fixture
def sample_catalog():
    """Three valid catalog items across two posting groups"""
    return [
        {
            "item_code": "A1",
            "description": "Steel bolt M8",
            "posting_group": "HARDWARE",
            "base_unit_code": "PCS",
            "unit_price": 0.25,
            "vendor_code": "V001",
            "brand": "Fastenal",
            "pricelist": True,
        },
        {
            "item_code": "A2",
            "description": "Steel nut M8",
            "posting_group": "HARDWARE",
            "base_unit_code": "PCS",
            "unit_price": 0.10,
            "vendor_code": "V001",
            "brand": "Fastenal",
            "pricelist": True,
        },
        {
            "item_code": "B1",
            "description": "Cable tie 200mm",
            "posting_group": "ELECTRICAL",
            "base_unit_code": "BAG",
            "unit_price": 4.5,
            "vendor_code": "V002",
            "attribut_1": "black",
            "pricelist": False,
        },
    ]
