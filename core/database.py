"""
Database session management with SQLAlchemy async
"""

from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from core.config import settings
import logging

logger = logging.getLogger(__name__)

# Create async engine
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.ENVIRONMENT == "development",
    poolclass=NullPool,
    future=True
)

# Create session factory
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False
)


def dialect_insert(session: AsyncSession):
    """
    Return the dialect-specific insert() construct for the session's engine.

    Both PostgreSQL and SQLite inserts expose on_conflict_do_update /
    on_conflict_do_nothing, which the upsert paths rely on.
    """
    bind = session.bind
    if bind is not None and bind.dialect.name == "sqlite":
        return sqlite_insert
    return pg_insert


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session"""
    async with async_session_maker() as session:
        yield session


async def init_models(target_engine: AsyncEngine = engine) -> None:
    """Create every table registered on the declarative base"""
    # Importing the package registers all mapped classes on Base.metadata
    import models

    async with target_engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)

    logger.info(f"Created {len(models.Base.metadata.tables)} tables")
