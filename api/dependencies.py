"""
FastAPI dependencies: database sessions and the sync coordinator
"""

from typing import AsyncGenerator
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from core.database import async_session_maker
from reconciliation.coordinator import SyncCoordinator


def get_session_factory() -> async_sessionmaker:
    """Session factory shared by the request-scoped and run-scoped sessions"""
    return async_session_maker


async def get_db(
    session_factory: async_sessionmaker = Depends(get_session_factory)
) -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped database session"""
    async with session_factory() as session:
        yield session


def get_coordinator(
    session_factory: async_sessionmaker = Depends(get_session_factory)
) -> SyncCoordinator:
    return SyncCoordinator(session_factory)
