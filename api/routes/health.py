"""
Health check endpoint with database and sync status
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from api.dependencies import get_coordinator, get_db
from reconciliation.coordinator import SyncCoordinator
from schemas.sync import HealthCheckResponse
from datetime import datetime
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(
    db: AsyncSession = Depends(get_db),
    coordinator: SyncCoordinator = Depends(get_coordinator)
):
    """
    Health check endpoint.

    Returns:
    - Database connectivity status
    - Whether a sync run currently holds the lock
    - Last finalized sync run
    """

    # Check database connectivity
    db_connected = False

    try:
        await db.execute(text("SELECT 1"))
        db_connected = True
    except Exception as e:
        logger.error(f"Database connection failed: {str(e)}")

    sync_running = False
    lock_stale = False
    last_run = None

    if db_connected:
        try:
            lock_state = await coordinator.get_lock_state()
            sync_running = lock_state.is_locked
            lock_stale = lock_state.is_stale
            last_run = await coordinator.get_last_sync_info()
        except Exception as e:
            logger.error(f"Failed to fetch sync status: {str(e)}")

    return HealthCheckResponse(
        status="healthy",  # Placeholder, validator will update
        timestamp=datetime.utcnow(),
        database_connected=db_connected,
        sync_running=sync_running,
        lock_stale=lock_stale,
        last_run=last_run
    )
