"""
Sync endpoints: trigger, polling status, history, statistics and diagnostics
"""

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from api.dependencies import get_coordinator, get_db
from core.exceptions import ConcurrencyError
from reconciliation.coordinator import SyncCoordinator
from reconciliation.validation import ValidationService
from reconciliation.view_refresher import ViewRefresher
from schemas.sync import (
    SyncResult,
    SyncRunDetail,
    SyncRunSummary,
    SyncStatistics,
    SyncStatusResponse,
    ValidationResult,
    ViewRefreshResult,
)
from typing import List, Optional
import uuid
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/sync", tags=["Sync"])


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", f"req_{uuid.uuid4().hex[:12]}")


@router.post("/trigger", response_model=SyncResult)
async def trigger_sync(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Identity of the operator triggering the sync"),
    coordinator: SyncCoordinator = Depends(get_coordinator)
):
    """
    Run a manual item-to-stock reconciliation and wait for its result.

    Returns 409 when another run holds the sync lock; no run is recorded
    in that case.
    """
    request_id = _request_id(request)
    logger.info(f"[{request_id}] POST /sync/trigger by {x_user_id or 'anonymous'}")

    try:
        return await coordinator.trigger_manual_sync(triggered_by=x_user_id)
    except ConcurrencyError as e:
        raise HTTPException(
            status_code=409,
            detail={"message": e.message, "owner": e.context.get("owner"), "expires_at": e.context.get("expires_at")}
        )


@router.get("/status", response_model=SyncStatusResponse)
async def get_sync_status(coordinator: SyncCoordinator = Depends(get_coordinator)):
    """
    Polling endpoint: whether a run is active, the last finalized run, and
    how long to wait before polling again.
    """
    return await coordinator.get_status()


@router.get("/last", response_model=Optional[SyncRunSummary])
async def get_last_sync(coordinator: SyncCoordinator = Depends(get_coordinator)):
    """Most recently finalized run, or null when none has finished"""
    return await coordinator.get_last_sync_info()


@router.get("/runs", response_model=List[SyncRunSummary])
async def list_sync_runs(
    limit: int = Query(10, ge=1, le=100, description="Number of recent runs to return"),
    coordinator: SyncCoordinator = Depends(get_coordinator)
):
    return await coordinator.get_recent_runs(limit=limit)


@router.get("/runs/{run_id}", response_model=SyncRunDetail)
async def get_sync_run(run_id: str, coordinator: SyncCoordinator = Depends(get_coordinator)):
    """Run detail including the full ordered error list"""
    run = await coordinator.get_run(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"Sync run {run_id} not found")
    return run


@router.get("/statistics", response_model=SyncStatistics)
async def get_sync_statistics(
    days: Optional[int] = Query(None, ge=1, le=365, description="Trailing window in days (default 7)"),
    coordinator: SyncCoordinator = Depends(get_coordinator)
):
    return await coordinator.get_sync_statistics(window_days=days)


@router.get("/validate", response_model=ValidationResult)
async def validate_sync_system(request: Request, db: AsyncSession = Depends(get_db)):
    """Read-only diagnostics of schema, catalog data and sync bookkeeping"""
    request_id = _request_id(request)
    result = await ValidationService(db).validate_sync_system()
    logger.info(f"[{request_id}] GET /sync/validate - valid={result.is_valid}, issues={len(result.issues)}")
    return result


@router.post("/refresh-view", response_model=ViewRefreshResult)
async def refresh_stock_summary(request: Request, db: AsyncSession = Depends(get_db)):
    """Rebuild the stock_summary aggregate; success=false on failure"""
    request_id = _request_id(request)
    result = await ViewRefresher(db).refresh_stock_summary_view()
    logger.info(f"[{request_id}] POST /sync/refresh-view - success={result.success}")
    return result
