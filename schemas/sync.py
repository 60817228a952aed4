"""
Pydantic schemas for reconciliation results, run history and diagnostics
"""

from pydantic import BaseModel, Field, validator
from typing import Optional, List
from datetime import datetime

from models.base import SyncStatus, SyncAction


# ============================================================================
# Per-item and per-run results
# ============================================================================

class ItemResult(BaseModel):
    """Outcome of reconciling a single catalog item"""
    item_code: Optional[str] = None
    action: SyncAction
    message: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.action != SyncAction.ERROR


class SyncErrorEntry(BaseModel):
    """One entry of a run's ordered error list"""
    item_code: Optional[str] = None
    message: str
    error_type: Optional[str] = None


class ReconciliationReport(BaseModel):
    """
    Running totals of one reconciliation pass.

    Counts only cover batches whose writes were committed, so the totals
    always add up, even when the run aborts half way.
    """
    total_items: int = 0
    inserted_count: int = 0
    updated_count: int = 0
    unchanged_count: int = 0
    error_count: int = 0
    orphaned_count: int = 0
    batches_processed: int = 0
    batches_failed: int = 0
    errors: List[SyncErrorEntry] = Field(default_factory=list)

    def record(self, result: ItemResult) -> None:
        self.total_items += 1
        if result.action == SyncAction.INSERT:
            self.inserted_count += 1
        elif result.action == SyncAction.UPDATE:
            self.updated_count += 1
        elif result.action == SyncAction.UNCHANGED:
            self.unchanged_count += 1
        else:
            self.error_count += 1
            self.errors.append(SyncErrorEntry(
                item_code=result.item_code,
                message=result.message or "Unknown error",
                error_type=result.error_type
            ))

    def run_values(self, max_stored_errors: int) -> dict:
        """Column values of sync_runs carrying these totals"""
        return {
            "total_items": self.total_items,
            "inserted_count": self.inserted_count,
            "updated_count": self.updated_count,
            "unchanged_count": self.unchanged_count,
            "error_count": self.error_count,
            "orphaned_count": self.orphaned_count,
            "errors": [entry.dict() for entry in self.errors[:max_stored_errors]],
        }


class SyncResult(BaseModel):
    """Returned to the caller of a manual sync, whatever the outcome"""
    success: bool
    run_id: Optional[str] = None
    status: SyncStatus
    total_items: int = 0
    inserted_count: int = 0
    updated_count: int = 0
    unchanged_count: int = 0
    error_count: int = 0
    orphaned_count: int = 0
    errors: List[SyncErrorEntry] = Field(default_factory=list)
    first_error: Optional[str] = None
    duration_seconds: float = 0.0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        use_enum_values = True
        json_schema_extra = {
            "example": {
                "success": False,
                "run_id": "550e8400-e29b-41d4-a716-446655440000",
                "status": "partial",
                "total_items": 1200,
                "inserted_count": 12,
                "updated_count": 85,
                "unchanged_count": 1102,
                "error_count": 1,
                "orphaned_count": 0,
                "errors": [{"item_code": "", "message": "item_code: Value error, item_code cannot be empty"}],
                "first_error": "item_code: Value error, item_code cannot be empty",
                "duration_seconds": 4.2
            }
        }


# ============================================================================
# Run history
# ============================================================================

class SyncRunSummary(BaseModel):
    run_id: str
    status: SyncStatus
    started_at: datetime
    ended_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    total_items: int = 0
    inserted_count: int = 0
    updated_count: int = 0
    unchanged_count: int = 0
    error_count: int = 0
    orphaned_count: int = 0
    error_message: Optional[str] = None
    triggered_by: Optional[str] = None

    class Config:
        from_attributes = True
        use_enum_values = True

    @classmethod
    def from_run(cls, run):
        return cls(
            run_id=str(run.run_id),
            status=run.status,
            started_at=run.started_at,
            ended_at=run.ended_at,
            duration_seconds=run.duration_seconds,
            total_items=run.total_items or 0,
            inserted_count=run.inserted_count or 0,
            updated_count=run.updated_count or 0,
            unchanged_count=run.unchanged_count or 0,
            error_count=run.error_count or 0,
            orphaned_count=run.orphaned_count or 0,
            error_message=run.error_message,
            triggered_by=run.triggered_by,
        )


class SyncRunDetail(SyncRunSummary):
    """Run summary plus the full ordered error list"""
    errors: List[SyncErrorEntry] = Field(default_factory=list)
    batch_size: Optional[int] = None
    trigger_source: Optional[str] = None

    @classmethod
    def from_run(cls, run):
        summary = SyncRunSummary.from_run(run)
        return cls(
            **summary.dict(),
            errors=[SyncErrorEntry(**entry) for entry in (run.errors or [])],
            batch_size=run.batch_size,
            trigger_source=run.trigger_source,
        )


class SyncStatistics(BaseModel):
    """Aggregated run history over a trailing window"""
    window_days: int
    since: datetime
    total_runs: int = 0
    successful_runs: int = 0
    partial_runs: int = 0
    failed_runs: int = 0
    success_rate: float = Field(0.0, ge=0, le=100, description="Succeeded runs as a percentage")
    average_duration_seconds: float = 0.0
    total_items_processed: int = 0
    total_inserted: int = 0
    total_updated: int = 0
    total_errors: int = 0
    total_records_touched: int = 0
    last_success_at: Optional[datetime] = None
    last_failure_at: Optional[datetime] = None


# ============================================================================
# Lock / polling status
# ============================================================================

class SyncLockState(BaseModel):
    is_locked: bool
    owner: Optional[str] = None
    acquired_at: Optional[datetime] = None
    heartbeat_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    is_stale: bool = Field(False, description="Held by a holder whose lease has expired")


class SyncStatusResponse(BaseModel):
    is_running: bool
    lock: SyncLockState
    last_run: Optional[SyncRunSummary] = None
    next_poll_seconds: int = Field(..., description="How long the consumer should wait before polling again")


# ============================================================================
# Diagnostics and aggregate view
# ============================================================================

class ValidationIssue(BaseModel):
    """Ephemeral finding of the validation service, never persisted"""
    item_code: Optional[str] = None
    category: str
    description: str


class ValidationResult(BaseModel):
    is_valid: bool
    issues: List[ValidationIssue] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    checked_at: datetime = Field(default_factory=datetime.utcnow)


class ViewRefreshResult(BaseModel):
    success: bool
    message: str
    rows_written: int = 0
    refreshed_at: Optional[datetime] = None


# ============================================================================
# Health
# ============================================================================

class HealthCheckResponse(BaseModel):
    """Health check response model"""
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    database_connected: bool
    sync_running: bool = False
    lock_stale: bool = False
    last_run: Optional[SyncRunSummary] = None
    status: str = Field("healthy", description="Overall system status: healthy, degraded, unhealthy")

    @validator("status", pre=True, always=True)
    def determine_status(cls, v, values):
        """Determine overall health status"""
        if not values.get("database_connected", False):
            return "unhealthy"

        last_run = values.get("last_run")
        if values.get("lock_stale") or (last_run is not None and last_run.status == SyncStatus.FAILED):
            return "degraded"

        return "healthy"
