"""
Item-to-stock reconciliation core.

Components:
    coordinator: SyncCoordinator, entry point for triggering and querying runs
    lock: SyncLockManager, single-row compare-and-set lock with lease expiry
    engine: ReconciliationEngine, batched catalog → stock diff and apply
    loaders: StockLoader, dialect-aware stock persistence
    validation: ValidationService, read-only system diagnostics
    view_refresher: ViewRefresher, stock_summary aggregate rebuild
"""

from reconciliation.coordinator import SyncCoordinator
from reconciliation.engine import ReconciliationEngine
from reconciliation.lock import SyncLockManager, SyncLease, STOCK_SYNC_LOCK
from reconciliation.validation import ValidationService
from reconciliation.view_refresher import ViewRefresher

__all__ = [
    "SyncCoordinator",
    "ReconciliationEngine",
    "SyncLockManager",
    "SyncLease",
    "STOCK_SYNC_LOCK",
    "ValidationService",
    "ViewRefresher",
]
