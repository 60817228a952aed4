"""
Pydantic schemas for data validation and serialization.

Schemas:
    catalog: Validated catalog snapshots (required-field checks) and the
        list of fields mirrored onto stock records
    sync: Per-item results, run results, history, statistics, lock status,
        validation diagnostics and view refresh results

Usage:
    from schemas.catalog import CatalogItemSnapshot
    from schemas.sync import SyncResult, SyncStatistics, ValidationResult

Example:
    snapshot = CatalogItemSnapshot(item_code=" A1 ", unit_price=9.5)
    assert snapshot.item_code == "A1"

Validation:
    Catalog rows failing validation raise ItemValidationError, which the
    reconciliation engine records as a per-item error without aborting
    the run.
"""

__all__ = [
    "CatalogItemSnapshot",
    "SYNCED_FIELDS",
    "ItemResult",
    "ReconciliationReport",
    "SyncResult",
    "SyncRunSummary",
    "SyncRunDetail",
    "SyncStatistics",
    "SyncStatusResponse",
    "ValidationIssue",
    "ValidationResult",
    "ViewRefreshResult",
    "HealthCheckResponse",
]
