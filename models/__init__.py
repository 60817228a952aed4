"""
SQLAlchemy ORM models for database tables.

Models:
    base: Base declarative class, portable column types and enums
        (SyncStatus, SyncAction)
    catalog_item: Authoritative catalog items (read-only to the sync core)
    stock_record: Derived on-hand stock records kept in line with the catalog
    sync_run: Reconciliation run history and metrics
    sync_lock: Single-row lock guaranteeing one run at a time
    stock_summary: Aggregate per-category stock view

Database Schema:
    Column types are generic with PostgreSQL variants (JSONB, BIGINT) so
    the same metadata works on PostgreSQL and on SQLite for local runs
    and tests.

Usage:
    from models import CatalogItem, StockRecord, SyncRun, SyncLock
    from models.base import SyncStatus

Relationships:
    - CatalogItem → StockRecord (one-to-one by item_code, not a foreign key
      so orphaned stock records can outlive their catalog item)
    - SyncRun → StockRecord (last_sync_run_id, audit only)
"""

from models.base import Base, SyncStatus, SyncAction
from models.catalog_item import CatalogItem
from models.sync_run import SyncRun
from models.stock_record import StockRecord
from models.sync_lock import SyncLock
from models.stock_summary import StockSummary

__all__ = [
    "Base",
    "SyncStatus",
    "SyncAction",
    "CatalogItem",
    "StockRecord",
    "SyncRun",
    "SyncLock",
    "StockSummary",
]
