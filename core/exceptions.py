"""
Custom exceptions for the item-to-stock reconciliation core.

Every exception carries structured context so failures can be logged,
stored on the sync run record, and surfaced to the caller without losing
the originating error.

Exception Hierarchy:
    SyncException (base)
    ├── ConcurrencyError        trigger while another run holds the lock
    ├── ItemValidationError     one catalog row fails required-field checks
    ├── PersistenceError        write against the stock dataset failed
    ├── ConfigurationError      missing structural prerequisite
    └── SyncSystemError         catastrophic failure, aborts the run
"""

from typing import Optional, Dict, Any
from datetime import datetime


class SyncException(Exception):
    """
    Base exception for all reconciliation errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (item_code, batch, table...)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.utcnow()

        self.context["error_timestamp"] = self.timestamp.isoformat()

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


class ConcurrencyError(SyncException):
    """
    Raised when a sync is triggered while another run holds the lock.

    No sync run record is created when this is raised.

    Context should include:
        - lock_name: Name of the contended lock
        - owner: Identity recorded by the current holder (if any)
        - expires_at: When the current lease expires
    """
    pass


class ItemValidationError(SyncException):
    """
    Raised when a single catalog item fails required-field checks.

    Recorded into the run's error list; never aborts the run.

    Context should include:
        - item_code: The (possibly empty) item code of the row
        - catalog_id: Primary key of the catalog row
        - field_errors: Mapping of field name to validation message
    """

    def __init__(
        self,
        message: str,
        item_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        super().__init__(message, context, original_exception)
        self.item_code = item_code
        self.context["item_code"] = item_code


class PersistenceError(SyncException):
    """
    Raised when an upsert/update against the stock dataset fails.

    Context should include:
        - operation: UPSERT, TOUCH, FLAG_ORPHANS, SELECT
        - table_name: Name of the table
        - batch_index: Index of the batch (if batch operation)
        - batch_size: Number of rows in the failed statement
    """
    pass


class ConfigurationError(SyncException):
    """
    Raised when a structural prerequisite (table, column, index) is missing.

    Surfaced by the validation service as an issue plus recommendation.
    """

    def __init__(
        self,
        message: str,
        recommendation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        super().__init__(message, context, original_exception)
        self.recommendation = recommendation


class SyncSystemError(SyncException):
    """
    Unexpected, non-recoverable failure (store unavailable, lost lock lease).

    Aborts the run, which is finalized as failed before the lock is released.
    """
    pass
