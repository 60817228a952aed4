"""
Core utilities and configuration for the stock reconciliation service.

This package provides foundational components used throughout the core:

Modules:
    config: Application configuration and environment variable management
    database: Database connection and session management
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration and utilities

Usage:
    from core.config import settings
    from core.database import async_session_maker, init_models
    from core.exceptions import ConcurrencyError, PersistenceError
    from core.logging import setup_logging

Example:
    # Initialize logging
    setup_logging()

    # Get database session
    async with async_session_maker() as session:
        # Perform database operations
        pass
"""

__all__ = [
    "settings",
    "async_session_maker",
    "get_session",
    "init_models",
    "setup_logging",
    # Exceptions
    "SyncException",
    "ConcurrencyError",
    "ItemValidationError",
    "PersistenceError",
    "ConfigurationError",
    "SyncSystemError",
]
