"""
Core utilities and configuration for the catalog sync engine.

This package provides foundational components used throughout the pipeline:

Modules:
    config: Application configuration and environment variable management
    database: Async engine and session factory construction
    redis: Redis client construction (queue + distributed lock backend)
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration and utilities

Usage:
    from core.config import settings
    from core.database import create_engine, create_session_factory
    from core.exceptions import ProviderError, NetworkError
    from core.logging import setup_logging

Example:
    # Initialize logging
    setup_logging()

    # Open a database session
    session_factory = create_session_factory(create_engine())
    async with session_factory() as session:
        # Perform database operations
        pass
"""

from core.config import settings
from core.database import create_engine, create_session_factory
from core.redis import create_redis
from core.logging import setup_logging
from core.exceptions import (
    CatalogSyncException,
    ProviderError,
    NetworkError,
    RateLimitError,
    AuthenticationError,
    ResourceNotFoundError,
    BundleRejectedError,
    RepositoryError,
    DatabaseConnectionError,
    QueueError,
    SyncAlreadyInProgressError,
    UnsupportedJobError,
    ConfigurationError,
    RetryableError,
    NonRetryableError,
)

__all__ = [
    "settings",
    "create_engine",
    "create_session_factory",
    "create_redis",
    "setup_logging",
    # Exceptions
    "CatalogSyncException",
    "ProviderError",
    "NetworkError",
    "RateLimitError",
    "AuthenticationError",
    "ResourceNotFoundError",
    "BundleRejectedError",
    "RepositoryError",
    "DatabaseConnectionError",
    "QueueError",
    "SyncAlreadyInProgressError",
    "UnsupportedJobError",
    "ConfigurationError",
    "RetryableError",
    "NonRetryableError",
]
