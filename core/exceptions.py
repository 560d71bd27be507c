"""
Custom exceptions for the catalog sync pipeline with structured error context.

This module provides the exception hierarchy used by provider clients,
transformers, repositories, the queue and the worker. Each exception carries
context information for debugging and monitoring.

Exception Hierarchy:
    CatalogSyncException (base)
    ├── ProviderError
    │   ├── NetworkError (retryable)
    │   ├── RateLimitError (retryable)
    │   ├── AuthenticationError (non-retryable)
    │   └── ResourceNotFoundError (non-retryable)
    ├── BundleRejectedError
    ├── RepositoryError
    │   └── DatabaseConnectionError (retryable)
    ├── QueueError
    ├── SyncAlreadyInProgressError
    ├── UnsupportedJobError (non-retryable)
    ├── ConfigurationError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime


class CatalogSyncException(Exception):
    """
    Base exception for all catalog sync errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (provider, job id, etc.)
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


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(CatalogSyncException):
    """
    Errors that should go through the queue's retry/backoff policy.

    Use this for transient errors like:
    - Network timeouts
    - Rate limiting (HTTP 429)
    - Temporary database connection issues
    - Service unavailable (HTTP 503)
    """
    pass


class NonRetryableError(CatalogSyncException):
    """
    Errors that should NOT be retried by the queue.

    Use this for permanent errors like:
    - Authentication failures (HTTP 401, 403)
    - Unknown job type / provider combinations
    - Resource not found (HTTP 404)
    """
    pass


# ============================================================================
# Provider Errors
# ============================================================================

class ProviderError(CatalogSyncException):
    """
    Exception raised when an upstream provider call fails.

    Context should include:
        - provider: Provider name
        - api_url: The endpoint that failed
        - status_code: HTTP status code (if applicable)
        - retry_count: Number of retries attempted
    """
    pass


class NetworkError(RetryableError, ProviderError):
    """Network-related errors that should be retried."""
    pass


class RateLimitError(RetryableError, ProviderError):
    """Rate limiting errors (HTTP 429) that should be retried with backoff."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        retry_after: Optional[int] = None
    ):
        super().__init__(message, context, original_exception)
        self.retry_after = retry_after
        if retry_after:
            self.context["retry_after"] = retry_after


class AuthenticationError(NonRetryableError, ProviderError):
    """Authentication failures (HTTP 401, 403) that should not be retried."""
    pass


class ResourceNotFoundError(NonRetryableError, ProviderError):
    """Resource not found errors (HTTP 404) that should not be retried."""
    pass


# ============================================================================
# Transformation Errors
# ============================================================================

class BundleRejectedError(CatalogSyncException):
    """
    A raw bundle failed validation.

    Raised inside a transformer and converted to a None result there; it
    never crosses the per-record boundary.
    """
    pass


# ============================================================================
# Repository Errors
# ============================================================================

class RepositoryError(CatalogSyncException):
    """
    Exception raised when database operations fail.

    Context should include:
        - operation: Type of database operation (INSERT, UPDATE, UPSERT)
        - table_name: Name of the table
    """
    pass


class DatabaseConnectionError(RetryableError, RepositoryError):
    """The database could not be reached (raised by the startup connectivity check)."""
    pass


# ============================================================================
# Coordination Errors
# ============================================================================

class QueueError(CatalogSyncException):
    """
    Queue storage operation failed (Redis unavailable or erroring).

    Context should include:
        - queue: Queue name
        - operation: add, fetch_next or requeue_stalled
    """
    pass


class SyncAlreadyInProgressError(CatalogSyncException):
    """An active sync job of the same scope already exists."""
    pass


class UnsupportedJobError(NonRetryableError):
    """No handler is registered for a job type / provider combination."""
    pass


class ConfigurationError(CatalogSyncException):
    """Required configuration is missing or invalid."""
    pass
