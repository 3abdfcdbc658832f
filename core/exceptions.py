"""
Custom exceptions for the order sync engine with structured error context.

Every exception carries a context dictionary (operation, attempt count,
affected identifiers, ...) so that absorbed failures can be logged with
enough detail to diagnose later.

Exception Hierarchy:
    SyncError (base)
    ├── ExtractionError
    │   ├── AuthError                  (fatal, never retried)
    │   ├── RateLimitedError           (retryable, long ceiling)
    │   ├── UpstreamServerError        (retryable, short ceiling)
    │   ├── TransientNetworkError      (retryable)
    │   ├── OtherClientError           (not retried)
    │   └── MalformedResponseError     (page treated as empty)
    ├── TransformationError            (per record, collected)
    ├── ValidationError                (advisory)
    ├── LoadError
    │   ├── WriteChunkError            (per chunk, collected)
    │   └── StateStoreError
    ├── RunInProgressError             (single-flight rejection)
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone


class SyncError(Exception):
    """
    Base exception for all sync-engine errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (operation, attempt, ids, etc.)
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
        self.timestamp = datetime.now(timezone.utc)

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

class RetryableError(SyncError):
    """
    Mixin for errors that should trigger retry logic.

    Use this for transient errors like:
    - Network timeouts and connection resets
    - Rate limiting (HTTP 429)
    - Upstream server errors (HTTP 5xx)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        retry_after: Optional[float] = None
    ):
        super().__init__(message, context, original_exception)
        self.retry_after = retry_after
        if retry_after is not None:
            self.context["retry_after"] = retry_after


class NonRetryableError(SyncError):
    """
    Mixin for errors that should NOT trigger retry logic.

    Use this for permanent errors like:
    - Authentication failures (HTTP 401, 403)
    - Other client errors (HTTP 4xx)
    """
    pass


# ============================================================================
# Extraction Errors
# ============================================================================

class ExtractionError(SyncError):
    """Base exception for upstream retrieval failures."""
    pass


class AuthError(NonRetryableError, ExtractionError):
    """
    Authentication failures (HTTP 401, 403).

    Fatal: never retried, always aborts the current run.
    """
    pass


class RateLimitedError(RetryableError, ExtractionError):
    """Rate limiting (HTTP 429); retried with a higher ceiling and longer backoff."""
    pass


class UpstreamServerError(RetryableError, ExtractionError):
    """
    Upstream server error (HTTP 5xx).

    Context should include:
        - status_code: HTTP status code
        - response_body: Response body (truncated)
        - attempt: Attempt number that failed
    """
    pass


class TransientNetworkError(RetryableError, ExtractionError):
    """Timeouts, connection resets and other transport failures."""
    pass


class OtherClientError(NonRetryableError, ExtractionError):
    """Any other HTTP 4xx response; not retried."""
    pass


class MalformedResponseError(NonRetryableError, ExtractionError):
    """
    Unexpected payload shape or unparseable JSON.

    The page is treated as zero records; the error is logged, not raised
    to the orchestrator.
    """
    pass


# ============================================================================
# Transformation / Validation Errors
# ============================================================================

class TransformationError(SyncError):
    """
    Per-record conversion problem. Collected by the transformer, never raised
    out of a batch.

    Context should include:
        - index: Position of the record in its batch
        - record_id: Upstream identifier (if present)
        - field_name: Destination column that could not be converted
    """
    pass


class ValidationError(SyncError):
    """Field-level validation failure. Advisory only."""
    pass


# ============================================================================
# Load Errors
# ============================================================================

class LoadError(SyncError):
    """Base exception for destination failures."""
    pass


class WriteChunkError(LoadError):
    """
    A single upsert chunk failed. Collected by the writer; the run continues.

    Context should include:
        - chunk_index: Index of the chunk in the batch
        - chunk_size: Number of rows in the chunk
        - record_ids: Identifiers in the chunk (truncated)
    """
    pass


class StateStoreError(LoadError):
    """Reading or writing the key/value sync state failed."""
    pass


# ============================================================================
# Orchestration Errors
# ============================================================================

class RunInProgressError(SyncError):
    """Raised immediately when a run is requested while another is running."""
    pass
