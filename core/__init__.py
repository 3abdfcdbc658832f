"""
Core utilities and configuration for the order mirror sync engine.

Modules:
    config: Application configuration and environment variable management
    database: Engine and session factories (injected, never module singletons)
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration

Usage:
    from core.config import settings
    from core.database import build_engine, build_session_maker
    from core.exceptions import AuthError, RateLimitedError
    from core.logging import setup_logging
"""

from core.config import settings
from core.database import build_engine, build_session_maker
from core.exceptions import (
    SyncError,
    ExtractionError,
    AuthError,
    RateLimitedError,
    UpstreamServerError,
    TransientNetworkError,
    OtherClientError,
    MalformedResponseError,
    TransformationError,
    ValidationError,
    LoadError,
    WriteChunkError,
    StateStoreError,
    RunInProgressError,
    RetryableError,
    NonRetryableError,
)
from core.logging import setup_logging

__all__ = [
    "settings",
    "build_engine",
    "build_session_maker",
    "setup_logging",
    # Exceptions
    "SyncError",
    "ExtractionError",
    "AuthError",
    "RateLimitedError",
    "UpstreamServerError",
    "TransientNetworkError",
    "OtherClientError",
    "MalformedResponseError",
    "TransformationError",
    "ValidationError",
    "LoadError",
    "WriteChunkError",
    "StateStoreError",
    "RunInProgressError",
    "RetryableError",
    "NonRetryableError",
]
