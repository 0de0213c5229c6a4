"""
Service runtime layer for figurine-forge.

This package provides shared infrastructure for reliability and observability:
- RunContext: Request-scoped context with correlation IDs
- ServiceError: Standardized errors with retry semantics
- ServiceHttpClient: Pooled async HTTP client with automatic headers
- RetryPolicy: Configurable retry behavior
- TTLCache: Explicitly owned in-memory cache with expiry
"""

from .cache import TTLCache
from .context import RunContext
from .errors import ErrorCode, RetryableError, ServiceError, TerminalError
from .http_client import ServiceHttpClient
from .retry import NO_RETRY_POLICY, RetryPolicy, with_retry

__all__ = [
    "ErrorCode",
    "NO_RETRY_POLICY",
    "RunContext",
    "ServiceError",
    "RetryableError",
    "TerminalError",
    "ServiceHttpClient",
    "RetryPolicy",
    "TTLCache",
    "with_retry",
]
