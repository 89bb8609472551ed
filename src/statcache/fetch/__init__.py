"""HTTP fetch layer with throttling, classified retries and transport fallback.

This module provides resilient HTTP access with:
- Per-source minimum-interval rate limiting shared across workers
- Error classification into retryable and terminal classes
- Exponential backoff honouring Retry-After
- Same-attempt fallback to a secondary transport on connection failures
- Ban detection after repeated 429 responses
"""

from statcache.errors import FetchErrorClass
from statcache.fetch.classify import (
    classify_exception,
    classify_failure,
    classify_status,
    is_retryable,
)
from statcache.fetch.client import RetryingFetcher
from statcache.fetch.config import FetchConfig, SourceProfile
from statcache.fetch.constants import (
    MAX_RETRY_AFTER_SECONDS,
    SOURCE_DATA,
    SOURCE_FILES,
)
from statcache.fetch.models import (
    FetchError,
    FetchResult,
    HeadResult,
    RateLimitPolicy,
    Request,
    RetryPolicy,
    TransportMethod,
)
from statcache.fetch.rate_limiter import (
    RateLimiter,
    get_source_rate_limiter,
    reset_source_rate_limiters,
)
from statcache.fetch.transports import HttpxTransport, RequestsTransport


__all__ = [
    # Client
    "RetryingFetcher",
    # Config
    "FetchConfig",
    "SourceProfile",
    # Models
    "FetchError",
    "FetchErrorClass",
    "FetchResult",
    "HeadResult",
    "RateLimitPolicy",
    "Request",
    "RetryPolicy",
    "TransportMethod",
    # Classification
    "classify_exception",
    "classify_failure",
    "classify_status",
    "is_retryable",
    # Rate limiting
    "RateLimiter",
    "get_source_rate_limiter",
    "reset_source_rate_limiters",
    # Transports
    "HttpxTransport",
    "RequestsTransport",
    # Constants
    "MAX_RETRY_AFTER_SECONDS",
    "SOURCE_DATA",
    "SOURCE_FILES",
]
