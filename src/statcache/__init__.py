"""Rate-respecting retrieval and caching layer for statistical data services."""

__version__ = "0.1.0"

from statcache.client import ResourceResult, StatClient  # noqa: E402
from statcache.config.models import ClientConfig  # noqa: E402
from statcache.fetch.client import RetryingFetcher  # noqa: E402
from statcache.fetch.models import FetchResult, Request, RetryPolicy  # noqa: E402


__all__ = [
    "ClientConfig",
    "FetchResult",
    "Request",
    "ResourceResult",
    "RetryPolicy",
    "RetryingFetcher",
    "StatClient",
    "__version__",
]
