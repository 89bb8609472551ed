"""Metrics collection for the fetch and cache layers."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, ClassVar


if TYPE_CHECKING:
    from statcache.errors import FetchErrorClass
    from statcache.fetch.models import TransportMethod


@dataclass
class FetchMetrics:
    """Counters for network activity.

    Singleton; tracks requests by status, retries, fallbacks to the
    secondary transport, failures and time spent throttled.
    """

    requests_total: dict[int, int] = field(default_factory=dict)
    transport_errors_total: int = 0
    retry_total: int = 0
    fallback_total: int = 0
    failures_total: dict[str, int] = field(default_factory=dict)
    bytes_total: int = 0
    throttle_wait_seconds_total: float = 0.0
    served_by: dict[str, int] = field(default_factory=dict)

    _instance: ClassVar["FetchMetrics | None"] = None
    _lock: ClassVar[threading.Lock] = threading.Lock()

    @classmethod
    def get_instance(cls) -> "FetchMetrics":
        """Get singleton metrics instance."""
        with cls._lock:
            if cls._instance is None:
                cls._instance = cls()
            return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Reset metrics (primarily for testing)."""
        with cls._lock:
            cls._instance = None

    def record_response(self, status_code: int, bytes_received: int) -> None:
        """Record an HTTP response of any status."""
        with self._lock:
            self.requests_total[status_code] = (
                self.requests_total.get(status_code, 0) + 1
            )
            self.bytes_total += bytes_received

    def record_transport_error(self) -> None:
        """Record a request that got no HTTP response."""
        with self._lock:
            self.transport_errors_total += 1

    def record_retry(self) -> None:
        """Record a retry attempt."""
        with self._lock:
            self.retry_total += 1

    def record_fallback(self) -> None:
        """Record a same-attempt switch to the secondary transport."""
        with self._lock:
            self.fallback_total += 1

    def record_success(self, method: TransportMethod) -> None:
        """Record which transport delivered a successful response."""
        with self._lock:
            self.served_by[method.value] = self.served_by.get(method.value, 0) + 1

    def record_failure(self, error_class: FetchErrorClass) -> None:
        """Record a fetch that ended in failure."""
        key = error_class.value
        with self._lock:
            self.failures_total[key] = self.failures_total.get(key, 0) + 1

    def record_throttle(self, seconds: float) -> None:
        """Record time spent waiting on a rate limiter."""
        with self._lock:
            self.throttle_wait_seconds_total += seconds

    def to_dict(self) -> dict[str, int | float | dict[str, int] | dict[int, int]]:
        """Convert metrics to dictionary."""
        return {
            "requests_total": dict(self.requests_total),
            "transport_errors_total": self.transport_errors_total,
            "retry_total": self.retry_total,
            "fallback_total": self.fallback_total,
            "failures_total": dict(self.failures_total),
            "bytes_total": self.bytes_total,
            "throttle_wait_seconds_total": round(self.throttle_wait_seconds_total, 3),
            "served_by": dict(self.served_by),
        }


@dataclass
class CacheMetrics:
    """Counters for the metadata cache and persisted stores."""

    hits_total: int = 0
    refreshed_entries_total: int = 0
    refresh_failures_total: int = 0
    corruption_recoveries_total: int = 0
    singleflight_shared_total: int = 0

    _instance: ClassVar["CacheMetrics | None"] = None
    _lock: ClassVar[threading.Lock] = threading.Lock()

    @classmethod
    def get_instance(cls) -> "CacheMetrics":
        """Get singleton metrics instance."""
        with cls._lock:
            if cls._instance is None:
                cls._instance = cls()
            return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Reset metrics (primarily for testing)."""
        with cls._lock:
            cls._instance = None

    def record_hits(self, count: int) -> None:
        with self._lock:
            self.hits_total += count

    def record_refreshed(self, count: int) -> None:
        with self._lock:
            self.refreshed_entries_total += count

    def record_refresh_failure(self) -> None:
        with self._lock:
            self.refresh_failures_total += 1

    def record_corruption(self) -> None:
        with self._lock:
            self.corruption_recoveries_total += 1

    def record_shared_flight(self) -> None:
        with self._lock:
            self.singleflight_shared_total += 1

    def to_dict(self) -> dict[str, int]:
        """Convert metrics to dictionary."""
        return {
            "hits_total": self.hits_total,
            "refreshed_entries_total": self.refreshed_entries_total,
            "refresh_failures_total": self.refresh_failures_total,
            "corruption_recoveries_total": self.corruption_recoveries_total,
            "singleflight_shared_total": self.singleflight_shared_total,
        }
