"""Minimum-interval rate limiter, one instance per upstream source."""

import random
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

import structlog

from statcache.fetch.models import RateLimitPolicy


logger = structlog.get_logger()


class RateLimiterProtocol(Protocol):
    """Protocol for rate limiters.

    Allows dependency injection of rate limiter for testing.
    """

    def throttle(self) -> float:
        """Block until the next request may be sent.

        Returns:
            Seconds spent waiting.
        """
        ...

    def reset(self) -> None:
        """Forget the last request time."""
        ...

    def record_rate_limited(self) -> int:
        """Count a 429 response and return the consecutive count."""
        ...

    def record_success(self) -> None:
        """Reset the consecutive 429 count."""
        ...


@dataclass
class RateLimiter:
    """Enforces a minimum, jittered delay between requests to one source.

    The send slot is reserved under the lock and the caller sleeps outside
    it, so concurrent callers queue up one delay apart. Thread-safe; share
    a single instance between all workers that hit the same source.

    Attributes:
        source: Source name, used in logs.
        policy: Delay settings.
    """

    source: str
    policy: RateLimitPolicy = field(default_factory=RateLimitPolicy)
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    last_request_time: float | None = field(init=False, default=None)
    consecutive_rate_limited: int = field(init=False, default=0)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def _reserve_slot(self) -> tuple[float, float]:
        """Pick the next send time and record it as the last request time.

        Returns:
            Tuple of (now, slot).
        """
        with self._lock:
            now = self.clock()
            slot = now
            if self.last_request_time is not None:
                delay = self.policy.effective_delay
                remaining = delay - (now - self.last_request_time)
                if remaining > 0:
                    jitter_range = delay * self.policy.jitter_fraction
                    jitter = random.uniform(-jitter_range, jitter_range)  # noqa: S311
                    slot = now + max(0.0, remaining + jitter)
                slot = max(slot, self.last_request_time)
            self.last_request_time = slot
            return now, slot

    def throttle(self) -> float:
        """Block until the next request may be sent.

        The first call returns immediately.

        Returns:
            Seconds spent waiting.
        """
        now, slot = self._reserve_slot()
        wait = slot - now
        if wait > 0:
            logger.debug(
                "rate_limit_wait",
                source=self.source,
                wait_seconds=round(wait, 3),
            )
            self.sleep(wait)
        return wait

    def set_policy(self, policy: RateLimitPolicy) -> None:
        """Replace the delay settings; the last request time is kept."""
        with self._lock:
            self.policy = policy

    def reset(self) -> None:
        """Clear the last request time and the 429 counter."""
        with self._lock:
            self.last_request_time = None
            self.consecutive_rate_limited = 0

    def record_rate_limited(self) -> int:
        """Count a 429 response.

        Returns:
            Number of consecutive 429 responses from this source.
        """
        with self._lock:
            self.consecutive_rate_limited += 1
            return self.consecutive_rate_limited

    def record_success(self) -> None:
        """Reset the consecutive 429 counter."""
        with self._lock:
            self.consecutive_rate_limited = 0


# Shared rate limiters per source (singleton pattern)
_source_limiters: dict[str, RateLimiter] = {}
_limiter_lock = threading.Lock()


def get_source_rate_limiter(
    source: str, policy: RateLimitPolicy | None = None
) -> RateLimiter:
    """Get or create the rate limiter for a source.

    When a policy is given and differs from the one the shared limiter
    holds, the limiter adopts it, so the most recently configured delay
    applies to every caller of the source.

    Args:
        source: Source identifier (e.g., 'data', 'files').
        policy: Delay settings for the source.

    Returns:
        RateLimiter instance for the source.
    """
    with _limiter_lock:
        limiter = _source_limiters.get(source)
        if limiter is None:
            limiter = RateLimiter(source=source, policy=policy or RateLimitPolicy())
            _source_limiters[source] = limiter
        elif policy is not None and policy != limiter.policy:
            logger.info(
                "rate_limit_policy_changed",
                source=source,
                old_delay=limiter.policy.effective_delay,
                new_delay=policy.effective_delay,
            )
            limiter.set_policy(policy)
        return limiter


def reset_source_rate_limiters() -> None:
    """Reset all source rate limiters (for testing)."""
    global _source_limiters  # noqa: PLW0603
    with _limiter_lock:
        _source_limiters = {}
