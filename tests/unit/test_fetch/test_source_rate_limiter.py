"""Unit tests for the per-source minimum-interval rate limiter."""

import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from statcache.fetch.client import RetryingFetcher
from statcache.fetch.config import FetchConfig, SourceProfile
from statcache.fetch.models import RateLimitPolicy
from statcache.fetch.rate_limiter import (
    RateLimiter,
    get_source_rate_limiter,
    reset_source_rate_limiters,
)


class ManualClock:
    """Monotonic clock advanced by the fake sleep."""

    def __init__(self) -> None:
        self.now = 100.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


def make_limiter(
    clock: ManualClock, delay: float = 10.0, jitter: float = 0.0, floor: float = 1.0
) -> RateLimiter:
    return RateLimiter(
        source="test",
        policy=RateLimitPolicy(delay=delay, min_delay=floor, jitter_fraction=jitter),
        clock=clock,
        sleep=clock.sleep,
    )


class TestRateLimiter:
    """Tests for RateLimiter."""

    def test_first_call_returns_immediately(self, clock: ManualClock) -> None:
        limiter = make_limiter(clock)
        assert limiter.throttle() == 0
        assert clock.sleeps == []
        assert limiter.last_request_time == 100.0

    def test_second_call_waits_remaining_delay(self, clock: ManualClock) -> None:
        limiter = make_limiter(clock, delay=10.0)
        limiter.throttle()
        clock.now += 4.0

        waited = limiter.throttle()

        assert waited == pytest.approx(6.0)
        assert clock.sleeps == [pytest.approx(6.0)]

    def test_no_wait_once_delay_elapsed(self, clock: ManualClock) -> None:
        limiter = make_limiter(clock, delay=10.0)
        limiter.throttle()
        clock.now += 11.0
        assert limiter.throttle() == 0
        assert clock.sleeps == []

    def test_jitter_stays_within_bounds(self, clock: ManualClock) -> None:
        limiter = make_limiter(clock, delay=10.0, jitter=0.2)
        for _ in range(50):
            limiter.throttle()
        waits = clock.sleeps
        assert len(waits) == 49
        assert all(8.0 <= w <= 12.0 for w in waits)
        assert len(set(waits)) > 1

    def test_jitter_never_negative(self, clock: ManualClock) -> None:
        limiter = make_limiter(clock, delay=10.0, jitter=0.5)
        limiter.throttle()
        clock.now += 9.9  # remaining 0.1, jitter up to +/-5
        for _ in range(20):
            assert limiter.throttle() >= 0

    def test_floor_applies_under_override(self, clock: ManualClock) -> None:
        limiter = make_limiter(clock, delay=0.0, floor=2.0)
        limiter.throttle()
        assert limiter.throttle() == pytest.approx(2.0)

    def test_last_request_time_is_monotonic(self, clock: ManualClock) -> None:
        limiter = make_limiter(clock, delay=5.0, jitter=0.3)
        seen = []
        for _ in range(20):
            limiter.throttle()
            seen.append(limiter.last_request_time)
        assert seen == sorted(seen)

    def test_reset_clears_state(self, clock: ManualClock) -> None:
        limiter = make_limiter(clock)
        limiter.throttle()
        limiter.record_rate_limited()

        limiter.reset()

        assert limiter.last_request_time is None
        assert limiter.consecutive_rate_limited == 0
        assert limiter.throttle() == 0

    def test_rate_limited_counter(self, clock: ManualClock) -> None:
        limiter = make_limiter(clock)
        assert limiter.record_rate_limited() == 1
        assert limiter.record_rate_limited() == 2
        limiter.record_success()
        assert limiter.consecutive_rate_limited == 0

    def test_concurrent_callers_are_spaced(self) -> None:
        """Threads sharing one limiter are spaced a full delay apart."""
        limiter = RateLimiter(
            source="threads",
            policy=RateLimitPolicy(delay=0.05, min_delay=0.05, jitter_fraction=0.0),
        )
        stamps: list[float] = []

        def call() -> None:
            limiter.throttle()
            stamps.append(time.monotonic())

        with ThreadPoolExecutor(max_workers=4) as executor:
            for _ in range(6):
                executor.submit(call)

        stamps.sort()
        gaps = [b - a for a, b in zip(stamps, stamps[1:], strict=False)]
        assert len(stamps) == 6
        assert all(gap >= 0.04 for gap in gaps)

    @pytest.mark.slow
    def test_real_wall_clock_floor(self) -> None:
        """Two throttles with delay=5 and no jitter are ~5 seconds apart."""
        limiter = RateLimiter(
            source="wall",
            policy=RateLimitPolicy(delay=5.0, min_delay=1.0, jitter_fraction=0.0),
        )
        start = time.monotonic()
        limiter.throttle()
        limiter.throttle()
        assert time.monotonic() - start >= 4.95


class TestSourceRegistry:
    """Tests for the shared per-source registry."""

    def setup_method(self) -> None:
        reset_source_rate_limiters()

    def teardown_method(self) -> None:
        reset_source_rate_limiters()

    def test_same_source_shares_instance(self) -> None:
        a = get_source_rate_limiter("data")
        b = get_source_rate_limiter("data")
        assert a is b

    def test_sources_are_independent(self) -> None:
        data = get_source_rate_limiter("data")
        files = get_source_rate_limiter("files")
        assert data is not files
        data.throttle()
        assert files.last_request_time is None

    def test_policy_used_on_creation(self) -> None:
        policy = RateLimitPolicy(delay=1.0, min_delay=0.5)
        limiter = get_source_rate_limiter("custom", policy)
        assert limiter.policy == policy

    def test_shared_across_threads(self) -> None:
        with ThreadPoolExecutor(max_workers=8) as executor:
            limiters = list(
                executor.map(lambda _: get_source_rate_limiter("data"), range(16))
            )
        assert all(lim is limiters[0] for lim in limiters)

    def test_changed_policy_is_adopted(self) -> None:
        limiter = get_source_rate_limiter("data", RateLimitPolicy())
        limiter.throttle()
        faster = RateLimitPolicy(delay=0.5, min_delay=0.5)

        again = get_source_rate_limiter("data", faster)

        assert again is limiter
        assert again.policy == faster
        assert again.last_request_time is not None

    def test_missing_policy_keeps_current(self) -> None:
        policy = RateLimitPolicy(delay=2.0, min_delay=1.0)
        get_source_rate_limiter("data", policy)
        assert get_source_rate_limiter("data").policy == policy

    def test_fetchers_with_different_policies(self) -> None:
        RetryingFetcher(FetchConfig(), fallback=False).limiter_for("data")
        custom = FetchConfig(
            sources={
                "data": SourceProfile(
                    rate_limit=RateLimitPolicy(delay=0.5, min_delay=0.5)
                )
            }
        )

        limiter = RetryingFetcher(custom, fallback=False).limiter_for("data")

        assert isinstance(limiter, RateLimiter)
        assert limiter.policy.effective_delay == 0.5
