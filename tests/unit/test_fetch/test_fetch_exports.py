"""Unit tests for the statcache.fetch package surface."""

import statcache.fetch
from statcache import errors
from statcache.fetch import (
    FetchConfig,
    FetchErrorClass,
    FetchResult,
    RateLimiter,
    RetryingFetcher,
    RetryPolicy,
)
from statcache.fetch import client, config, models, rate_limiter


class TestPublicApi:
    """Tests for the names re-exported by statcache.fetch."""

    def test_reexports_are_the_submodule_objects(self) -> None:
        assert RetryingFetcher is client.RetryingFetcher
        assert FetchConfig is config.FetchConfig
        assert FetchResult is models.FetchResult
        assert RetryPolicy is models.RetryPolicy
        assert RateLimiter is rate_limiter.RateLimiter

    def test_error_class_is_shared_with_errors(self) -> None:
        assert FetchErrorClass is errors.FetchErrorClass
        assert models.FetchErrorClass is errors.FetchErrorClass

    def test_all_names_resolve(self) -> None:
        for name in statcache.fetch.__all__:
            assert getattr(statcache.fetch, name) is not None
