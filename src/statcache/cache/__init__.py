"""Staggered-TTL metadata cache."""

from statcache.cache.metadata import (
    CacheLookup,
    CacheStatus,
    MetadataCache,
    RefreshSummary,
    ResourceRefresh,
)
from statcache.cache.singleflight import SingleFlight
from statcache.cache.ttl import CacheConfig, compute_ttl, is_expired, stable_hash


__all__ = [
    "CacheConfig",
    "CacheLookup",
    "CacheStatus",
    "MetadataCache",
    "RefreshSummary",
    "ResourceRefresh",
    "SingleFlight",
    "compute_ttl",
    "is_expired",
    "stable_hash",
]
