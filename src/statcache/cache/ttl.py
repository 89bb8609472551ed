"""Deterministic, staggered time-to-live for cache entries."""

import hashlib
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from statcache.store.models import CacheEntry


class CacheConfig(BaseModel):
    """TTL settings for the metadata cache."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    base_ttl_days: int = Field(default=14, ge=1, le=3650)
    jitter_days: int = Field(default=14, ge=1, le=3650)


def stable_hash(value: str) -> int:
    """Hash a string to an int that is identical across runs and platforms.

    Uses the first 8 bytes of the SHA-256 digest of the UTF-8 encoding, read
    as a big-endian unsigned integer. Changing this function reshuffles every
    entry's TTL.
    """
    digest = hashlib.sha256(value.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big")


def compute_ttl(entry_id: str, config: CacheConfig | None = None) -> int:
    """TTL in days for an entry: base + stable_hash(id) mod jitter.

    Args:
        entry_id: Stable entry identifier.
        config: TTL settings.

    Returns:
        Days in [base_ttl_days, base_ttl_days + jitter_days - 1].
    """
    config = config or CacheConfig()
    return config.base_ttl_days + stable_hash(entry_id) % config.jitter_days


def is_expired(entry: CacheEntry, now: datetime, force: bool = False) -> bool:
    """Check whether an entry is due for refresh.

    Args:
        entry: Cached entry.
        now: Current time (timezone-aware).
        force: Treat every entry as expired.

    Returns:
        True if the entry should be re-fetched.
    """
    if force:
        return True
    return entry.age_days(now) > entry.ttl_days
