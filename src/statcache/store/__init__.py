"""Persisted cache state: entries, resource mappings and the download log."""

from statcache.store.io import AtomicWriter, WrittenFile
from statcache.store.models import CacheEntry, DownloadLogEntry, ResourceMapping, Row
from statcache.store.store import CacheStores, JsonStore


__all__ = [
    "AtomicWriter",
    "CacheEntry",
    "CacheStores",
    "DownloadLogEntry",
    "JsonStore",
    "ResourceMapping",
    "Row",
    "WrittenFile",
]
