"""Binary archive downloads: cache layout and CSV extraction."""

from statcache.binary.archive import extract_csv_rows, find_csv_member
from statcache.binary.cache import CachedFile, cache_path, cache_status, clean_cache


__all__ = [
    "CachedFile",
    "cache_path",
    "cache_status",
    "clean_cache",
    "extract_csv_rows",
    "find_csv_member",
]
