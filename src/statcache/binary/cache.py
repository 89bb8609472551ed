"""On-disk cache of downloaded binary files, grouped by resource code."""

from datetime import UTC, datetime
from pathlib import Path

import structlog
from pydantic import BaseModel, ConfigDict

from statcache.updates.freshness import file_mtime


logger = structlog.get_logger()


class CachedFile(BaseModel):
    """One file in the binary cache."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    code: str
    filename: str
    path: Path
    size_bytes: int
    modified: datetime
    age_days: float


def cache_path(cache_dir: Path, code: str, filename: str) -> Path:
    """Location of a cached file: cache_dir/<code lower-cased>/filename."""
    return cache_dir / code.lower() / filename


def cache_status(cache_dir: Path, now: datetime | None = None) -> list[CachedFile]:
    """List cached files, sorted by code then filename."""
    if not cache_dir.is_dir():
        return []
    now = now or datetime.now(UTC)
    files: list[CachedFile] = []
    for code_dir in sorted(p for p in cache_dir.iterdir() if p.is_dir()):
        for path in sorted(p for p in code_dir.iterdir() if p.is_file()):
            if path.suffix == ".tmp":
                continue
            modified = file_mtime(path)
            files.append(
                CachedFile(
                    code=code_dir.name,
                    filename=path.name,
                    path=path,
                    size_bytes=path.stat().st_size,
                    modified=modified,
                    age_days=round((now - modified).total_seconds() / 86400, 2),
                )
            )
    return files


def clean_cache(
    cache_dir: Path,
    code: str | None = None,
    max_age_days: float | None = None,
    now: datetime | None = None,
) -> int:
    """Delete cached files.

    Args:
        cache_dir: Binary cache root.
        code: Only clean this code's directory.
        max_age_days: Only delete files older than this.
        now: Reference time for ages.

    Returns:
        Number of files removed. With neither filter every file goes.
    """
    if max_age_days is not None and max_age_days < 0:
        msg = "max_age_days must be non-negative"
        raise ValueError(msg)

    removed = 0
    for cached in cache_status(cache_dir, now=now):
        if code is not None and cached.code != code.lower():
            continue
        if max_age_days is not None and cached.age_days <= max_age_days:
            continue
        cached.path.unlink(missing_ok=True)
        removed += 1

    if cache_dir.is_dir():
        for code_dir in cache_dir.iterdir():
            if code_dir.is_dir() and not any(code_dir.iterdir()):
                code_dir.rmdir()

    logger.info(
        "binary_cache_cleaned",
        cache_dir=str(cache_dir),
        code=code,
        max_age_days=max_age_days,
        removed=removed,
    )
    return removed
