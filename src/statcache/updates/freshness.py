"""Freshness check for binary files that only expose HTTP headers."""

from collections.abc import Callable
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

import structlog
from pydantic import BaseModel, ConfigDict, Field

from statcache.fetch.client import RetryingFetcher
from statcache.fetch.constants import SOURCE_FILES
from statcache.fetch.redact import redact_url


logger = structlog.get_logger()


class FreshnessConfig(BaseModel):
    """Age limit used when the server gives no Last-Modified."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_age_days: float = Field(default=30.0, gt=0)


class FreshnessReason(str, Enum):
    NOT_CACHED = "not_cached"
    SERVER_NEWER = "server_newer"
    UP_TO_DATE = "up_to_date"
    AGE_EXCEEDED = "age_exceeded"
    WITHIN_AGE_LIMIT = "within_age_limit"


class FreshnessDecision(BaseModel):
    """Whether a local copy must be downloaded again."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    needed: bool
    reason: FreshnessReason
    remote_last_modified: datetime | None = None
    local_mtime: datetime | None = None


def file_mtime(path: Path) -> datetime:
    """Modification time of a file as an aware UTC datetime."""
    return datetime.fromtimestamp(path.stat().st_mtime, tz=UTC)


class FreshnessChecker:
    """Header check first, file age as the fallback."""

    def __init__(
        self,
        fetcher: RetryingFetcher,
        config: FreshnessConfig | None = None,
        source: str = SOURCE_FILES,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._fetcher = fetcher
        self._config = config or FreshnessConfig()
        self._source = source
        self._clock = clock
        self._log = logger.bind(component="freshness")

    def needs_update(self, url: str, local_path: Path) -> FreshnessDecision:
        """Decide whether local_path is stale relative to url.

        Args:
            url: Remote file URL.
            local_path: Local copy.

        Returns:
            FreshnessDecision with the reason and the timestamps compared.
        """
        if not local_path.exists():
            decision = FreshnessDecision(needed=True, reason=FreshnessReason.NOT_CACHED)
            self._log_decision(url, decision)
            return decision

        local_mtime = file_mtime(local_path)
        head = self._fetcher.head(url, source=self._source)

        if head.success and head.last_modified is not None:
            newer = head.last_modified > local_mtime
            decision = FreshnessDecision(
                needed=newer,
                reason=FreshnessReason.SERVER_NEWER
                if newer
                else FreshnessReason.UP_TO_DATE,
                remote_last_modified=head.last_modified,
                local_mtime=local_mtime,
            )
        else:
            age_days = (self._clock() - local_mtime).total_seconds() / 86400
            exceeded = age_days > self._config.max_age_days
            decision = FreshnessDecision(
                needed=exceeded,
                reason=FreshnessReason.AGE_EXCEEDED
                if exceeded
                else FreshnessReason.WITHIN_AGE_LIMIT,
                local_mtime=local_mtime,
            )

        self._log_decision(url, decision)
        return decision

    def _log_decision(self, url: str, decision: FreshnessDecision) -> None:
        self._log.info(
            "freshness_decision",
            url=redact_url(url),
            needed=decision.needed,
            reason=decision.reason.value,
        )
