"""Incremental update detection against a persisted download log."""

from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from enum import Enum
from typing import Protocol

import structlog
from pydantic import BaseModel, ConfigDict, Field

from statcache.batch import run_isolated
from statcache.collaborators import RequestBuilder, SchemaParser
from statcache.errors import ParseFailure
from statcache.fetch.client import RetryingFetcher
from statcache.fetch.constants import SOURCE_DATA
from statcache.fetch.models import RetryPolicy
from statcache.store.models import DownloadLogEntry
from statcache.store.store import JsonStore


logger = structlog.get_logger()


class RefetchReason(str, Enum):
    """Why a resource does or does not need fetching."""

    FIRST_DOWNLOAD = "first_download"
    NO_LOGGED_SIGNAL = "no_logged_signal"
    SIGNAL_UNAVAILABLE = "signal_unavailable"
    SERVER_NEWER = "server_newer"
    UP_TO_DATE = "up_to_date"
    FORCED = "forced"


class RefetchDecision(BaseModel):
    """Outcome of should_refetch."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    resource_id: str
    needed: bool
    reason: RefetchReason
    logged_signal: datetime | None = None
    remote_signal: datetime | None = None


class BatchDecision(BaseModel):
    """Decisions for several resources plus any that could not be checked."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    decisions: dict[str, RefetchDecision] = Field(default_factory=dict)
    errors: dict[str, str] = Field(default_factory=dict)

    @property
    def needs_update(self) -> list[str]:
        return sorted(r for r, d in self.decisions.items() if d.needed)

    @property
    def up_to_date(self) -> list[str]:
        return sorted(r for r, d in self.decisions.items() if not d.needed)


class SignalProvider(Protocol):
    """Returns the server's current last-update time for a resource."""

    def __call__(self, resource_id: str) -> datetime | None: ...


class RemoteSignalProvider:
    """Fetches the update signal with one lightweight metadata request.

    Uses a single attempt: a missing signal just means the caller refetches.
    """

    def __init__(
        self,
        fetcher: RetryingFetcher,
        request_builder: RequestBuilder,
        schema_parser: SchemaParser,
        source: str = SOURCE_DATA,
    ) -> None:
        self._fetcher = fetcher
        self._builder = request_builder
        self._parser = schema_parser
        self._source = source
        self._policy = RetryPolicy(max_retries=0)

    def __call__(self, resource_id: str) -> datetime | None:
        request = self._builder.signal_request(resource_id)
        result = self._fetcher.fetch(request, source=self._source, policy=self._policy)
        if not result.success or result.payload is None:
            return None
        try:
            return self._parser.parse_signal(resource_id, result.payload)
        except ParseFailure as e:
            logger.warning(
                "signal_parse_failed", resource_id=resource_id, error=e.message
            )
            return None


def _as_aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


class UpdateTracker:
    """Decides whether a resource must be fetched again.

    A resource never fetched before always needs fetching. Otherwise the
    server's signal is compared with the one logged at the last fetch; when
    the server cannot be asked, the answer is to fetch.
    """

    def __init__(
        self,
        log_store: JsonStore[DownloadLogEntry],
        signal_provider: SignalProvider,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._store = log_store
        self._signal = signal_provider
        self._clock = clock
        self._log = logger.bind(component="update_tracker")

    def logged(self, resource_id: str) -> DownloadLogEntry | None:
        return self._store.get(resource_id)

    def should_refetch(self, resource_id: str, force: bool = False) -> RefetchDecision:
        """Decide whether resource_id needs a full fetch.

        Args:
            resource_id: Resource identifier.
            force: Always answer yes.

        Returns:
            RefetchDecision with reason and both signals when known.
        """
        entry = self._store.get(resource_id)
        logged_signal = entry.remote_signal if entry else None

        if force:
            decision = RefetchDecision(
                resource_id=resource_id,
                needed=True,
                reason=RefetchReason.FORCED,
                logged_signal=logged_signal,
            )
        elif entry is None:
            decision = RefetchDecision(
                resource_id=resource_id,
                needed=True,
                reason=RefetchReason.FIRST_DOWNLOAD,
            )
        else:
            decision = self._compare(resource_id, logged_signal)

        self._log.info(
            "refetch_decision",
            resource_id=resource_id,
            needed=decision.needed,
            reason=decision.reason.value,
        )
        return decision

    def _compare(
        self, resource_id: str, logged_signal: datetime | None
    ) -> RefetchDecision:
        remote = self._signal(resource_id)
        if remote is None:
            return RefetchDecision(
                resource_id=resource_id,
                needed=True,
                reason=RefetchReason.SIGNAL_UNAVAILABLE,
                logged_signal=logged_signal,
            )
        remote = _as_aware(remote)
        if logged_signal is None:
            return RefetchDecision(
                resource_id=resource_id,
                needed=True,
                reason=RefetchReason.NO_LOGGED_SIGNAL,
                remote_signal=remote,
            )
        newer = remote > _as_aware(logged_signal)
        return RefetchDecision(
            resource_id=resource_id,
            needed=newer,
            reason=RefetchReason.SERVER_NEWER if newer else RefetchReason.UP_TO_DATE,
            logged_signal=logged_signal,
            remote_signal=remote,
        )

    def record(
        self,
        resource_id: str,
        signal: datetime | None,
        fetched_at: datetime | None = None,
        row_count: int | None = None,
    ) -> DownloadLogEntry:
        """Overwrite the log entry after a successful full fetch.

        Args:
            resource_id: Resource identifier.
            signal: Server signal observed for this fetch.
            fetched_at: Fetch time; defaults to now.
            row_count: Number of rows retrieved, if known.

        Returns:
            The stored entry.
        """
        entry = DownloadLogEntry(
            resource_id=resource_id,
            last_download_time=fetched_at or self._clock(),
            remote_signal=_as_aware(signal) if signal else None,
            row_count=row_count,
        )
        self._store.put(resource_id, entry)
        self._log.info(
            "download_logged",
            resource_id=resource_id,
            remote_signal=entry.remote_signal.isoformat()
            if entry.remote_signal
            else None,
            row_count=row_count,
        )
        return entry

    def check_many(
        self, resource_ids: Sequence[str], max_workers: int = 1
    ) -> BatchDecision:
        """Decide for several resources, isolating per-resource failures."""
        outcome = run_isolated(
            list(dict.fromkeys(resource_ids)),
            self.should_refetch,
            max_workers=max_workers,
            component="update_tracker",
        )
        batch = BatchDecision(decisions=outcome.results, errors=outcome.errors)
        self._log.info(
            "update_check_complete",
            total=len(resource_ids),
            needs_update=len(batch.needs_update),
            up_to_date=len(batch.up_to_date),
            errors=len(batch.errors),
        )
        return batch
