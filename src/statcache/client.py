"""Facade tying the fetcher, update tracker and metadata cache together."""

from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from pathlib import Path

import structlog
from pydantic import BaseModel, ConfigDict, Field

from statcache.binary.cache import cache_path
from statcache.cache.metadata import MetadataCache, RefreshSummary
from statcache.collaborators import RequestBuilder, SchemaParser, TemplateRequestBuilder
from statcache.config.models import ClientConfig
from statcache.errors import ConfigError, ParseFailure
from statcache.fetch.client import RetryingFetcher, parse_http_date
from statcache.fetch.constants import (
    EXIT_ERROR,
    EXIT_SUCCESS,
    SOURCE_DATA,
    SOURCE_FILES,
)
from statcache.fetch.models import FetchResult
from statcache.store.models import Row
from statcache.store.store import CacheStores
from statcache.tabular import parse_csv_rows
from statcache.updates.freshness import FreshnessChecker, FreshnessDecision
from statcache.updates.merge import merge
from statcache.updates.tracker import (
    RefetchDecision,
    RemoteSignalProvider,
    SignalProvider,
    UpdateTracker,
)


logger = structlog.get_logger()


def _no_signal(resource_id: str) -> datetime | None:  # noqa: ARG001
    return None


class ResourceResult(BaseModel):
    """What a caller gets back for one resource request."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    resource_id: str
    success: bool
    skipped: bool = Field(default=False, description="Local copy was current")
    rows: list[Row] = Field(default_factory=list)
    decision: RefetchDecision | FreshnessDecision | None = None
    fetch: FetchResult | None = None
    error: str | None = None

    @property
    def attempts(self) -> int:
        return self.fetch.attempts if self.fetch else 0

    @property
    def checksum(self) -> str | None:
        return self.fetch.checksum if self.fetch else None

    @property
    def exit_code(self) -> int:
        if self.success:
            return EXIT_SUCCESS
        if self.fetch is not None and not self.fetch.success:
            return self.fetch.exit_code
        return EXIT_ERROR


class StatClient:
    """Entry point for callers of the statistical data service.

    Args:
        config: Client configuration.
        request_builder: Builds requests; defaults to URL templates from config.
        schema_parser: Interprets structure and signal payloads. Without one,
            the metadata cache is unavailable and update checks always
            refetch.
        fetcher: Retrying fetcher; one is created from config if omitted.
        clock: Returns the current aware datetime.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        request_builder: RequestBuilder | None = None,
        schema_parser: SchemaParser | None = None,
        fetcher: RetryingFetcher | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._config = config or ClientConfig()
        self._fetcher = fetcher or RetryingFetcher(self._config.fetch)
        self._builder = request_builder or self._template_builder()
        self._parser = schema_parser
        self._clock = clock
        self._stores = CacheStores.open(self._config.metadata_dir)

        self._signal: SignalProvider = _no_signal
        if self._builder is not None and self._parser is not None:
            self._signal = RemoteSignalProvider(
                self._fetcher, self._builder, self._parser, source=SOURCE_DATA
            )
        self._tracker = UpdateTracker(self._stores.download_log, self._signal, clock)
        self._freshness = FreshnessChecker(
            self._fetcher, self._config.freshness, source=SOURCE_FILES, clock=clock
        )
        self._metadata: MetadataCache | None = None
        if self._builder is not None and self._parser is not None:
            self._metadata = MetadataCache(
                self._stores,
                self._fetcher,
                self._builder,
                self._parser,
                config=self._config.cache,
                clock=clock,
            )
        self._log = logger.bind(component="client")

    def _template_builder(self) -> TemplateRequestBuilder | None:
        endpoint = self._config.endpoint
        if not endpoint.base_url or not endpoint.templates:
            return None
        return TemplateRequestBuilder(endpoint.base_url, endpoint.templates)

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def fetcher(self) -> RetryingFetcher:
        return self._fetcher

    @property
    def tracker(self) -> UpdateTracker:
        return self._tracker

    @property
    def stores(self) -> CacheStores:
        return self._stores

    @property
    def metadata(self) -> MetadataCache:
        if self._metadata is None:
            msg = "The metadata cache needs both a request builder and a schema parser"
            raise ConfigError(msg)
        return self._metadata

    def _require_builder(self) -> RequestBuilder:
        if self._builder is None:
            msg = "No request builder configured (set endpoint.base_url and templates)"
            raise ConfigError(msg)
        return self._builder

    def fetch_resource(
        self,
        resource_id: str,
        params: dict[str, str] | None = None,
        force: bool = False,
        existing_rows: Sequence[Row] | None = None,
        key_columns: Sequence[str] | None = None,
    ) -> ResourceResult:
        """Fetch a resource's data unless the logged copy is current.

        Args:
            resource_id: Resource identifier.
            params: Extra request parameters for the request builder.
            force: Skip the update check.
            existing_rows: Previously retrieved rows to merge the new data into.
            key_columns: Merge key; defaults to all non-value columns.

        Returns:
            ResourceResult. skipped is True when no fetch was needed, in
            which case rows echoes existing_rows.
        """
        builder = self._require_builder()
        log = self._log.bind(resource_id=resource_id)

        decision = self._tracker.should_refetch(resource_id, force=force)
        if not decision.needed:
            log.info("fetch_skipped", reason=decision.reason.value)
            return ResourceResult(
                resource_id=resource_id,
                success=True,
                skipped=True,
                rows=list(existing_rows or []),
                decision=decision,
            )

        result = self._fetcher.fetch(
            builder.data_request(resource_id, params), source=SOURCE_DATA
        )
        if not result.success or result.payload is None:
            return ResourceResult(
                resource_id=resource_id,
                success=False,
                decision=decision,
                fetch=result,
                error=result.error.message if result.error else "fetch failed",
            )

        try:
            fetched = parse_csv_rows(result.payload, resource_id=resource_id)
        except ParseFailure as e:
            log.warning("data_parse_failed", error=e.message)
            return ResourceResult(
                resource_id=resource_id,
                success=False,
                decision=decision,
                fetch=result,
                error=e.message,
            )

        rows = merge(existing_rows, fetched, key_columns) if existing_rows else fetched
        signal = decision.remote_signal or self._signal(resource_id)
        self._tracker.record(resource_id, signal, row_count=len(fetched))
        log.info(
            "resource_fetched",
            rows=len(fetched),
            merged_rows=len(rows),
            attempts=result.attempts,
            checksum=result.checksum,
        )
        return ResourceResult(
            resource_id=resource_id,
            success=True,
            rows=rows,
            decision=decision,
            fetch=result,
        )

    def should_refetch(self, resource_id: str, force: bool = False) -> RefetchDecision:
        return self._tracker.should_refetch(resource_id, force=force)

    def ensure_cached(self, resource_id: str) -> bool:
        return self.metadata.ensure_cached(resource_id)

    def refresh_expired(
        self, force: bool = False, max_workers: int = 1
    ) -> RefreshSummary:
        return self.metadata.refresh_expired(force=force, max_workers=max_workers)

    def merge(
        self,
        existing: Sequence[Row],
        new: Sequence[Row],
        key_columns: Sequence[str] | None = None,
    ) -> list[Row]:
        return merge(existing, new, key_columns)

    def download_file(
        self,
        url: str,
        dest: Path,
        force: bool = False,
        resource_id: str | None = None,
    ) -> ResourceResult:
        """Download a binary file unless the local copy is still fresh.

        The download log is stamped with the response's Last-Modified.

        Args:
            url: Remote file URL.
            dest: Local destination; replaced atomically.
            force: Skip the freshness check.
            resource_id: Download log key; defaults to the URL.

        Returns:
            ResourceResult with the freshness decision and fetch outcome.
        """
        key = resource_id or url
        decision = None
        if not force:
            decision = self._freshness.needs_update(url, dest)
            if not decision.needed:
                return ResourceResult(
                    resource_id=key, success=True, skipped=True, decision=decision
                )

        result = self._fetcher.download(url, dest, source=SOURCE_FILES)
        if not result.success:
            return ResourceResult(
                resource_id=key,
                success=False,
                decision=decision,
                fetch=result,
                error=result.error.message if result.error else "download failed",
            )

        self._tracker.record(
            key, parse_http_date(result.headers.get("last-modified"))
        )
        return ResourceResult(
            resource_id=key, success=True, decision=decision, fetch=result
        )

    def download_cached(
        self, code: str, url: str, filename: str, force: bool = False
    ) -> ResourceResult:
        """Download into the binary cache under the resource code's directory."""
        dest = cache_path(self._config.binary_dir, code, filename)
        return self.download_file(url, dest, force=force, resource_id=code)
