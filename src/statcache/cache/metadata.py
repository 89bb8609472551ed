"""Deduplicated reference-entry cache with staggered expiration.

Entries (code lists) are stored once by id and shared across resources.
Each resource keeps a mapping to the ids it depends on. Entries are
refreshed by re-fetching an owning resource's structure payload, which
re-derives every entry that resource contains.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime

import structlog
from pydantic import BaseModel, ConfigDict, Field

from statcache.batch import run_isolated
from statcache.cache.singleflight import SingleFlight
from statcache.cache.ttl import CacheConfig, compute_ttl, is_expired
from statcache.collaborators import RequestBuilder, SchemaParser
from statcache.errors import ParseFailure
from statcache.fetch.client import RetryingFetcher
from statcache.fetch.constants import SOURCE_DATA
from statcache.metrics import CacheMetrics
from statcache.store.models import CacheEntry, ResourceMapping
from statcache.store.store import CacheStores


logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class ResourceRefresh:
    """Outcome of re-fetching one resource's structure."""

    resource_id: str
    success: bool
    entry_ids: tuple[str, ...] = ()
    error: str | None = None


@dataclass
class CacheLookup:
    """Result of get_or_refresh."""

    entries: dict[str, CacheEntry] = field(default_factory=dict)
    expired_ids: list[str] = field(default_factory=list)
    missing_ids: list[str] = field(default_factory=list)
    failed_ids: list[str] = field(default_factory=list)


class RefreshSummary(BaseModel):
    """Summary of a maintenance sweep over expired entries."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    refreshed_count: int = Field(ge=0)
    total: int = Field(ge=0, description="Entries in the store")
    expired_ids: list[str] = Field(default_factory=list)
    failed_ids: list[str] = Field(default_factory=list)
    failed_resources: dict[str, str] = Field(default_factory=dict)

    @property
    def resources_failed(self) -> int:
        return len(self.failed_resources)


class CacheStatus(BaseModel):
    """Counts describing the cache contents."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    entries: int
    mappings: int
    expired: int


class MetadataCache:
    """Staggered-TTL cache of reference entries.

    Refreshes of the same resource are coalesced, so concurrent callers
    trigger a single network call.
    """

    def __init__(  # noqa: PLR0913
        self,
        stores: CacheStores,
        fetcher: RetryingFetcher,
        request_builder: RequestBuilder,
        schema_parser: SchemaParser,
        config: CacheConfig | None = None,
        source: str = SOURCE_DATA,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize the cache.

        Args:
            stores: Persisted entry and mapping stores.
            fetcher: Retrying fetcher used for structure requests.
            request_builder: Builds structure requests.
            schema_parser: Derives entries from structure payloads.
            config: TTL settings.
            source: Upstream source for structure requests.
            clock: Returns the current aware datetime.
        """
        self._stores = stores
        self._fetcher = fetcher
        self._builder = request_builder
        self._parser = schema_parser
        self._config = config or CacheConfig()
        self._source = source
        self._clock = clock
        self._flights: SingleFlight[ResourceRefresh] = SingleFlight()
        self._metrics = CacheMetrics.get_instance()
        self._log = logger.bind(component="metadata_cache")

    def compute_ttl(self, entry_id: str) -> int:
        return compute_ttl(entry_id, self._config)

    def is_expired(
        self, entry: CacheEntry, now: datetime | None = None, force: bool = False
    ) -> bool:
        return is_expired(entry, now or self._clock(), force=force)

    def owners(self, entry_id: str) -> list[str]:
        """Resource ids whose mapping references entry_id, sorted."""
        return sorted(
            resource_id
            for resource_id, mapping in self._stores.mappings.all().items()
            if entry_id in mapping.entry_ids
        )

    def get_or_refresh(self, ids: Iterable[str], force: bool = False) -> CacheLookup:
        """Return entries for ids, refreshing those that are expired.

        Args:
            ids: Entry ids to look up.
            force: Treat every requested id as expired.

        Returns:
            CacheLookup with current entries and the ids that were expired,
            unknown to every resource, or could not be refreshed.
        """
        requested = list(dict.fromkeys(ids))
        now = self._clock()
        entries = self._stores.entries.all()
        lookup = CacheLookup()

        for entry_id in requested:
            entry = entries.get(entry_id)
            if entry is None or self.is_expired(entry, now, force=force):
                lookup.expired_ids.append(entry_id)

        self._metrics.record_hits(len(requested) - len(lookup.expired_ids))

        if lookup.expired_ids:
            pending = set(lookup.expired_ids)
            orphaned: set[str] = set()
            for entry_id in lookup.expired_ids:
                if self.owners(entry_id):
                    continue
                pending.discard(entry_id)
                if entry_id in entries:
                    orphaned.add(entry_id)
                else:
                    lookup.missing_ids.append(entry_id)
            _, unrefreshed, _ = self._refresh_ids(pending)
            lookup.failed_ids = sorted(unrefreshed | orphaned)

        current = self._stores.entries.all()
        lookup.entries = {i: current[i] for i in requested if i in current}
        return lookup

    def refresh(self, entry_id: str) -> bool:
        """Refresh one entry by re-fetching a resource that owns it.

        Tries each owning resource in turn until one yields the entry.

        Returns:
            True if the entry was refreshed.
        """
        owners = self.owners(entry_id)
        if not owners:
            self._log.warning("refresh_no_owner", entry_id=entry_id)
            return False
        for resource_id in owners:
            outcome = self.refresh_resource(resource_id)
            if outcome.success and entry_id in outcome.entry_ids:
                return True
        return False

    def refresh_resource(self, resource_id: str) -> ResourceRefresh:
        """Re-fetch a resource's structure and store the entries it contains.

        Concurrent calls for the same resource share one fetch.
        """
        return self._flights.do(
            resource_id, lambda: self._refresh_resource(resource_id)
        )

    def ensure_cached(self, resource_id: str) -> bool:
        """Make sure a resource's mapping and all its entries are present.

        Only that resource's structure is fetched, and only when something
        is missing.

        Returns:
            True if the resource's dependencies are cached.
        """
        mapping = self._stores.mappings.get(resource_id)
        if mapping is not None:
            entries = self._stores.entries.all()
            if all(entry_id in entries for entry_id in mapping.entry_ids):
                self._log.debug("ensure_cached_hit", resource_id=resource_id)
                return True
        return self.refresh_resource(resource_id).success

    def refresh_expired(
        self, force: bool = False, max_workers: int = 1
    ) -> RefreshSummary:
        """Refresh every expired entry, fetching each owning resource once.

        A failing resource is reported in the summary and never aborts the
        sweep; its entries are retried through any other owning resource.

        Args:
            force: Refresh every entry regardless of age.
            max_workers: Worker threads for resource refreshes.

        Returns:
            RefreshSummary with counts, expired ids and failures.
        """
        now = self._clock()
        entries = self._stores.entries.all()
        expired_ids = sorted(
            entry_id
            for entry_id, entry in entries.items()
            if self.is_expired(entry, now, force=force)
        )
        self._log.info(
            "ttl_refresh_started",
            total=len(entries),
            expired=len(expired_ids),
            force=force,
        )

        refreshed, failed_ids, failed_resources = self._refresh_ids(
            set(expired_ids), max_workers=max_workers
        )

        summary = RefreshSummary(
            refreshed_count=len(refreshed),
            total=len(entries),
            expired_ids=expired_ids,
            failed_ids=sorted(failed_ids),
            failed_resources=failed_resources,
        )
        self._log.info(
            "ttl_refresh_complete",
            refreshed=summary.refreshed_count,
            failed=len(summary.failed_ids),
            resources_failed=summary.resources_failed,
        )
        return summary

    def cache_status(self) -> CacheStatus:
        now = self._clock()
        entries = self._stores.entries.all()
        return CacheStatus(
            entries=len(entries),
            mappings=len(self._stores.mappings.all()),
            expired=sum(1 for e in entries.values() if self.is_expired(e, now)),
        )

    def _plan(self, pending: set[str], exclude: set[str]) -> list[str]:
        """Pick resources that cover pending ids, largest coverage first."""
        coverage = {
            resource_id: pending.intersection(mapping.entry_ids)
            for resource_id, mapping in self._stores.mappings.all().items()
            if resource_id not in exclude
        }
        plan: list[str] = []
        uncovered = set(pending)
        while uncovered:
            best = max(
                sorted(coverage),
                key=lambda r: len(coverage[r] & uncovered),
                default=None,
            )
            if best is None or not coverage[best] & uncovered:
                break
            plan.append(best)
            uncovered -= coverage[best]
        return plan

    def _refresh_ids(
        self, pending: set[str], max_workers: int = 1
    ) -> tuple[set[str], set[str], dict[str, str]]:
        """Refresh pending ids through their owning resources.

        Returns:
            Tuple of (refreshed ids, ids left unrefreshed, failed resources).
        """
        refreshed: set[str] = set()
        failed_resources: dict[str, str] = {}
        tried: set[str] = set()
        remaining = set(pending)

        while remaining:
            plan = self._plan(remaining, exclude=tried)
            if not plan:
                break
            tried.update(plan)
            outcome = run_isolated(
                plan,
                self.refresh_resource,
                max_workers=max_workers,
                component="metadata_cache",
            )
            for resource_id, error in outcome.errors.items():
                failed_resources[resource_id] = error
            for resource_id, result in outcome.results.items():
                if result.success:
                    covered = remaining.intersection(result.entry_ids)
                    refreshed |= covered
                    remaining -= covered
                else:
                    failed_resources[resource_id] = result.error or "refresh failed"

        for resource_id in failed_resources:
            self._metrics.record_refresh_failure()
            self._log.warning(
                "resource_refresh_failed",
                resource_id=resource_id,
                error=failed_resources[resource_id],
            )
        return refreshed, remaining, failed_resources

    def _refresh_resource(self, resource_id: str) -> ResourceRefresh:
        log = self._log.bind(resource_id=resource_id)
        request = self._builder.structure_request(resource_id)
        result = self._fetcher.fetch(request, source=self._source)
        if not result.success or result.payload is None:
            message = result.error.message if result.error else "fetch failed"
            return ResourceRefresh(resource_id, success=False, error=message)

        try:
            parsed = self._parser.parse_structure(resource_id, result.payload)
        except ParseFailure as e:
            log.warning("structure_parse_failed", error=e.message)
            return ResourceRefresh(resource_id, success=False, error=e.message)

        dangling = sorted(set(parsed.dimensions.values()) - set(parsed.entries))
        if dangling:
            message = f"Dimensions reference entries missing from payload: {dangling}"
            log.warning("structure_incomplete", missing=dangling)
            return ResourceRefresh(resource_id, success=False, error=message)

        now = self._clock()
        existing = self._stores.entries.all()
        updated: dict[str, CacheEntry] = {}
        for entry_id, rows in parsed.entries.items():
            previous = existing.get(entry_id)
            updated[entry_id] = CacheEntry(
                entry_id=entry_id,
                rows=rows,
                first_seen=previous.first_seen if previous else now,
                last_refreshed=now,
                ttl_days=self.compute_ttl(entry_id),
            )

        # Entries land before the mapping that references them.
        self._stores.entries.put_many(updated)
        entry_ids = tuple(sorted(parsed.entries))
        self._stores.mappings.put(
            resource_id,
            ResourceMapping(
                resource_id=resource_id,
                entry_ids=list(entry_ids),
                dimensions=parsed.dimensions,
                last_updated=now,
            ),
        )
        self._metrics.record_refreshed(len(updated))
        log.info(
            "resource_refreshed",
            entries=len(updated),
            new_entries=sum(1 for i in updated if i not in existing),
            attempts=result.attempts,
        )
        return ResourceRefresh(resource_id, success=True, entry_ids=entry_ids)
