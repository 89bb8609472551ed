"""Data models for the persisted cache stores."""

from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field


Row = dict[str, Any]


class CacheEntry(BaseModel):
    """One deduplicated reference entry (e.g. a code list).

    Stored once per entry_id regardless of how many resources use it.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    entry_id: Annotated[str, Field(min_length=1, description="Stable entry id")]
    rows: list[Row] = Field(default_factory=list, description="Entry payload")
    first_seen: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the entry was first cached",
    )
    last_refreshed: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the entry was last re-fetched",
    )
    ttl_days: Annotated[int, Field(ge=1, description="Days until the entry is stale")]

    def age_days(self, now: datetime) -> float:
        """Days since the entry was last refreshed."""
        return (now - self.last_refreshed).total_seconds() / 86400


class ResourceMapping(BaseModel):
    """Entry ids a resource depends on, never the payload itself."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    resource_id: Annotated[str, Field(min_length=1)]
    entry_ids: list[str] = Field(default_factory=list)
    dimensions: dict[str, str] = Field(
        default_factory=dict, description="Dimension name to entry id"
    )
    last_updated: datetime = Field(default_factory=lambda: datetime.now(UTC))


class DownloadLogEntry(BaseModel):
    """Per-resource record of the last successful fetch."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    resource_id: Annotated[str, Field(min_length=1)]
    last_download_time: datetime
    remote_signal: datetime | None = Field(
        default=None,
        description="Server update timestamp or Last-Modified at fetch time",
    )
    row_count: Annotated[int, Field(ge=0)] | None = None
