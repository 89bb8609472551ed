"""Top-level client configuration."""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from statcache.cache.ttl import CacheConfig
from statcache.fetch.config import FetchConfig
from statcache.updates.freshness import FreshnessConfig


DEFAULT_CACHE_DIR = Path(".statcache")


class EndpointConfig(BaseModel):
    """Base URL and URL templates for the upstream data service."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    base_url: str = ""
    templates: dict[str, str] = Field(
        default_factory=dict,
        description="data, structure and signal URL templates",
    )


class ClientConfig(BaseModel):
    """Everything a StatClient needs besides its collaborators."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    cache_dir: Path = DEFAULT_CACHE_DIR
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    freshness: FreshnessConfig = Field(default_factory=FreshnessConfig)
    endpoint: EndpointConfig = Field(default_factory=EndpointConfig)

    @property
    def metadata_dir(self) -> Path:
        """Directory of the JSON stores."""
        return self.cache_dir / "metadata"

    @property
    def binary_dir(self) -> Path:
        """Directory of downloaded binary files."""
        return self.cache_dir / "files"
