"""Interfaces to the request builder and schema parser.

Endpoint shapes and the structure format of the upstream service live
outside this package. The cache and update tracker only talk to them
through these protocols.
"""

from datetime import datetime
from typing import Protocol
from urllib.parse import urlencode

from pydantic import BaseModel, ConfigDict, Field

from statcache.errors import ConfigError
from statcache.fetch.models import Request
from statcache.store.models import Row


class ParsedStructure(BaseModel):
    """Entries and dimension mapping derived from a structure payload."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    entries: dict[str, list[Row]] = Field(
        default_factory=dict, description="Entry id to its rows"
    )
    dimensions: dict[str, str] = Field(
        default_factory=dict, description="Dimension name to entry id"
    )


class RequestBuilder(Protocol):
    """Builds ready-to-send requests for a resource."""

    def data_request(
        self, resource_id: str, params: dict[str, str] | None = None
    ) -> Request:
        """Request for the resource's tabular data."""
        ...

    def structure_request(self, resource_id: str) -> Request:
        """Request for the structure describing the resource's entries."""
        ...

    def signal_request(self, resource_id: str) -> Request:
        """Lightweight request whose response carries the last-update time."""
        ...


class SchemaParser(Protocol):
    """Interprets structure and update-signal payloads."""

    def parse_structure(self, resource_id: str, payload: bytes) -> ParsedStructure:
        """Extract entries and dimensions.

        Raises:
            ParseFailure: If the payload cannot be interpreted.
        """
        ...

    def parse_signal(self, resource_id: str, payload: bytes) -> datetime | None:
        """Extract the server's last-update timestamp, if present."""
        ...


class TemplateRequestBuilder:
    """Request builder filling URL templates from configuration.

    Templates use ``str.format`` fields ``{base_url}`` and ``{resource_id}``;
    data request params are appended as a query string.
    """

    REQUIRED = ("data", "structure", "signal")

    def __init__(
        self,
        base_url: str,
        templates: dict[str, str],
        headers: dict[str, str] | None = None,
    ) -> None:
        missing = [name for name in self.REQUIRED if name not in templates]
        if missing:
            msg = f"Missing URL templates: {', '.join(missing)}"
            raise ConfigError(msg)
        self._base_url = base_url.rstrip("/")
        self._templates = dict(templates)
        self._headers = dict(headers or {})

    def _build(self, name: str, resource_id: str, query: str = "") -> Request:
        url = self._templates[name].format(
            base_url=self._base_url, resource_id=resource_id
        )
        if query:
            url = f"{url}{'&' if '?' in url else '?'}{query}"
        return Request(url=url, headers=self._headers)

    def data_request(
        self, resource_id: str, params: dict[str, str] | None = None
    ) -> Request:
        query = urlencode(sorted((params or {}).items()))
        return self._build("data", resource_id, query)

    def structure_request(self, resource_id: str) -> Request:
        return self._build("structure", resource_id)

    def signal_request(self, resource_id: str) -> Request:
        return self._build("signal", resource_id)
