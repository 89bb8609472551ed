"""Test doubles for transports, rate limiters and collaborators."""

import json
from collections.abc import Callable
from datetime import datetime

from statcache.collaborators import ParsedStructure
from statcache.errors import ParseFailure
from statcache.fetch.client import RetryingFetcher
from statcache.fetch.config import FetchConfig
from statcache.fetch.models import Request, RetryPolicy, TransportMethod
from statcache.fetch.transports import TransportResponse


# Retries without real waiting.
FAST_POLICY = RetryPolicy(
    max_retries=3,
    initial_backoff=0.01,
    max_backoff=0.05,
    min_backoff=0.001,
    jitter_fraction=0.0,
)

ScriptItem = TransportResponse | Exception


def response(
    status: int = 200, body: bytes = b"ok", headers: dict[str, str] | None = None
) -> TransportResponse:
    return TransportResponse(status_code=status, body=body, headers=headers or {})


class ScriptedTransport:
    """Replays a script of responses or exceptions; the last item repeats."""

    def __init__(
        self,
        script: list[ScriptItem],
        method: TransportMethod = TransportMethod.PRIMARY,
    ) -> None:
        self.method = method
        self._script = script
        self.calls: list[Request] = []

    def send(self, request: Request, timeout: float) -> TransportResponse:
        self.calls.append(request)
        item = self._script[min(len(self.calls), len(self._script)) - 1]
        if isinstance(item, Exception):
            raise item
        return item


class RoutingTransport:
    """Answers by URL; values may be callables for dynamic responses."""

    def __init__(
        self,
        routes: dict[str, ScriptItem | Callable[[Request], ScriptItem]],
        method: TransportMethod = TransportMethod.PRIMARY,
    ) -> None:
        self.method = method
        self.routes = routes
        self.calls: list[Request] = []

    def send(self, request: Request, timeout: float) -> TransportResponse:
        self.calls.append(request)
        item = self.routes.get(request.url, response(404, b"not found"))
        if callable(item) and not isinstance(item, Exception):
            item = item(request)
        if isinstance(item, Exception):
            raise item
        return item

    def urls(self) -> list[str]:
        return [r.url for r in self.calls]


class RecordingLimiter:
    """Rate limiter that never waits but counts calls."""

    def __init__(self) -> None:
        self.throttles = 0
        self.consecutive_rate_limited = 0

    def throttle(self) -> float:
        self.throttles += 1
        return 0.0

    def reset(self) -> None:
        self.throttles = 0

    def record_rate_limited(self) -> int:
        self.consecutive_rate_limited += 1
        return self.consecutive_rate_limited

    def record_success(self) -> None:
        self.consecutive_rate_limited = 0


def make_fetcher(
    primary: object,
    secondary: object | None = None,
    limiter: RecordingLimiter | None = None,
    sleeps: list[float] | None = None,
    config: FetchConfig | None = None,
) -> RetryingFetcher:
    """RetryingFetcher wired to fakes, with no real sleeping."""
    limiter = limiter or RecordingLimiter()
    recorded = sleeps if sleeps is not None else []
    return RetryingFetcher(
        config=config,
        primary=primary,  # type: ignore[arg-type]
        secondary=secondary,  # type: ignore[arg-type]
        fallback=secondary is not None,
        limiters={"data": limiter, "files": limiter},
        sleep=recorded.append,
    )


BASE = "https://stats.example"


class UrlBuilder:
    """Request builder with fixed URL shapes."""

    def data_request(
        self, resource_id: str, params: dict[str, str] | None = None
    ) -> Request:
        return Request(url=f"{BASE}/data/{resource_id}")

    def structure_request(self, resource_id: str) -> Request:
        return Request(url=f"{BASE}/structure/{resource_id}")

    def signal_request(self, resource_id: str) -> Request:
        return Request(url=f"{BASE}/signal/{resource_id}")


class JsonSchemaParser:
    """Parses {"entries": ..., "dimensions": ...} and {"last_update": iso}."""

    def parse_structure(self, resource_id: str, payload: bytes) -> ParsedStructure:
        try:
            return ParsedStructure.model_validate_json(payload)
        except ValueError as e:
            msg = f"bad structure for {resource_id}"
            raise ParseFailure(msg, resource_id=resource_id) from e

    def parse_signal(self, resource_id: str, payload: bytes) -> datetime | None:
        value = json.loads(payload).get("last_update")
        return datetime.fromisoformat(value) if value else None


def structure_body(
    entries: dict[str, list[dict[str, str]]], dimensions: dict[str, str] | None = None
) -> bytes:
    return json.dumps({"entries": entries, "dimensions": dimensions or {}}).encode()


def signal_body(when: datetime | None) -> bytes:
    return json.dumps({"last_update": when.isoformat() if when else None}).encode()
