"""End-to-end flows through StatClient with scripted upstream responses."""

from datetime import timedelta
from pathlib import Path

import pytest

from statcache.client import StatClient
from statcache.config.models import ClientConfig, EndpointConfig
from statcache.errors import ConfigError
from statcache.metrics import CacheMetrics, FetchMetrics
from statcache.store.store import CacheStores
from statcache.updates.freshness import FreshnessReason
from statcache.updates.tracker import RefetchReason
from tests.helpers.fakes import (
    BASE,
    JsonSchemaParser,
    RoutingTransport,
    UrlBuilder,
    make_fetcher,
    response,
    signal_body,
    structure_body,
)
from tests.helpers.time import FIXED_NOW, FakeClock


DATA_V1 = b"TIME_PERIOD,AREA,OBS_VALUE\n2023,IE,10\n2024,IE,11\n"
DATA_V2 = b"TIME_PERIOD,AREA,OBS_VALUE\n2024,IE,12\n2025,IE,13\n"
FILE_URL = f"{BASE}/files/pop.zip"


@pytest.fixture(autouse=True)
def reset_metrics() -> None:
    FetchMetrics.reset()
    CacheMetrics.reset()


@pytest.fixture
def transport() -> RoutingTransport:
    return RoutingTransport(
        {
            f"{BASE}/data/POP": response(200, DATA_V1),
            f"{BASE}/signal/POP": response(200, signal_body(FIXED_NOW - timedelta(days=3))),
            f"{BASE}/structure/POP": response(
                200,
                structure_body(
                    {"CL_AREA": [{"code": "IE"}], "CL_FREQ": [{"code": "A"}]},
                    {"AREA": "CL_AREA", "FREQ": "CL_FREQ"},
                ),
            ),
            FILE_URL: response(
                200, b"PK\x03\x04", {"last-modified": "Mon, 01 Jan 2024 00:00:00 GMT"}
            ),
        }
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def client(tmp_path: Path, transport: RoutingTransport, clock: FakeClock) -> StatClient:
    return StatClient(
        ClientConfig(cache_dir=tmp_path),
        request_builder=UrlBuilder(),
        schema_parser=JsonSchemaParser(),
        fetcher=make_fetcher(transport),
        clock=clock,
    )


class TestIncrementalFetch:
    """First download, skip when current, merge on revision."""

    def test_first_download_records_signal(
        self, client: StatClient, transport: RoutingTransport, tmp_path: Path
    ) -> None:
        result = client.fetch_resource("POP")

        assert result.success is True
        assert result.skipped is False
        assert result.decision is not None
        assert result.decision.reason == RefetchReason.FIRST_DOWNLOAD
        assert len(result.rows) == 2
        assert result.attempts == 1
        assert transport.urls() == [f"{BASE}/data/POP", f"{BASE}/signal/POP"]

        logged = CacheStores.open(tmp_path / "metadata").download_log.get("POP")
        assert logged is not None
        assert logged.remote_signal == FIXED_NOW - timedelta(days=3)
        assert logged.row_count == 2

    def test_unchanged_resource_skipped(
        self, client: StatClient, transport: RoutingTransport
    ) -> None:
        first = client.fetch_resource("POP")
        transport.calls.clear()

        second = client.fetch_resource("POP", existing_rows=first.rows)

        assert second.skipped is True
        assert second.decision is not None
        assert second.decision.reason == RefetchReason.UP_TO_DATE
        assert second.rows == first.rows
        assert transport.urls() == [f"{BASE}/signal/POP"]

    def test_revision_is_merged(
        self, client: StatClient, transport: RoutingTransport
    ) -> None:
        first = client.fetch_resource("POP")
        transport.routes[f"{BASE}/signal/POP"] = response(200, signal_body(FIXED_NOW))
        transport.routes[f"{BASE}/data/POP"] = response(200, DATA_V2)

        second = client.fetch_resource("POP", existing_rows=first.rows)

        assert second.decision is not None
        assert second.decision.reason == RefetchReason.SERVER_NEWER
        assert [(r["TIME_PERIOD"], r["OBS_VALUE"]) for r in second.rows] == [
            ("2023", "10"),
            ("2024", "12"),
            ("2025", "13"),
        ]
        logged = client.tracker.logged("POP")
        assert logged is not None
        assert logged.remote_signal == FIXED_NOW

    def test_signal_outage_refetches(
        self, client: StatClient, transport: RoutingTransport
    ) -> None:
        client.fetch_resource("POP")
        transport.routes[f"{BASE}/signal/POP"] = response(503)

        result = client.fetch_resource("POP")

        assert result.skipped is False
        assert result.decision is not None
        assert result.decision.reason == RefetchReason.SIGNAL_UNAVAILABLE

    def test_force(self, client: StatClient) -> None:
        client.fetch_resource("POP")
        result = client.fetch_resource("POP", force=True)
        assert result.decision is not None
        assert result.decision.reason == RefetchReason.FORCED

    def test_failed_fetch_leaves_log_untouched(
        self, client: StatClient, transport: RoutingTransport
    ) -> None:
        transport.routes[f"{BASE}/data/POP"] = response(404)

        result = client.fetch_resource("POP")

        assert result.success is False
        assert result.exit_code == 1
        assert client.tracker.logged("POP") is None

    def test_unparseable_data(
        self, client: StatClient, transport: RoutingTransport
    ) -> None:
        transport.routes[f"{BASE}/data/POP"] = response(200, b"   ")

        result = client.fetch_resource("POP")

        assert result.success is False
        assert result.error == "empty CSV payload"
        assert client.tracker.logged("POP") is None


class TestMetadataThroughClient:
    """Metadata cache operations exposed by the client."""

    def test_ensure_cached_then_refresh_expired(
        self, client: StatClient, transport: RoutingTransport, clock: FakeClock
    ) -> None:
        assert client.ensure_cached("POP") is True
        clock.advance(days=40)
        transport.calls.clear()

        summary = client.refresh_expired()

        assert summary.refreshed_count == 2
        assert transport.urls() == [f"{BASE}/structure/POP"]

    def test_without_parser_metadata_unavailable(self, tmp_path: Path) -> None:
        client = StatClient(
            ClientConfig(cache_dir=tmp_path),
            request_builder=UrlBuilder(),
            fetcher=make_fetcher(RoutingTransport({})),
        )
        with pytest.raises(ConfigError):
            client.ensure_cached("POP")


class TestTemplateEndpoint:
    """Client built only from configuration."""

    def test_uses_url_templates(self, tmp_path: Path) -> None:
        transport = RoutingTransport(
            {"https://api.example/v1/POP/data?format=csv": response(200, DATA_V1)}
        )
        config = ClientConfig(
            cache_dir=tmp_path,
            endpoint=EndpointConfig(
                base_url="https://api.example/v1/",
                templates={
                    "data": "{base_url}/{resource_id}/data",
                    "structure": "{base_url}/{resource_id}/structure",
                    "signal": "{base_url}/{resource_id}/signal",
                },
            ),
        )
        client = StatClient(config, fetcher=make_fetcher(transport))

        result = client.fetch_resource("POP", params={"format": "csv"})

        assert result.success is True
        assert len(result.rows) == 2


class TestDownloads:
    """Binary downloads with freshness checks."""

    def test_download_then_skip(
        self, client: StatClient, transport: RoutingTransport, tmp_path: Path
    ) -> None:
        dest = tmp_path / "pop.zip"

        first = client.download_file(FILE_URL, dest)
        second = client.download_file(FILE_URL, dest)

        assert first.success is True
        assert first.decision is not None
        assert first.decision.reason == FreshnessReason.NOT_CACHED
        assert dest.read_bytes() == b"PK\x03\x04"
        assert second.skipped is True
        assert second.decision is not None
        assert second.decision.reason == FreshnessReason.UP_TO_DATE
        assert [r.method for r in transport.calls] == ["GET", "HEAD"]

        logged = client.tracker.logged(FILE_URL)
        assert logged is not None
        assert logged.remote_signal is not None
        assert logged.remote_signal.year == 2024

    def test_force_download(
        self, client: StatClient, transport: RoutingTransport, tmp_path: Path
    ) -> None:
        dest = tmp_path / "pop.zip"
        client.download_file(FILE_URL, dest)

        result = client.download_file(FILE_URL, dest, force=True)

        assert result.skipped is False
        assert result.decision is None
        assert [r.method for r in transport.calls] == ["GET", "GET"]

    def test_download_cached_layout(self, client: StatClient, tmp_path: Path) -> None:
        result = client.download_cached("POP", FILE_URL, "pop.zip")

        assert result.success is True
        assert result.resource_id == "POP"
        assert (tmp_path / "files" / "pop" / "pop.zip").exists()

    def test_failed_download(
        self, client: StatClient, transport: RoutingTransport, tmp_path: Path
    ) -> None:
        transport.routes[FILE_URL] = response(404)

        result = client.download_file(FILE_URL, tmp_path / "pop.zip")

        assert result.success is False
        assert not (tmp_path / "pop.zip").exists()
