"""Unit tests for the incremental update tracker."""

from datetime import datetime, timedelta
from pathlib import Path

import pytest

from statcache.metrics import FetchMetrics
from statcache.store.models import DownloadLogEntry
from statcache.store.store import CacheStores, JsonStore
from statcache.updates.tracker import RefetchReason, RemoteSignalProvider, UpdateTracker
from tests.helpers.fakes import (
    BASE,
    JsonSchemaParser,
    RoutingTransport,
    UrlBuilder,
    make_fetcher,
    response,
    signal_body,
)
from tests.helpers.time import FIXED_NOW, FakeClock


LOGGED = FIXED_NOW - timedelta(days=10)


class StubSignal:
    """Signal provider answering from a dict."""

    def __init__(self, signals: dict[str, datetime | None]) -> None:
        self.signals = signals
        self.asked: list[str] = []

    def __call__(self, resource_id: str) -> datetime | None:
        self.asked.append(resource_id)
        if resource_id == "BROKEN":
            raise RuntimeError("signal lookup crashed")
        return self.signals.get(resource_id)


@pytest.fixture
def log_store(tmp_path: Path) -> JsonStore[DownloadLogEntry]:
    return CacheStores.open(tmp_path).download_log


def tracker_with(
    log_store: JsonStore[DownloadLogEntry], signals: dict[str, datetime | None]
) -> tuple[UpdateTracker, StubSignal]:
    signal = StubSignal(signals)
    return UpdateTracker(log_store, signal, clock=FakeClock()), signal


class TestShouldRefetch:
    """Tests for should_refetch."""

    def test_first_download_skips_signal(
        self, log_store: JsonStore[DownloadLogEntry]
    ) -> None:
        tracker, signal = tracker_with(log_store, {})

        decision = tracker.should_refetch("POP")

        assert decision.needed is True
        assert decision.reason == RefetchReason.FIRST_DOWNLOAD
        assert signal.asked == []

    def test_server_newer(self, log_store: JsonStore[DownloadLogEntry]) -> None:
        tracker, _ = tracker_with(log_store, {"POP": FIXED_NOW})
        tracker.record("POP", LOGGED)

        decision = tracker.should_refetch("POP")

        assert decision.needed is True
        assert decision.reason == RefetchReason.SERVER_NEWER
        assert decision.remote_signal == FIXED_NOW
        assert decision.logged_signal == LOGGED

    def test_up_to_date(self, log_store: JsonStore[DownloadLogEntry]) -> None:
        tracker, _ = tracker_with(log_store, {"POP": LOGGED})
        tracker.record("POP", LOGGED)

        decision = tracker.should_refetch("POP")

        assert decision.needed is False
        assert decision.reason == RefetchReason.UP_TO_DATE

    def test_older_remote_is_up_to_date(
        self, log_store: JsonStore[DownloadLogEntry]
    ) -> None:
        tracker, _ = tracker_with(log_store, {"POP": LOGGED - timedelta(days=1)})
        tracker.record("POP", LOGGED)

        assert tracker.should_refetch("POP").needed is False

    def test_signal_unavailable_fails_open(
        self, log_store: JsonStore[DownloadLogEntry]
    ) -> None:
        tracker, _ = tracker_with(log_store, {"POP": None})
        tracker.record("POP", LOGGED)

        decision = tracker.should_refetch("POP")

        assert decision.needed is True
        assert decision.reason == RefetchReason.SIGNAL_UNAVAILABLE

    def test_no_logged_signal(self, log_store: JsonStore[DownloadLogEntry]) -> None:
        tracker, _ = tracker_with(log_store, {"POP": FIXED_NOW})
        tracker.record("POP", None)

        decision = tracker.should_refetch("POP")

        assert decision.needed is True
        assert decision.reason == RefetchReason.NO_LOGGED_SIGNAL

    def test_force(self, log_store: JsonStore[DownloadLogEntry]) -> None:
        tracker, signal = tracker_with(log_store, {"POP": LOGGED})
        tracker.record("POP", LOGGED)

        decision = tracker.should_refetch("POP", force=True)

        assert decision.needed is True
        assert decision.reason == RefetchReason.FORCED
        assert signal.asked == []

    def test_naive_signal_treated_as_utc(
        self, log_store: JsonStore[DownloadLogEntry]
    ) -> None:
        tracker, _ = tracker_with(log_store, {"POP": LOGGED.replace(tzinfo=None)})
        tracker.record("POP", LOGGED)

        assert tracker.should_refetch("POP").reason == RefetchReason.UP_TO_DATE


class TestRecord:
    """Tests for record."""

    def test_overwrites_entry(self, log_store: JsonStore[DownloadLogEntry]) -> None:
        tracker, _ = tracker_with(log_store, {})
        tracker.record("POP", LOGGED, row_count=5)
        tracker.record("POP", FIXED_NOW, row_count=7)

        entry = tracker.logged("POP")

        assert entry is not None
        assert entry.remote_signal == FIXED_NOW
        assert entry.row_count == 7
        assert entry.last_download_time == FIXED_NOW

    def test_persists(self, tmp_path: Path, log_store: JsonStore[DownloadLogEntry]) -> None:
        tracker, _ = tracker_with(log_store, {})
        tracker.record("POP", LOGGED)

        assert "POP" in CacheStores.open(tmp_path).download_log


class TestCheckMany:
    """Tests for check_many."""

    def test_partitions_resources(self, log_store: JsonStore[DownloadLogEntry]) -> None:
        tracker, _ = tracker_with(log_store, {"A": FIXED_NOW, "B": LOGGED})
        tracker.record("A", LOGGED)
        tracker.record("B", LOGGED)

        batch = tracker.check_many(["A", "B", "C", "A"])

        assert batch.needs_update == ["A", "C"]
        assert batch.up_to_date == ["B"]
        assert batch.errors == {}

    def test_failure_isolated(self, log_store: JsonStore[DownloadLogEntry]) -> None:
        tracker, _ = tracker_with(log_store, {"A": FIXED_NOW})
        tracker.record("A", LOGGED)
        tracker.record("BROKEN", LOGGED)

        batch = tracker.check_many(["BROKEN", "A"], max_workers=2)

        assert batch.needs_update == ["A"]
        assert "RuntimeError" in batch.errors["BROKEN"]


class TestRemoteSignalProvider:
    """Tests for RemoteSignalProvider."""

    @pytest.fixture(autouse=True)
    def reset_metrics(self) -> None:
        FetchMetrics.reset()

    def test_parses_signal(self) -> None:
        transport = RoutingTransport(
            {f"{BASE}/signal/POP": response(200, signal_body(LOGGED))}
        )
        provider = RemoteSignalProvider(
            make_fetcher(transport), UrlBuilder(), JsonSchemaParser()
        )

        assert provider("POP") == LOGGED

    def test_single_attempt_on_failure(self) -> None:
        transport = RoutingTransport({f"{BASE}/signal/POP": response(503)})
        provider = RemoteSignalProvider(
            make_fetcher(transport), UrlBuilder(), JsonSchemaParser()
        )

        assert provider("POP") is None
        assert len(transport.calls) == 1
