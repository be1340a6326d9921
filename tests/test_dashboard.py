"""Tests for the dashboard history service."""

import pytest

from media_consumption.cache import DataCache, JsonFileStore
from media_consumption.constants import ContentType, OperatingMode
from media_consumption.dashboard import DataUnavailableError, HistoryService
from media_consumption.events import InvalidationBus
from media_consumption.models import RankingEntry
from media_consumption.storage import SnapshotStore

MOVIES = [
    {"media_type": "movie", "rating_key": 1, "title": "Heat", "date": 1704067200, "duration": 6000},  # 2024-01-01
    {"media_type": "movie", "rating_key": 1, "title": "Heat", "date": 1704067200, "duration": 6000},
    {"media_type": "movie", "rating_key": 2, "title": "Ronin", "date": 1717200000, "duration": 3000},  # 2024-06-01
    {"media_type": "movie", "rating_key": 3, "title": "Thief", "date": 1685577600, "duration": 1200},  # 2023-06-01
]


class CountingLoader:
    def __init__(self, keys):
        self.keys = keys
        self.calls = 0

    def __call__(self, content_type):
        self.calls += 1
        return [RankingEntry(rating_key=k, title=k) for k in self.keys]


@pytest.fixture
def snapshots(tmp_path):
    store = SnapshotStore(tmp_path / "data")
    store.save(ContentType.MOVIES, MOVIES)
    return store


@pytest.fixture
def cache(tmp_path):
    return DataCache(JsonFileStore(tmp_path / "cache"))


def test_load_history_aggregates_and_caches(snapshots, cache):
    service = HistoryService(snapshots, cache, CountingLoader([]), mode=OperatingMode.STATIC)

    view = service.load_history(ContentType.MOVIES)

    assert [i.id for i in view.items] == ["2", "1", "3"]
    assert view.years == [2024, 2023]
    assert cache.get("movies-static") is not None

    snapshots.path_for(ContentType.MOVIES).unlink()
    assert [i.id for i in service.load_history(ContentType.MOVIES).items] == ["2", "1", "3"]


def test_missing_snapshot_raises_banner_error(tmp_path, cache):
    service = HistoryService(SnapshotStore(tmp_path / "empty"), cache, CountingLoader([]))

    with pytest.raises(DataUnavailableError) as exc_info:
        service.load_history(ContentType.TV)

    assert "media-consumption fetch-data" in str(exc_info.value)
    assert exc_info.value.content_type == ContentType.TV


def test_year_summary(snapshots, cache):
    service = HistoryService(snapshots, cache, CountingLoader(["3", "2", "1"]))

    summary = service.year_summary(ContentType.MOVIES, 2024)

    assert summary.stats.count == 2
    assert summary.stats.total_events == 3
    assert summary.stats.total_duration_seconds == 15000
    assert [e.rating_key for e in summary.top] == ["2", "1"]
    assert [i.id for i in summary.items] == ["2", "1"]


def test_year_summary_defaults_to_latest_year(snapshots, cache):
    service = HistoryService(snapshots, cache, CountingLoader([]))
    assert service.year_summary(ContentType.MOVIES).year == 2024


def test_rankings_are_cached_until_invalidated(snapshots, cache):
    bus = InvalidationBus()
    loader = CountingLoader(["1"])
    service = HistoryService(snapshots, cache, loader, bus=bus)

    service.load_rankings(ContentType.MOVIES)
    service.load_rankings(ContentType.MOVIES)
    assert loader.calls == 1

    bus.publish("rankings-movies")
    service.load_rankings(ContentType.MOVIES)
    assert loader.calls == 2


def test_find_item(snapshots, cache):
    service = HistoryService(snapshots, cache, CountingLoader([]))

    assert service.find_item(ContentType.MOVIES, "2").title == "Ronin"
    assert service.find_item(ContentType.MOVIES, "99") is None
