"""Tests for the offline data fetch."""

import json
import os
from urllib.parse import parse_qs, urlparse

import responses

from media_consumption.constants import ContentType
from media_consumption.fetcher import DataFetcher, comic_record, poster_targets
from media_consumption.komga_client import KomgaClient
from media_consumption.plex_client import PlexClient
from media_consumption.posters import PosterResolver
from media_consumption.storage import SnapshotStore
from media_consumption.tautulli_client import TautulliClient

TAUTULLI = "http://tautulli.test"
PLEX = "http://plex.test:32400"
KOMGA = "http://komga.test"


def _history(records):
    return {"response": {"data": {"data": records}}}


def _tautulli_callback(history_by_type, failing_images=()):
    """Answer get_history per media type and get_pms_image per thumb."""

    def callback(request):
        params = {k: v[0] for k, v in parse_qs(urlparse(request.url).query).items()}
        if params["cmd"] == "get_history":
            return 200, {}, json.dumps(_history(history_by_type.get(params["media_type"], [])))
        if params["cmd"] == "get_pms_image":
            if params["img"] in failing_images:
                return 500, {}, ""
            return 200, {"Content-Type": "image/jpeg"}, b"img:" + params["img"].encode()
        return 404, {}, ""

    return callback


def _fetcher(tmp_path, komga=None, plex_token=None, batch_size=10):
    tautulli = TautulliClient(TAUTULLI, "key")
    store = SnapshotStore(tmp_path / "data")
    resolver = PosterResolver(tautulli, PlexClient(PLEX, plex_token))
    return DataFetcher(store, tautulli, resolver, komga=komga, batch_size=batch_size), store


MOVIES = [
    {"media_type": "movie", "rating_key": 1, "title": "Heat", "thumb": "/m/1", "date": 1},
    {"media_type": "movie", "rating_key": 1, "title": "Heat", "thumb": "/m/1", "date": 2},
    {"media_type": "movie", "rating_key": 2, "title": "Ronin", "thumb": "/m/2", "date": 3},
    {"media_type": "movie", "rating_key": 3, "title": "No poster", "date": 4},
]

EPISODES = [
    {"media_type": "episode", "rating_key": 11, "grandparent_rating_key": 10, "thumb": "/e/11", "date": 1},
    {"media_type": "episode", "rating_key": 12, "grandparent_rating_key": 10, "thumb": "/e/12", "date": 2},
    {"media_type": "episode", "rating_key": 21, "parent_rating_key": 20, "grandparent_thumb": "/s/20", "date": 3},
]


def test_poster_targets():
    assert poster_targets(ContentType.MOVIES, MOVIES) == {"1": "/m/1", "2": "/m/2"}
    assert poster_targets(ContentType.TV, EPISODES) == {"10": "/e/11", "20": "/s/20"}


@responses.activate
def test_fetch_movies_writes_snapshot_and_posters(tmp_path):
    responses.add_callback(responses.GET, f"{TAUTULLI}/api/v2", callback=_tautulli_callback({"movie": MOVIES}))
    fetcher, store = _fetcher(tmp_path)

    result = fetcher.fetch_watch_history(ContentType.MOVIES)

    assert result.success
    assert result.item_count == 4
    assert result.images_downloaded == 2
    assert store.load(ContentType.MOVIES).records == MOVIES
    assert (store.posters_dir / "1.jpg").read_bytes() == b"img:/m/1"
    assert (store.posters_dir / "2.jpg").exists()


@responses.activate
def test_existing_posters_are_skipped(tmp_path):
    responses.add_callback(responses.GET, f"{TAUTULLI}/api/v2", callback=_tautulli_callback({"movie": MOVIES}))
    fetcher, store = _fetcher(tmp_path)
    store.ensure_dirs()
    (store.posters_dir / "1.jpg").write_bytes(b"old")

    result = fetcher.fetch_watch_history(ContentType.MOVIES)

    assert result.images_present == 1
    assert result.images_downloaded == 1
    assert (store.posters_dir / "1.jpg").read_bytes() == b"old"
    image_calls = [c for c in responses.calls if "get_pms_image" in c.request.url]
    assert len(image_calls) == 1


@responses.activate
def test_image_failures_do_not_abort_the_run(tmp_path):
    movies = [
        {"media_type": "movie", "rating_key": i, "title": str(i), "thumb": f"/m/{i}", "date": i}
        for i in range(1, 26)
    ]
    failing = {"/m/3", "/m/14", "/m/25"}
    responses.add_callback(
        responses.GET,
        f"{TAUTULLI}/api/v2",
        callback=_tautulli_callback({"movie": movies}, failing_images=failing),
    )
    fetcher, store = _fetcher(tmp_path, batch_size=10)

    result = fetcher.fetch_watch_history(ContentType.MOVIES)

    assert result.success
    assert result.images_failed == 3
    assert result.images_downloaded == 22
    assert store.exists(ContentType.MOVIES)
    assert not any(c.request.url.startswith(PLEX) for c in responses.calls)


@responses.activate
def test_tv_posters_are_keyed_by_show(tmp_path):
    responses.add_callback(responses.GET, f"{TAUTULLI}/api/v2", callback=_tautulli_callback({"episode": EPISODES}))
    fetcher, store = _fetcher(tmp_path)

    result = fetcher.fetch_watch_history(ContentType.TV)

    assert result.item_count == 3
    assert sorted(p.name for p in store.posters_dir.iterdir()) == ["10.jpg", "20.jpg"]


@responses.activate
def test_upstream_failure_keeps_previous_snapshot(tmp_path):
    responses.add(responses.GET, f"{TAUTULLI}/api/v2", status=500)
    fetcher, store = _fetcher(tmp_path)
    store.save(ContentType.MOVIES, [{"rating_key": "old"}])

    result = fetcher.fetch_watch_history(ContentType.MOVIES)

    assert not result.success
    assert result.errors
    assert store.load(ContentType.MOVIES).records == [{"rating_key": "old"}]


def test_comic_record_joins_series():
    book = {
        "id": "b1",
        "seriesId": "s1",
        "name": "Saga #1",
        "number": 1,
        "readProgress": {"lastReadAt": "2023-11-05T10:00:00Z", "completed": True},
        "metadata": {"releaseDate": "2012-03-14"},
    }
    series = {"id": "s1", "name": "Saga", "metadata": {"releaseYear": 2012}}

    record = comic_record(book, series)

    assert record["seriesTitle"] == "Saga"
    assert record["bookTitle"] == "Saga #1"
    assert record["watchDate"] == "2023-11-05T10:00:00Z"
    assert record["year"] == 2023
    assert record["seriesMetadata"] == {"releaseYear": 2012}
    assert record["bookMetadata"] == {"releaseDate": "2012-03-14"}
    assert comic_record(book, None)["seriesTitle"] == "Unknown"


@responses.activate
def test_fetch_comics(tmp_path):
    responses.add(
        responses.GET,
        f"{KOMGA}/api/v1/books",
        json={
            "content": [
                {"id": "b1", "seriesId": "s1", "name": "Saga #1", "readProgress": {"lastReadAt": "2023-01-01T00:00:00Z"}},
                {"id": "b2", "seriesId": "s1", "name": "Saga #2", "readProgress": {"lastReadAt": "2023-02-01T00:00:00Z"}},
                {"id": "b3", "seriesId": "s2", "name": "Unread", "readProgress": None},
            ]
        },
    )
    responses.add(responses.GET, f"{KOMGA}/api/v1/series", json={"content": [{"id": "s1", "name": "Saga"}]})
    responses.add(responses.GET, f"{KOMGA}/api/v1/series/s1/thumbnail", body=b"cover")
    fetcher, store = _fetcher(tmp_path, komga=KomgaClient(KOMGA, "k"))

    result = fetcher.fetch_comics()

    assert result.success
    assert result.item_count == 2
    assert result.images_downloaded == 1
    assert (store.covers_dir / "s1.jpg").read_bytes() == b"cover"
    assert [r["id"] for r in store.load(ContentType.COMICS).records] == ["b1", "b2"]


@responses.activate
def test_fetch_all_skips_comics_without_komga(tmp_path):
    responses.add_callback(
        responses.GET,
        f"{TAUTULLI}/api/v2",
        callback=_tautulli_callback({"movie": MOVIES, "episode": EPISODES}),
    )
    fetcher, _ = _fetcher(tmp_path)

    results = fetcher.fetch_all()

    assert [r.content_type for r in results] == [ContentType.MOVIES, ContentType.TV]
    assert all(r.success for r in results)


@responses.activate
def test_interrupted_image_write_is_downloaded_again(tmp_path, monkeypatch):
    responses.add_callback(responses.GET, f"{TAUTULLI}/api/v2", callback=_tautulli_callback({"movie": MOVIES}))
    fetcher, store = _fetcher(tmp_path)
    real_replace = os.replace

    def failing_replace(src, dst):
        if str(dst).endswith(".jpg"):
            raise OSError("disk full")
        real_replace(src, dst)

    monkeypatch.setattr(os, "replace", failing_replace)
    result = fetcher.fetch_watch_history(ContentType.MOVIES)

    assert result.images_failed == 2
    assert list(store.posters_dir.iterdir()) == []

    monkeypatch.setattr(os, "replace", real_replace)
    result = fetcher.fetch_watch_history(ContentType.MOVIES)

    assert result.images_downloaded == 2
    assert (store.posters_dir / "1.jpg").read_bytes() == b"img:/m/1"
