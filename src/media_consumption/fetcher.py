"""Offline data fetch: history snapshots plus poster and cover downloads."""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Callable, Optional

from .base_client import UpstreamError
from .constants import HISTORY_MEDIA_TYPES, IMAGE_BATCH_SIZE, PROGRESS_LOG_EVERY, ContentType
from .komga_client import KomgaClient
from .models import FetchResult
from .normalize import comic_read_timestamp
from .posters import PosterNotFoundError, PosterResolver, PosterUnavailableError
from .storage import SnapshotStore
from .tautulli_client import TautulliClient, history_records

logger = logging.getLogger(__name__)

DOWNLOADED = "downloaded"
PRESENT = "present"
FAILED = "failed"


def poster_targets(content_type: ContentType, records: list[dict]) -> dict[str, Optional[str]]:
    """Unique poster identity -> thumb path, first record wins.

    Movies use their own rating key; episodes use the show's.
    """
    targets: dict[str, Optional[str]] = {}
    for record in records:
        if content_type == ContentType.TV:
            key = record.get("grandparent_rating_key") or record.get("parent_rating_key")
            thumb = record.get("thumb") or record.get("parent_thumb") or record.get("grandparent_thumb")
        else:
            key = record.get("rating_key")
            thumb = record.get("thumb")
        if key and thumb and str(key) not in targets:
            targets[str(key)] = thumb
    return targets


def comic_record(book: dict, series: Optional[dict]) -> dict:
    """Join a Komga book that has read progress with its series."""
    series = series or {}
    book_metadata = book.get("metadata") or {}
    read_progress = book.get("readProgress") or {}
    read_at = comic_read_timestamp({"readProgress": read_progress})
    series_title = series.get("name") or book.get("seriesTitle") or "Unknown"
    return {
        "id": book.get("id"),
        "seriesId": book.get("seriesId"),
        "seriesTitle": series_title,
        "title": series_title,
        "bookTitle": book.get("name") or book_metadata.get("title") or "Unknown",
        "bookNumber": book.get("number") or book_metadata.get("number"),
        "readProgress": read_progress,
        "watchDate": read_at.isoformat().replace("+00:00", "Z") if read_at else None,
        "year": read_at.year if read_at else None,
        "seriesMetadata": series.get("metadata") or {},
        "booksMetadata": series.get("booksMetadata") or {},
        "bookMetadata": book_metadata,
    }


class DataFetcher:
    """Fetches every content type and writes snapshots to the data directory."""

    def __init__(
        self,
        snapshot_store: SnapshotStore,
        tautulli: TautulliClient,
        poster_resolver: PosterResolver,
        komga: Optional[KomgaClient] = None,
        batch_size: int = IMAGE_BATCH_SIZE,
    ):
        self.store = snapshot_store
        self.tautulli = tautulli
        self.posters = poster_resolver
        self.komga = komga
        self.batch_size = batch_size

    def _download(self, content_type: ContentType, identity: str, fetch: Callable[[], tuple[bytes, str]]) -> str:
        """Download one image unless it is already on disk."""
        path = self.store.image_path(content_type, identity)
        if path.exists():
            return PRESENT
        try:
            data, _ = fetch()
            self.store.write_image(content_type, identity, data)
        except (UpstreamError, PosterNotFoundError, PosterUnavailableError) as e:
            logger.debug(f"Image download failed for {identity}: {e}")
            return FAILED
        except OSError as e:
            logger.warning(f"Cannot write image {path}: {e}")
            return FAILED
        return DOWNLOADED

    def _download_images(self, content_type: ContentType, jobs: list[tuple[str, Callable]], result: FetchResult) -> None:
        """Run downloads in fixed-size batches; one batch finishes before the next starts."""
        if not jobs:
            return
        self.store.ensure_dirs()
        total = len(jobs)
        processed = 0
        with ThreadPoolExecutor(max_workers=self.batch_size) as executor:
            for start in range(0, total, self.batch_size):
                batch = jobs[start:start + self.batch_size]
                outcomes = list(executor.map(lambda job: self._download(content_type, *job), batch))
                result.images_downloaded += outcomes.count(DOWNLOADED)
                result.images_present += outcomes.count(PRESENT)
                result.images_failed += outcomes.count(FAILED)

                processed += len(batch)
                if processed % PROGRESS_LOG_EVERY == 0 or processed >= total:
                    logger.info(
                        f"  Progress: {processed}/{total} images processed "
                        f"({result.images_downloaded} downloaded, {result.images_present} already present, "
                        f"{result.images_failed} failed)"
                    )

    def fetch_watch_history(self, content_type: ContentType) -> FetchResult:
        """Fetch one history-backed content type and its posters."""
        content_type = ContentType(content_type)
        result = FetchResult(content_type=content_type)
        media_type = HISTORY_MEDIA_TYPES[content_type]

        try:
            payload = self.tautulli.get_history(media_type)
        except UpstreamError as e:
            logger.error(f"[{media_type}] Fetch failed, keeping previous snapshot: {e}")
            result.success = False
            result.errors.append(str(e))
            return result

        records = history_records(payload)
        targets = poster_targets(content_type, records)
        logger.info(f"Downloading {len(targets)} {content_type.value} posters...")
        jobs = [
            (identity, lambda thumb=thumb: self.posters.fetch(thumb))
            for identity, thumb in targets.items()
        ]
        self._download_images(content_type, jobs, result)

        self.store.save(content_type, records)
        result.item_count = len(records)
        return result

    def fetch_comics(self) -> FetchResult:
        """Fetch read books from Komga, join them with series and download covers."""
        result = FetchResult(content_type=ContentType.COMICS)
        if self.komga is None:
            result.success = False
            result.errors.append("Komga is not configured")
            return result

        try:
            books = self.komga.get_books_with_progress()
            series = self.komga.get_all_series()
        except UpstreamError as e:
            logger.error(f"[comics] Fetch failed, keeping previous snapshot: {e}")
            result.success = False
            result.errors.append(str(e))
            return result

        series_by_id = {s.get("id"): s for s in series}
        records = [comic_record(book, series_by_id.get(book.get("seriesId"))) for book in books]

        series_ids = list(dict.fromkeys(r["seriesId"] for r in records if r.get("seriesId")))
        logger.info(f"Downloading {len(series_ids)} comic book covers...")
        jobs = [
            (series_id, lambda series_id=series_id: self.komga.get_series_thumbnail(series_id))
            for series_id in series_ids
        ]
        self._download_images(ContentType.COMICS, jobs, result)

        self.store.save(ContentType.COMICS, records)
        result.item_count = len(records)
        return result

    def fetch_all(self) -> list[FetchResult]:
        """Fetch movies, TV and, when Komga is configured, comics."""
        started = datetime.now(timezone.utc)
        results = [
            self.fetch_watch_history(ContentType.MOVIES),
            self.fetch_watch_history(ContentType.TV),
        ]
        if self.komga is not None:
            results.append(self.fetch_comics())
        else:
            logger.info("Komga not configured, skipping comics")

        elapsed = (datetime.now(timezone.utc) - started).total_seconds()
        logger.info(f"Data fetch finished in {elapsed:.2f}s")
        return results
