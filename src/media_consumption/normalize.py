"""Normalization of raw API records into canonical WatchEvents.

Raw records come in several shapes: Tautulli sends ``date`` as epoch seconds,
the comics snapshot carries ISO strings in a nested ``readProgress`` block, and
identifiers may be numbers or strings. Everything is resolved here, once, so the
aggregation code never has to branch on which fields happen to be present.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Iterable, Optional

from .constants import ContentType, MediaKind
from .models import WatchEvent

logger = logging.getLogger(__name__)

TITLE_YEAR_PATTERN = re.compile(r"\((\d{4})\)")

# Epoch values at or above this are milliseconds (year 5138 in seconds)
_EPOCH_MILLIS_THRESHOLD = 100_000_000_000


def parse_timestamp(value) -> Optional[datetime]:
    """Parse epoch seconds, epoch milliseconds or an ISO-8601 string to UTC."""
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
        if value.lstrip("-").isdigit():
            value = int(value)
        else:
            try:
                parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
            except ValueError:
                logger.debug(f"Unparseable timestamp: {value!r}")
                return None
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed.astimezone(timezone.utc)

    if isinstance(value, (int, float)):
        seconds = value / 1000 if abs(value) >= _EPOCH_MILLIS_THRESHOLD else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            logger.debug(f"Timestamp out of range: {value!r}")
            return None

    return None


def extract_title_year(title: Optional[str]) -> Optional[int]:
    """Year from a ``"Title (YYYY)"`` style string."""
    if not title:
        return None
    match = TITLE_YEAR_PATTERN.search(title)
    return int(match.group(1)) if match else None


def _as_id(value) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _as_int(value) -> Optional[int]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _year_of_date(value) -> Optional[int]:
    """Year of a ``YYYY-MM-DD`` (or longer ISO) string."""
    if not value:
        return None
    if isinstance(value, int):
        return value
    match = re.match(r"^(\d{4})", str(value))
    return int(match.group(1)) if match else None


def _first(*values):
    for value in values:
        if value:
            return value
    return None


def event_from_tautulli(record: dict) -> Optional[WatchEvent]:
    """Build a WatchEvent from a Tautulli history record."""
    media_type = record.get("media_type")
    watched_at = parse_timestamp(_first(record.get("date"), record.get("started"), record.get("stopped")))
    content_id = _as_id(record.get("rating_key"))
    if watched_at is None or content_id is None:
        logger.debug(f"Skipping history record without date or rating_key: {record.get('title')!r}")
        return None

    duration = _as_int(record.get("duration")) or 0
    release_year = _as_int(record.get("year"))

    if media_type == MediaKind.MOVIE.value:
        return WatchEvent(
            content_id=content_id,
            title=record.get("title") or "Unknown",
            watched_at=watched_at,
            duration_seconds=max(duration, 0),
            media_kind=MediaKind.MOVIE,
            poster_ref=record.get("thumb") or None,
            release_year=release_year,
        )

    if media_type == MediaKind.EPISODE.value:
        show_id = _as_id(_first(record.get("grandparent_rating_key"), record.get("parent_rating_key"))) or content_id
        return WatchEvent(
            content_id=content_id,
            parent_id=show_id,
            title=record.get("title") or "Unknown",
            parent_title=_first(record.get("grandparent_title"), record.get("parent_title")) or "Unknown Show",
            watched_at=watched_at,
            duration_seconds=max(duration, 0),
            media_kind=MediaKind.EPISODE,
            poster_ref=_first(record.get("thumb"), record.get("parent_thumb"), record.get("grandparent_thumb")),
            release_year=release_year,
        )

    return None


def comic_read_timestamp(record: dict) -> Optional[datetime]:
    """When a comic issue was read, from the richest field available."""
    progress = record.get("readProgress") or {}
    for candidate in (
        progress.get("lastReadAt"),
        progress.get("completedAt"),
        record.get("watchDate"),
        record.get("lastRead"),
        record.get("date"),
    ):
        parsed = parse_timestamp(candidate)
        if parsed is not None:
            return parsed
    return None


def comic_issue_release_year(record: dict) -> Optional[int]:
    """Issue-level release year: structured metadata first, then ``(YYYY)`` in the title."""
    book_metadata = record.get("bookMetadata") or {}
    year = _year_of_date(book_metadata.get("releaseDate"))
    if year:
        return year
    return extract_title_year(
        _first(record.get("bookTitle"), book_metadata.get("title"), record.get("name"))
    )


def comic_series_release_year(record: dict) -> Optional[int]:
    series_metadata = record.get("seriesMetadata") or {}
    books_metadata = record.get("booksMetadata") or {}
    return _as_int(series_metadata.get("releaseYear")) or _year_of_date(books_metadata.get("releaseDate"))


def event_from_comic(record: dict) -> Optional[WatchEvent]:
    """Build a WatchEvent from a comics snapshot record."""
    content_id = _as_id(_first(record.get("id"), record.get("seriesId")))
    read_at = comic_read_timestamp(record)
    if content_id is None or read_at is None:
        logger.debug(f"Skipping comic record without id or read date: {record.get('bookTitle')!r}")
        return None

    series_id = _as_id(record.get("seriesId")) or content_id
    series_title = _first(record.get("seriesTitle"), record.get("title"), record.get("name")) or "Unknown"
    return WatchEvent(
        content_id=content_id,
        parent_id=series_id,
        title=_first(record.get("bookTitle"), record.get("name")) or series_title,
        parent_title=series_title,
        watched_at=read_at,
        media_kind=MediaKind.COMIC_ISSUE,
        poster_ref=series_id,
        release_year=comic_issue_release_year(record),
        series_release_year=comic_series_release_year(record),
    )


def normalize_records(content_type: ContentType, records: Iterable[dict]) -> list[WatchEvent]:
    """Normalize raw snapshot records for one content type.

    Records of the wrong media kind are dropped even when the upstream filter
    should already have removed them.
    """
    if content_type == ContentType.COMICS:
        builder, expected = event_from_comic, MediaKind.COMIC_ISSUE
    elif content_type == ContentType.TV:
        builder, expected = event_from_tautulli, MediaKind.EPISODE
    else:
        builder, expected = event_from_tautulli, MediaKind.MOVIE

    events = []
    dropped = 0
    for record in records:
        event = builder(record) if isinstance(record, dict) else None
        if event is None or event.media_kind != expected:
            dropped += 1
            continue
        events.append(event)

    if dropped:
        logger.debug(f"Dropped {dropped} {content_type.value} record(s) during normalization")
    return events
