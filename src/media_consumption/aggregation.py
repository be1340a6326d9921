"""History aggregation: watch events to year-bucketed display cards and stats."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional

from .constants import SNAPSHOT_STALE_HOURS, TOP_N, ContentType
from .models import AggregatedItem, HistoryView, RankingEntry, SnapshotMetadata, WatchEvent, YearStats

logger = logging.getLogger(__name__)


def sort_events(events: Iterable[WatchEvent]) -> list[WatchEvent]:
    """Newest first. Stable, so equal instants keep their input order."""
    return sorted(events, key=lambda e: e.watched_at, reverse=True)


def collapse_consecutive(items: list, key: Callable = lambda item: item.id) -> list:
    """Drop entries whose identity equals the entry right before them.

    Non-adjacent repeats are kept: a movie watched in January and again in
    June shows up twice.
    """
    collapsed = []
    previous = object()
    for item in items:
        current = key(item)
        if current != previous:
            collapsed.append(item)
        previous = current
    return collapsed


def _years(events: Iterable[WatchEvent]) -> list[int]:
    return sorted({e.year for e in events}, reverse=True)


def _movie_item(event: WatchEvent) -> AggregatedItem:
    return AggregatedItem(
        id=event.content_id,
        title=event.title,
        media_kind=event.media_kind,
        poster_ref=event.poster_ref,
        first_seen=event.watched_at,
        last_seen=event.watched_at,
        count=1,
        total_duration_seconds=event.duration_seconds,
        release_year=event.release_year,
        year=event.year,
    )


def aggregate_movies(events: Iterable[WatchEvent]) -> HistoryView:
    ordered = sort_events(events)
    items = collapse_consecutive([_movie_item(e) for e in ordered])
    return HistoryView(content_type=ContentType.MOVIES, items=items, events=ordered, years=_years(ordered))


def _group(ordered: list[WatchEvent]) -> dict[str, AggregatedItem]:
    """Group newest-first events by their card identity.

    The first event seen for a group is its latest, so title, poster and
    release year come from the most recent watch or read.
    """
    groups: dict[str, AggregatedItem] = {}
    for event in ordered:
        item = groups.get(event.group_id)
        if item is None:
            groups[event.group_id] = AggregatedItem(
                id=event.group_id,
                title=event.group_title,
                media_kind=event.media_kind,
                poster_ref=event.poster_ref,
                first_seen=event.watched_at,
                last_seen=event.watched_at,
                count=1,
                total_duration_seconds=event.duration_seconds,
                release_year=event.effective_release_year,
                year=event.year,
            )
            continue
        item.count += 1
        item.total_duration_seconds += event.duration_seconds
        item.first_seen = min(item.first_seen, event.watched_at)
    return groups


def group_episodes_by_show(events: Iterable[WatchEvent]) -> dict[str, AggregatedItem]:
    """Per-show episode count, total duration and first/last watch."""
    return _group(sort_events(events))


def normalize_title(title: str) -> str:
    return " ".join(title.lower().split())


def merge_duplicate_titles(shows: Iterable[AggregatedItem]) -> list[AggregatedItem]:
    """Collapse shows with the same display title under different identities.

    The show with more episodes wins; on a tie the one watched more recently.
    """
    kept: dict[str, AggregatedItem] = {}
    for show in shows:
        key = normalize_title(show.title)
        current = kept.get(key)
        if current is None:
            kept[key] = show
            continue
        if (show.count, show.last_seen) > (current.count, current.last_seen):
            logger.debug(f"Merging duplicate show {current.title!r} ({current.id}) into {show.id}")
            kept[key] = show
        else:
            logger.debug(f"Merging duplicate show {show.title!r} ({show.id}) into {current.id}")
    return list(kept.values())


def aggregate_tv(events: Iterable[WatchEvent]) -> HistoryView:
    ordered = sort_events(events)
    shows = merge_duplicate_titles(_group(ordered).values())
    shows.sort(key=lambda s: s.last_seen, reverse=True)
    return HistoryView(content_type=ContentType.TV, items=shows, events=ordered, years=_years(ordered))


def aggregate_comics(events: Iterable[WatchEvent]) -> HistoryView:
    """One card per series carrying its most recently read issue's data."""
    ordered = sort_events(events)
    series = list(_group(ordered).values())
    return HistoryView(content_type=ContentType.COMICS, items=series, events=ordered, years=_years(ordered))


_AGGREGATORS = {
    ContentType.MOVIES: aggregate_movies,
    ContentType.TV: aggregate_tv,
    ContentType.COMICS: aggregate_comics,
}


def aggregate(content_type: ContentType, events: Iterable[WatchEvent]) -> HistoryView:
    return _AGGREGATORS[ContentType(content_type)](events)


def items_for_year(view: HistoryView, year: int) -> list[AggregatedItem]:
    return [item for item in view.items if item.year == year]


def eligible_ids(view: HistoryView, year: int) -> set[str]:
    """Identities that may appear in a year's top favorites.

    Movies and shows qualify when watched in the year. A comic series needs
    an issue that was both released and read in the year.
    """
    if view.content_type == ContentType.COMICS:
        return {e.group_id for e in view.events if e.year == year and e.effective_release_year == year}
    return {e.group_id for e in view.events if e.year == year}


def top_for_year(rankings: Iterable[RankingEntry], eligible: set[str], n: int = TOP_N) -> list[RankingEntry]:
    """First ``n`` ranking entries that are eligible, in ranking order."""
    return [entry for entry in rankings if entry.rating_key in eligible][:n]


def year_stats(view: HistoryView, year: int) -> YearStats:
    """Card count from the display list, totals from every event in the year."""
    events = [e for e in view.events if e.year == year]
    return YearStats(
        year=year,
        count=len({item.id for item in items_for_year(view, year)}),
        total_events=len(events),
        total_duration_seconds=sum(e.duration_seconds for e in events),
    )


def _plural(n: int, unit: str) -> str:
    return f"{n} {unit}" if n == 1 else f"{n} {unit}s"


def format_watch_time(seconds: int) -> str:
    """Format seconds as ``"1 day, 2 hours, 5 minutes"``, skipping zero parts."""
    minutes_total = max(int(seconds), 0) // 60
    days, remainder = divmod(minutes_total, 24 * 60)
    hours, minutes = divmod(remainder, 60)

    parts = []
    if days:
        parts.append(_plural(days, "day"))
    if hours:
        parts.append(_plural(hours, "hour"))
    if minutes or not parts:
        parts.append(_plural(minutes, "minute"))
    return ", ".join(parts)


def format_issue_count(n: int) -> str:
    return _plural(n, "issue")


def check_freshness(metadata: Optional[SnapshotMetadata], now: Optional[datetime] = None) -> bool:
    """Return False and log a warning when a snapshot is older than 24 hours.

    Advisory only; stale data is still used.
    """
    if metadata is None:
        return True
    if now is None:
        now = datetime.now(timezone.utc)

    last_fetched = metadata.last_fetched
    if last_fetched.tzinfo is None:
        last_fetched = last_fetched.replace(tzinfo=timezone.utc)

    age = now - last_fetched
    if age > timedelta(hours=SNAPSHOT_STALE_HOURS):
        hours = int(age.total_seconds() // 3600)
        logger.warning(f"Data is {hours} hours old (last fetched {last_fetched.isoformat()})")
        return False
    return True
