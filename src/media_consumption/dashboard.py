"""Dashboard data: snapshot to aggregated view, cached, plus rankings."""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from pydantic import ValidationError

from .aggregation import aggregate, check_freshness, eligible_ids, items_for_year, top_for_year, year_stats
from .cache import DataCache
from .constants import DATASET_KEYS, FETCH_DATA_HINT, ContentType, OperatingMode
from .events import InvalidationBus
from .models import AggregatedItem, HistoryView, RankingEntry, YearSummary
from .normalize import normalize_records
from .rankings import parse_entries, rankings_cache_key
from .storage import SnapshotNotFoundError, SnapshotStore

logger = logging.getLogger(__name__)

_LABELS = {
    ContentType.MOVIES: "movie",
    ContentType.TV: "TV show",
    ContentType.COMICS: "comic book",
}


class DataUnavailableError(Exception):
    """Snapshot data is missing. The message is safe to show to users."""

    def __init__(self, content_type: ContentType):
        self.content_type = ContentType(content_type)
        super().__init__(f"Failed to load {_LABELS[self.content_type]} data. {FETCH_DATA_HINT}")


class HistoryService:
    """Loads and caches the aggregated history and rankings per content type."""

    def __init__(
        self,
        snapshot_store: SnapshotStore,
        cache: DataCache,
        rankings_loader: Callable[[ContentType], list[RankingEntry]],
        mode: OperatingMode = OperatingMode.DYNAMIC,
        bus: Optional[InvalidationBus] = None,
    ):
        self.snapshot_store = snapshot_store
        self.cache = cache
        self.rankings_loader = rankings_loader
        self.mode = OperatingMode(mode)
        if bus is not None:
            bus.subscribe(self._on_invalidated)

    def _on_invalidated(self, dataset_key: str) -> None:
        logger.info(f"Clearing cache after {dataset_key} changed")
        self.cache.clear()

    def history_cache_key(self, content_type: ContentType) -> str:
        return f"{DATASET_KEYS[ContentType(content_type)]}-{self.mode.value}"

    def load_history(self, content_type: ContentType) -> HistoryView:
        """Aggregated history for a content type.

        Raises:
            DataUnavailableError: no snapshot has been fetched yet
        """
        content_type = ContentType(content_type)
        key = self.history_cache_key(content_type)

        cached = self.cache.get(key)
        if cached is not None:
            try:
                return HistoryView.model_validate(cached)
            except ValidationError as e:
                logger.warning(f"Discarding unreadable cache entry {key}: {e}")
                self.cache.delete(key)

        try:
            snapshot = self.snapshot_store.load(content_type)
        except SnapshotNotFoundError as e:
            logger.error(f"Error loading {content_type.value} data: {e}")
            raise DataUnavailableError(content_type) from e

        check_freshness(snapshot.metadata)
        view = aggregate(content_type, normalize_records(content_type, snapshot.records))
        logger.info(
            f"Loaded {len(view.events)} {content_type.value} events "
            f"({len(view.items)} cards, {len(view.years)} years)"
        )
        self.cache.set(key, view.model_dump(mode="json"))
        return view

    def load_rankings(self, content_type: ContentType) -> list[RankingEntry]:
        content_type = ContentType(content_type)
        key = rankings_cache_key(content_type)

        cached = self.cache.get(key)
        if cached is not None:
            return parse_entries(cached)

        entries = self.rankings_loader(content_type)
        self.cache.set(key, [entry.to_dict() for entry in entries])
        return entries

    def find_item(self, content_type: ContentType, item_id: str) -> Optional[AggregatedItem]:
        for item in self.load_history(content_type).items:
            if item.id == str(item_id):
                return item
        return None

    def year_summary(self, content_type: ContentType, year: Optional[int] = None) -> YearSummary:
        """Stats, cards and top favorites for one year (latest year by default)."""
        content_type = ContentType(content_type)
        view = self.load_history(content_type)
        if year is None:
            year = view.years[0] if view.years else datetime.now(timezone.utc).year

        top = top_for_year(self.load_rankings(content_type), eligible_ids(view, year))
        return YearSummary(
            content_type=content_type,
            year=year,
            stats=year_stats(view, year),
            items=items_for_year(view, year),
            top=top,
        )
