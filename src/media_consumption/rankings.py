"""Ranked favorites: pure list operations, persistence and the editor."""

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional, Union

from pydantic import ValidationError

from .base_client import BaseAPIClient, UpstreamError
from .constants import LOCAL_RANKING_KEYS, RANKING_FILES, ContentType, MediaKind
from .events import InvalidationBus
from .models import AggregatedItem, RankingEntry
from .storage import image_file_stem, write_atomic

logger = logging.getLogger(__name__)


class RankingValidationError(ValueError):
    """A ranking payload is not a list."""

    pass


class SaveStatus(str, Enum):
    SAVED = "saved"
    ERROR = "error"


def rankings_cache_key(content_type: ContentType) -> str:
    return f"rankings-{ContentType(content_type).value}"


def move(entries: list, source_index: int, dest_index: int) -> list:
    """Move one entry so it lands before the slot at ``dest_index``.

    ``dest_index`` may equal ``len(entries)`` to move to the end. When the
    destination is after the source it shifts down by one once the source is
    removed. Invalid or no-op moves return an unchanged copy.
    """
    result = list(entries)
    if not 0 <= source_index < len(result) or source_index == dest_index:
        return result

    dest_index = max(0, min(dest_index, len(result)))
    item = result.pop(source_index)
    if source_index < dest_index:
        dest_index -= 1
    result.insert(dest_index, item)
    return result


def _poster_url(item: AggregatedItem) -> str:
    folder = "covers" if item.media_kind == MediaKind.COMIC_ISSUE else "posters"
    return f"/data/{folder}/{image_file_stem(item.id)}.jpg"


def minimal_entry(item: Union[AggregatedItem, RankingEntry, dict]) -> RankingEntry:
    """Reduce a display card or raw record to the fields a ranking keeps."""
    if isinstance(item, RankingEntry):
        return RankingEntry(**item.to_dict())
    if isinstance(item, AggregatedItem):
        return RankingEntry(
            rating_key=item.id,
            title=item.title,
            poster=_poster_url(item),
            thumb=item.poster_ref if item.media_kind != MediaKind.COMIC_ISSUE else None,
            year=item.release_year,
        )
    return RankingEntry.model_validate(
        {
            "rating_key": item.get("rating_key"),
            "title": item.get("title"),
            "poster": item.get("poster") or None,
            "thumb": item.get("thumb") or None,
            "year": item.get("year") or None,
        }
    )


def validate_rankings_payload(payload) -> list:
    """Return the payload if it is a list of rankings.

    Raises:
        RankingValidationError: payload is missing or not a list
    """
    if payload is None:
        raise RankingValidationError("No rankings data provided")
    if not isinstance(payload, list):
        raise RankingValidationError("Rankings must be an array")
    return payload


def parse_entries(raw: Iterable) -> list[RankingEntry]:
    """Parse stored rankings, skipping entries that cannot be read."""
    entries = []
    for record in raw:
        try:
            entries.append(RankingEntry.model_validate(record))
        except ValidationError as e:
            logger.warning(f"Skipping invalid ranking entry {record!r}: {e}")
    return entries


def _write_json_atomic(path: Path, data) -> None:
    write_atomic(path, json.dumps(data, indent=2).encode("utf-8"))


class RankingFileStore:
    """Ranking files served and written by the proxy, one per content type."""

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)

    def path_for(self, content_type: ContentType) -> Path:
        return self.data_dir / RANKING_FILES[ContentType(content_type)]

    def load_raw(self, content_type: ContentType) -> list:
        """Stored list as-is; a missing file is an empty list."""
        path = self.path_for(content_type)
        if not path.exists():
            logger.info(f"Rankings file not found for {ContentType(content_type).value}, returning empty list")
            return []
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        return data if isinstance(data, list) else []

    def load(self, content_type: ContentType) -> list[RankingEntry]:
        return parse_entries(self.load_raw(content_type))

    def save(self, content_type: ContentType, payload) -> int:
        """Overwrite the rankings file and return the number of entries saved."""
        rankings = validate_rankings_payload(payload)
        path = self.path_for(content_type)
        _write_json_atomic(path, rankings)
        logger.info(f"Saved {len(rankings)} rankings for {ContentType(content_type).value} to {path}")
        return len(rankings)


class LocalRankingStore:
    """Durable local backup of each ranking list."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def path_for(self, content_type: ContentType) -> Path:
        return self.directory / f"{LOCAL_RANKING_KEYS[ContentType(content_type)]}.json"

    def load(self, content_type: ContentType) -> list[RankingEntry]:
        path = self.path_for(content_type)
        if not path.exists():
            return []
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Error parsing local rankings {path}: {e}")
            return []
        return parse_entries(data) if isinstance(data, list) else []

    def save(self, content_type: ContentType, entries: list[dict]) -> None:
        try:
            _write_json_atomic(self.path_for(content_type), entries)
        except OSError as e:
            logger.warning(f"Failed to write local rankings backup: {e}")


class RankingsAPIClient(BaseAPIClient):
    """Client for the proxy's ranking routes."""

    SERVICE_NAME = "Rankings API"

    def __init__(self, api_base_url: str):
        super().__init__(base_url=api_base_url, headers={"Accept": "application/json"})

    def get_rankings(self, content_type: ContentType) -> list[RankingEntry]:
        data = self._get_json(f"/rankings/{ContentType(content_type).value}")
        return parse_entries(data) if isinstance(data, list) else []

    def save_rankings(self, content_type: ContentType, entries: list[dict]) -> dict:
        response = self._request("POST", f"/rankings/{ContentType(content_type).value}", json=entries)
        try:
            return response.json()
        except ValueError:
            return {"success": True, "count": len(entries)}


class RankingEditor:
    """Ordered favorites for one content type.

    Every mutation saves: the local backup first, then the proxy when one is
    configured (dynamic mode). A completed save, and every export, publishes
    ``rankings-<type>`` on the invalidation bus.
    """

    def __init__(
        self,
        content_type: ContentType,
        local_store: LocalRankingStore,
        remote: Optional[RankingsAPIClient] = None,
        published: Optional[RankingFileStore] = None,
        bus: Optional[InvalidationBus] = None,
    ):
        self.content_type = ContentType(content_type)
        self.local_store = local_store
        self.remote = remote
        self.published = published
        self.bus = bus
        self.entries: list[RankingEntry] = []
        self.last_status: Optional[SaveStatus] = None

    @property
    def is_dynamic(self) -> bool:
        return self.remote is not None

    def load(self) -> list[RankingEntry]:
        """Load rankings from the proxy, or from local copies when it is unavailable."""
        if self.remote is not None:
            try:
                self.entries = self.remote.get_rankings(self.content_type)
                logger.info(f"Loaded {len(self.entries)} {self.content_type.value} rankings from server")
                return list(self.entries)
            except UpstreamError as e:
                logger.warning(f"Failed to load rankings from server, using local backup: {e}")
                self.entries = self.local_store.load(self.content_type)
                return list(self.entries)

        self.entries = self.local_store.load(self.content_type)
        if not self.entries and self.published is not None:
            self.entries = self.published.load(self.content_type)
        return list(self.entries)

    def contains(self, rating_key: str) -> bool:
        return any(entry.rating_key == str(rating_key) for entry in self.entries)

    def add(self, item: Union[AggregatedItem, RankingEntry, dict]) -> Optional[SaveStatus]:
        """Append an item. Returns None without saving when it is already ranked."""
        entry = minimal_entry(item)
        if self.contains(entry.rating_key):
            logger.info(f"{entry.title!r} is already ranked")
            return None
        self.entries = [*self.entries, entry]
        return self.save()

    def remove(self, rating_key: str) -> SaveStatus:
        self.entries = [entry for entry in self.entries if entry.rating_key != str(rating_key)]
        return self.save()

    def reorder(self, source_index: int, dest_index: int) -> SaveStatus:
        self.entries = move(self.entries, source_index, dest_index)
        return self.save()

    def _publish(self) -> None:
        if self.bus is not None:
            self.bus.publish(rankings_cache_key(self.content_type))

    def save(self) -> SaveStatus:
        minimal = [entry.to_dict() for entry in self.entries]
        self.local_store.save(self.content_type, minimal)

        if self.remote is None:
            self._publish()
            self.last_status = SaveStatus.SAVED
            return self.last_status

        try:
            result = self.remote.save_rankings(self.content_type, minimal)
        except UpstreamError as e:
            logger.error(f"Error saving rankings to server: {e}")
            self.last_status = SaveStatus.ERROR
            return self.last_status

        logger.info(f"Rankings saved: {result.get('count', len(minimal))} items")
        self.entries = parse_entries(minimal)
        self._publish()
        self.last_status = SaveStatus.SAVED
        return self.last_status

    def export(self, path: Path) -> Path:
        """Write the list as pretty JSON for promotion to the static data directory."""
        path = Path(path)
        if path.is_dir() or path.suffix != ".json":
            path = path / RANKING_FILES[self.content_type]
        _write_json_atomic(path, [entry.to_dict() for entry in self.entries])
        logger.info(f"Exported {len(self.entries)} rankings to {path}")
        self._publish()
        return path
