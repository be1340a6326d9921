"""Two-tier dataset cache: in-memory map in front of a durable JSON store."""

import copy
import json
import logging
import re
import time
from pathlib import Path
from typing import Any, Callable, Optional

from .constants import CACHE_TTL_SECONDS
from .models import CacheEntry

logger = logging.getLogger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class JsonFileStore:
    """Durable key-value tier, one JSON file per key.

    Failures are logged and treated as a miss (reads) or a no-op (writes).
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning(f"Cannot create cache directory {self.directory}: {e}")

    def _path(self, key: str) -> Path:
        return self.directory / f"{_UNSAFE_KEY_CHARS.sub('_', key)}.json"

    def get(self, key: str) -> Optional[CacheEntry]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                return CacheEntry.model_validate(json.load(f))
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to read cache entry {key}: {e}")
            return None

    def set(self, entry: CacheEntry) -> None:
        try:
            with open(self._path(entry.key), "w", encoding="utf-8") as f:
                json.dump(entry.model_dump(mode="json"), f)
        except (OSError, TypeError, ValueError) as e:
            logger.warning(f"Failed to write cache entry {entry.key}: {e}")

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to delete cache entry {key}: {e}")

    def clear(self) -> None:
        try:
            for path in self.directory.glob("*.json"):
                path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to clear cache directory {self.directory}: {e}")


class DataCache:
    """Dataset cache with a fixed TTL.

    Construct once at startup and pass it to whatever needs it. Values are
    copied on the way in and out of the memory tier.
    """

    def __init__(
        self,
        store: Optional[JsonFileStore] = None,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._memory: dict[str, CacheEntry] = {}

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None on a miss or expiry."""
        now = self.clock()

        entry = self._memory.get(key)
        if entry is not None:
            if not entry.is_expired(self.ttl_seconds, now):
                logger.debug(f"Cache hit (memory): {key}")
                return copy.deepcopy(entry.value)
            del self._memory[key]

        if self.store is None:
            return None

        entry = self.store.get(key)
        if entry is None:
            return None
        if entry.is_expired(self.ttl_seconds, now):
            logger.debug(f"Cache entry expired: {key}")
            self.store.delete(key)
            return None

        logger.debug(f"Cache hit (store): {key}")
        self._memory[key] = entry
        return copy.deepcopy(entry.value)

    def set(self, key: str, value: Any) -> None:
        """Write to both tiers with the current time. Last write wins."""
        entry = CacheEntry(key=key, value=copy.deepcopy(value), timestamp=self.clock())
        self._memory[key] = entry
        if self.store is not None:
            self.store.set(entry)

    def delete(self, key: str) -> None:
        self._memory.pop(key, None)
        if self.store is not None:
            self.store.delete(key)

    def clear(self) -> None:
        self._memory.clear()
        if self.store is not None:
            self.store.clear()
        logger.info("Cache cleared")
