"""Data models for watch events, dashboard items and rankings."""

import time
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .constants import ContentType, MediaKind


class WatchEvent(BaseModel):
    """One playback or read instance, normalized at ingestion."""

    model_config = ConfigDict(frozen=True)

    # Identifiers
    content_id: str
    parent_id: Optional[str] = None  # show for episodes, series for comics
    title: str
    parent_title: Optional[str] = None

    # Watch data
    watched_at: datetime
    duration_seconds: int = Field(default=0, ge=0)
    media_kind: MediaKind

    # Additional metadata
    poster_ref: Optional[str] = None
    release_year: Optional[int] = None
    series_release_year: Optional[int] = None

    @property
    def group_id(self) -> str:
        """Identity of the card this event belongs to."""
        return self.parent_id or self.content_id

    @property
    def group_title(self) -> str:
        return self.parent_title or self.title

    @property
    def year(self) -> int:
        return self.watched_at.year

    @property
    def effective_release_year(self) -> Optional[int]:
        """Issue-level release year, falling back to the series release year."""
        if self.release_year is not None:
            return self.release_year
        return self.series_release_year


class AggregatedItem(BaseModel):
    """One display card: a movie, a TV show or a comic series."""

    id: str
    title: str
    media_kind: MediaKind
    poster_ref: Optional[str] = None
    first_seen: datetime
    last_seen: datetime
    count: int = Field(default=1, ge=0)  # episodes or issues
    total_duration_seconds: int = Field(default=0, ge=0)
    release_year: Optional[int] = None
    year: int  # tab bucket


class HistoryView(BaseModel):
    """Deduplicated display list plus the complete event list it came from."""

    content_type: ContentType
    items: list[AggregatedItem] = Field(default_factory=list)
    events: list[WatchEvent] = Field(default_factory=list)
    years: list[int] = Field(default_factory=list)


class RankingEntry(BaseModel):
    """A user-curated favorite. Rank is the list position + 1."""

    model_config = ConfigDict(extra="ignore")

    rating_key: str
    title: str
    poster: Optional[str] = None
    thumb: Optional[str] = None
    year: Optional[int] = None

    @field_validator("rating_key", mode="before")
    @classmethod
    def coerce_rating_key(cls, v):
        """Ranking files written by older versions store numeric keys."""
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(int(v))
        return v

    def to_dict(self) -> dict:
        """Minimal wire representation, optional fields omitted when empty."""
        return self.model_dump(exclude_none=True)


class CacheEntry(BaseModel):
    """Cached dataset value with the time it was written."""

    key: str
    value: Any = None
    timestamp: float = Field(default_factory=time.time)

    def is_expired(self, ttl_seconds: float, now: Optional[float] = None) -> bool:
        if now is None:
            now = time.time()
        return now - self.timestamp >= ttl_seconds


class SnapshotMetadata(BaseModel):
    """Metadata block written next to every snapshot."""

    model_config = ConfigDict(populate_by_name=True)

    last_fetched: datetime = Field(alias="lastFetched")
    item_count: int = Field(default=0, alias="itemCount", ge=0)


class YearStats(BaseModel):
    """Aggregate numbers for one year tab."""

    year: int
    count: int = 0  # distinct cards in the display list
    total_events: int = 0  # every watch/read, duplicates included
    total_duration_seconds: int = 0

    @property
    def watch_time(self) -> str:
        from .aggregation import format_watch_time

        return format_watch_time(self.total_duration_seconds)

    @property
    def issues(self) -> str:
        from .aggregation import format_issue_count

        return format_issue_count(self.total_events)


class YearSummary(BaseModel):
    """Everything a year tab displays."""

    content_type: ContentType
    year: int
    stats: YearStats
    items: list[AggregatedItem] = Field(default_factory=list)
    top: list[RankingEntry] = Field(default_factory=list)


class FetchResult(BaseModel):
    """Result of fetching one content type."""

    content_type: ContentType
    success: bool = True
    item_count: int = 0
    images_downloaded: int = 0
    images_present: int = 0
    images_failed: int = 0
    errors: list[str] = Field(default_factory=list)
