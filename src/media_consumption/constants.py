"""Constants used throughout the application."""

from enum import Enum


class ContentType(str, Enum):
    """Content types shown on the dashboard."""

    MOVIES = "movies"
    TV = "tv"
    COMICS = "comics"


class MediaKind(str, Enum):
    """Kind of a single watch/read event."""

    MOVIE = "movie"
    EPISODE = "episode"
    COMIC_ISSUE = "comic-issue"


class OperatingMode(str, Enum):
    """Dynamic mode goes through the proxy, static mode reads snapshots only."""

    DYNAMIC = "dynamic"
    STATIC = "static"


# HTTP Status Codes
HTTP_BAD_REQUEST = 400
HTTP_UNAUTHORIZED = 401
HTTP_FORBIDDEN = 403
HTTP_NOT_FOUND = 404
HTTP_TOO_MANY_REQUESTS = 429
HTTP_INTERNAL_SERVER_ERROR = 500
HTTP_SERVICE_UNAVAILABLE = 503
HTTP_GATEWAY_TIMEOUT = 504

# Timeouts (seconds)
DEFAULT_TIMEOUT_SECONDS = 30
HISTORY_TIMEOUT_SECONDS = 60
IMAGE_TIMEOUT_SECONDS = 10

# Default values
CACHE_TTL_SECONDS = 24 * 60 * 60  # 24 hours
SNAPSHOT_STALE_HOURS = 24
IMAGE_BATCH_SIZE = 10
KOMGA_PAGE_SIZE = 1000
HISTORY_LENGTH = 10000
TOP_N = 3
DEFAULT_WEB_PORT = 3001
PROGRESS_LOG_EVERY = 50

PLEX_TOKEN_PLACEHOLDER = "your_plex_token_here"
IMAGE_CACHE_CONTROL = "public, max-age=31536000"  # 1 year
DEFAULT_IMAGE_CONTENT_TYPE = "image/jpeg"

# Tautulli media_type for each history-backed content type
HISTORY_MEDIA_TYPES = {
    ContentType.MOVIES: MediaKind.MOVIE.value,
    ContentType.TV: MediaKind.EPISODE.value,
}

SNAPSHOT_FILES = {
    ContentType.MOVIES: "movies.json",
    ContentType.TV: "tv-shows.json",
    ContentType.COMICS: "comic-books.json",
}

RANKING_FILES = {
    ContentType.MOVIES: "movie-rankings.json",
    ContentType.TV: "tv-rankings.json",
    ContentType.COMICS: "comic-rankings.json",
}

# Keys for the local (client-side) ranking backup
LOCAL_RANKING_KEYS = {
    ContentType.MOVIES: "movieRankings",
    ContentType.TV: "tvShowRankings",
    ContentType.COMICS: "comicRankings",
}

# Cache key prefix per dataset
DATASET_KEYS = {
    ContentType.MOVIES: "movies",
    ContentType.TV: "tvshows",
    ContentType.COMICS: "comics",
}

FETCH_DATA_HINT = "Run 'media-consumption fetch-data' to update the data."
