"""Tautulli API client."""

import logging
from typing import Optional

from .base_client import BaseAPIClient
from .constants import HISTORY_LENGTH, HISTORY_TIMEOUT_SECONDS, IMAGE_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


def history_records(payload: dict) -> list[dict]:
    """Return the record list of a get_history payload (``response.data.data``)."""
    data = (payload or {}).get("response", {}).get("data")
    if isinstance(data, dict):
        return data.get("data") or []
    if isinstance(data, list):
        return data
    return []


def filter_by_media_type(payload: dict, media_type: str) -> dict:
    """Keep only records whose media_type matches exactly.

    Tautulli's server-side media_type filter is not always exact, so the
    records are filtered again in place.
    """
    data = (payload or {}).get("response", {}).get("data")
    if isinstance(data, dict) and isinstance(data.get("data"), list):
        data["data"] = [r for r in data["data"] if r.get("media_type") == media_type]
    return payload


class TautulliClient(BaseAPIClient):
    """Client for the Tautulli API v2."""

    SERVICE_NAME = "Tautulli"

    def __init__(self, base_url: str, api_key: str):
        """Initialize Tautulli client with an API key."""
        super().__init__(
            base_url=base_url,
            headers={"Accept": "application/json"},
            params={"apikey": api_key},
        )

    def _command(self, cmd: str, timeout: Optional[float] = None, **params) -> dict:
        """Execute an API v2 command and return the decoded payload."""
        return self._get_json("/api/v2", params={"cmd": cmd, **params}, timeout=timeout)

    def get_history(
        self,
        media_type: str = "movie",
        length: int = HISTORY_LENGTH,
        timeout: float = HISTORY_TIMEOUT_SECONDS,
    ) -> dict:
        """Fetch the watch history for one media type."""
        logger.info(f"[{media_type}] Fetching from Tautulli...")
        payload = self._command("get_history", timeout=timeout, length=length, media_type=media_type)
        payload = filter_by_media_type(payload, media_type)
        logger.info(f"[{media_type}] Received {len(history_records(payload))} items")
        return payload

    def get_metadata(self, rating_key: str) -> dict:
        """Fetch metadata for a single item."""
        return self._command("get_metadata", rating_key=rating_key)

    def get_thumb_path(self, rating_key: str) -> Optional[str]:
        """Look up the poster path of an item by rating key."""
        payload = self.get_metadata(rating_key)
        data = (payload or {}).get("response", {}).get("data") or {}
        return data.get("thumb") or None

    def get_image(self, thumb: str, timeout: float = IMAGE_TIMEOUT_SECONDS) -> tuple[bytes, str]:
        """Fetch an image through Tautulli's Plex image proxy."""
        return self._get_image(
            "/api/v2",
            params={"cmd": "get_pms_image", "img": thumb},
            timeout=timeout,
        )
