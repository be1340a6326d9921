"""Plex media server client (direct image access)."""

import logging
from typing import Optional

from .base_client import BaseAPIClient, UpstreamError
from .constants import IMAGE_TIMEOUT_SECONDS, PLEX_TOKEN_PLACEHOLDER

logger = logging.getLogger(__name__)


class PlexTokenMissingError(UpstreamError):
    """No usable Plex token, so no request was attempted."""

    pass


class PlexClient(BaseAPIClient):
    """Client for images served directly by a Plex media server."""

    SERVICE_NAME = "Plex"

    def __init__(self, base_url: str, token: Optional[str] = None):
        """Initialize Plex client with an optional token."""
        super().__init__(base_url=base_url)
        self.token = token

    @property
    def has_valid_token(self) -> bool:
        return bool(self.token) and self.token != PLEX_TOKEN_PLACEHOLDER

    def get_image(self, thumb: str, timeout: float = IMAGE_TIMEOUT_SECONDS) -> tuple[bytes, str]:
        """Fetch an image from Plex. Refuses to send unauthenticated requests."""
        if not self.has_valid_token:
            raise PlexTokenMissingError("Plex token not configured")
        return self._get_image(thumb, params={"X-Plex-Token": self.token}, timeout=timeout)
