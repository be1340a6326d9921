"""Poster resolution: Tautulli image proxy first, Plex direct as fallback."""

import logging
from typing import Optional

from .base_client import UpstreamError
from .constants import IMAGE_TIMEOUT_SECONDS
from .plex_client import PlexClient
from .tautulli_client import TautulliClient

logger = logging.getLogger(__name__)


class PosterNotFoundError(Exception):
    """No poster exists for the requested reference."""

    pass


class PosterUnavailableError(Exception):
    """The image proxy failed and Plex cannot be used without a token."""

    pass


def _short(thumb: str) -> str:
    return thumb if len(thumb) <= 50 else f"{thumb[:50]}..."


class PosterResolver:
    """Turns a poster reference into image bytes."""

    def __init__(
        self,
        tautulli: TautulliClient,
        plex: Optional[PlexClient] = None,
        timeout: float = IMAGE_TIMEOUT_SECONDS,
    ):
        self.tautulli = tautulli
        self.plex = plex
        self.timeout = timeout

    def resolve_thumb(self, thumb: Optional[str] = None, rating_key: Optional[str] = None) -> Optional[str]:
        """Return the thumb path, looking it up by rating key if needed."""
        if thumb:
            return thumb
        if rating_key:
            return self.tautulli.get_thumb_path(rating_key)
        return None

    def fetch(self, thumb: str) -> tuple[bytes, str]:
        """Fetch poster bytes and content type.

        Raises:
            PosterUnavailableError: proxy failed and no valid Plex token is set
            PosterNotFoundError: Plex answered with an error
        """
        try:
            return self.tautulli.get_image(thumb, timeout=self.timeout)
        except UpstreamError as e:
            logger.info(f"Tautulli image proxy failed for {_short(thumb)}: {e}")

        if self.plex is None or not self.plex.has_valid_token:
            logger.error(f"Plex token not set or is placeholder. Cannot fetch from Plex: {_short(thumb)}")
            raise PosterUnavailableError(
                "Poster unavailable - Plex token not configured. "
                "Tautulli proxy failed and Plex requires authentication."
            )

        try:
            return self.plex.get_image(thumb, timeout=self.timeout)
        except UpstreamError as e:
            logger.error(f"Failed to fetch poster from Plex for {_short(thumb)}: {e}")
            raise PosterNotFoundError("Poster not found") from e
