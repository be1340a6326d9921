"""Komga comics library client."""

import logging

from .base_client import BaseAPIClient
from .constants import IMAGE_TIMEOUT_SECONDS, KOMGA_PAGE_SIZE

logger = logging.getLogger(__name__)


def page_content(data) -> list[dict]:
    """Items of a Komga page (``content``), or the body itself when it is a list."""
    if isinstance(data, dict):
        return data.get("content") or []
    if isinstance(data, list):
        return data
    return []


class KomgaClient(BaseAPIClient):
    """Client for the Komga REST API v1."""

    SERVICE_NAME = "Komga"

    def __init__(self, base_url: str, api_key: str):
        """Initialize Komga client. Komga uses the X-API-Key header."""
        super().__init__(
            base_url=base_url,
            headers={"X-API-Key": api_key},
        )

    def get_books_page(self, page: int = 0, size: int = KOMGA_PAGE_SIZE):
        return self._get_json("/api/v1/books", params={"page": page, "size": size})

    def get_series_page(self, page: int = 0, size: int = KOMGA_PAGE_SIZE):
        return self._get_json("/api/v1/series", params={"page": page, "size": size})

    def _fetch_all(self, fetch_page, label: str, size: int = KOMGA_PAGE_SIZE) -> list[dict]:
        """Walk pages strictly in order until a short or empty page."""
        items = []
        page = 0
        while True:
            data = fetch_page(page, size)
            content = page_content(data)
            items.extend(content)

            # Non-paginated body, short page or empty page ends the walk
            if not isinstance(data, dict) or len(content) < size:
                break
            page += 1

        logger.info(f"Fetched {len(items)} {label} from Komga ({page + 1} page(s))")
        return items

    def get_all_books(self, size: int = KOMGA_PAGE_SIZE) -> list[dict]:
        return self._fetch_all(self.get_books_page, "books", size)

    def get_all_series(self, size: int = KOMGA_PAGE_SIZE) -> list[dict]:
        return self._fetch_all(self.get_series_page, "series", size)

    def get_books_with_progress(self, size: int = KOMGA_PAGE_SIZE) -> list[dict]:
        """Books the user has started or finished reading."""
        return [book for book in self.get_all_books(size) if book.get("readProgress") is not None]

    def get_series_thumbnail(self, series_id: str, timeout: float = IMAGE_TIMEOUT_SECONDS) -> tuple[bytes, str]:
        return self._get_image(f"/api/v1/series/{series_id}/thumbnail", timeout=timeout)
