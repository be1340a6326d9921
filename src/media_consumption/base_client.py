"""Base API client with common functionality."""

import logging
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .constants import (
    DEFAULT_IMAGE_CONTENT_TYPE,
    DEFAULT_TIMEOUT_SECONDS,
    HTTP_FORBIDDEN,
    HTTP_TOO_MANY_REQUESTS,
    HTTP_UNAUTHORIZED,
)

logger = logging.getLogger(__name__)


class UpstreamError(Exception):
    """A remote service failed or answered with a non-2xx status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class UpstreamTimeoutError(UpstreamError):
    """A remote service did not answer before the deadline."""

    pass


class BaseAPIClient:
    """Base class for API clients with common request handling."""

    SERVICE_NAME = "Upstream"

    def __init__(
        self,
        base_url: str,
        headers: Optional[dict] = None,
        params: Optional[dict] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        """Initialize API client for a base URL."""
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.default_params = params or {}
        self.session = requests.Session()

        # Retry rate limits (429) only; timeouts must surface within one deadline
        retry_strategy = Retry(
            total=3,
            connect=0,
            read=False,
            backoff_factor=1,
            status_forcelist=[HTTP_TOO_MANY_REQUESTS],
            allowed_methods=["GET", "POST"]
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

        if headers:
            self.session.headers.update(headers)

    def _handle_auth_error(self, response: requests.Response) -> None:
        """Handle authentication errors consistently."""
        if response.status_code in (HTTP_UNAUTHORIZED, HTTP_FORBIDDEN):
            logger.error(f"{self.SERVICE_NAME} authentication failed (HTTP {response.status_code})")
            logger.error(f"{self.SERVICE_NAME} API key or token is invalid")

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        timeout: Optional[float] = None,
        **kwargs,
    ) -> requests.Response:
        """Send a request and turn every failure into an UpstreamError."""
        url = f"{self.base_url}{path}"
        merged_params = {**self.default_params, **(params or {})}

        try:
            response = self.session.request(
                method,
                url,
                params=merged_params or None,
                timeout=timeout or self.timeout,
                **kwargs,
            )
        except requests.Timeout as e:
            raise UpstreamTimeoutError(f"{self.SERVICE_NAME} request timed out: {e}")
        except requests.RequestException as e:
            raise UpstreamError(f"Cannot connect to {self.SERVICE_NAME}: {e}")

        if not response.ok:
            self._handle_auth_error(response)
            raise UpstreamError(
                f"{self.SERVICE_NAME} API returned {response.status_code}: {response.reason}",
                status_code=response.status_code,
            )
        return response

    def _get(self, path: str, params: Optional[dict] = None, timeout: Optional[float] = None) -> requests.Response:
        return self._request("GET", path, params=params, timeout=timeout)

    def _get_json(self, path: str, params: Optional[dict] = None, timeout: Optional[float] = None):
        response = self._get(path, params=params, timeout=timeout)
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(f"{self.SERVICE_NAME} returned invalid JSON: {e}")

    def _get_image(self, path: str, params: Optional[dict] = None, timeout: Optional[float] = None) -> tuple[bytes, str]:
        """Fetch raw image bytes and their content type."""
        response = self._get(path, params=params, timeout=timeout)
        content_type = response.headers.get("Content-Type") or DEFAULT_IMAGE_CONTENT_TYPE
        return response.content, content_type
