"""
HTTP proxy service for the media dashboard.
Passes history, metadata, poster and comics requests through to the upstream
services, stores ranking lists, and serves the snapshot directory.
"""

import json
import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from fastapi.staticfiles import StaticFiles

from .base_client import UpstreamError, UpstreamTimeoutError
from .cache import DataCache, JsonFileStore
from .config import ConfigError, Settings, validate_credentials
from .constants import (
    HISTORY_TIMEOUT_SECONDS,
    HTTP_BAD_REQUEST,
    HTTP_GATEWAY_TIMEOUT,
    HTTP_INTERNAL_SERVER_ERROR,
    HTTP_NOT_FOUND,
    HTTP_SERVICE_UNAVAILABLE,
    IMAGE_CACHE_CONTROL,
    KOMGA_PAGE_SIZE,
    ContentType,
    MediaKind,
)
from .dashboard import DataUnavailableError, HistoryService
from .events import InvalidationBus
from .komga_client import KomgaClient, page_content
from .plex_client import PlexClient
from .posters import PosterNotFoundError, PosterResolver, PosterUnavailableError
from .rankings import RankingFileStore, RankingValidationError, rankings_cache_key
from .storage import SnapshotStore
from .tautulli_client import TautulliClient

logger = logging.getLogger(__name__)


def _image_response(content: bytes, content_type: str) -> Response:
    """Raw image bytes with long-lived cache and cross-origin headers."""
    return Response(
        content=content,
        media_type=content_type,
        headers={
            "Cache-Control": IMAGE_CACHE_CONTROL,
            "Access-Control-Allow-Origin": "*",
            "Cross-Origin-Resource-Policy": "cross-origin",
        },
    )


def create_app(
    settings: Settings,
    tautulli: Optional[TautulliClient] = None,
    plex: Optional[PlexClient] = None,
    komga: Optional[KomgaClient] = None,
    history_service: Optional[HistoryService] = None,
    bus: Optional[InvalidationBus] = None,
) -> FastAPI:
    """Build the proxy application.

    Raises:
        ConfigError: Tautulli credentials are missing or placeholders
    """
    is_valid, invalid_vars = validate_credentials(settings)
    if not is_valid:
        raise ConfigError(f"Missing or invalid credentials: {', '.join(invalid_vars)}")

    tautulli = tautulli or TautulliClient(settings.tautulli_url, settings.tautulli_api_key)
    if plex is None and settings.plex_url:
        plex = PlexClient(settings.plex_url, settings.plex_token)
    if komga is None and settings.komga_enabled:
        komga = KomgaClient(settings.komga_url, settings.komga_api_key)

    bus = bus or InvalidationBus()
    posters = PosterResolver(tautulli, plex)
    ranking_store = RankingFileStore(settings.data_dir)
    if history_service is None:
        history_service = HistoryService(
            snapshot_store=SnapshotStore(settings.data_dir),
            cache=DataCache(JsonFileStore(settings.cache_dir)),
            rankings_loader=ranking_store.load,
            mode=settings.mode,
            bus=bus,
        )

    app = FastAPI(title="Media Consumption", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )
    app.state.settings = settings
    app.state.bus = bus
    app.state.history_service = history_service

    def require_komga() -> KomgaClient:
        if komga is None:
            raise HTTPException(status_code=HTTP_SERVICE_UNAVAILABLE, detail="Komga is not configured")
        return komga

    @app.get("/api/history")
    def get_history(media_type: str = MediaKind.MOVIE.value):
        """Watch history for one media type, filtered to exact matches."""
        try:
            return tautulli.get_history(media_type, timeout=HISTORY_TIMEOUT_SECONDS)
        except UpstreamTimeoutError as e:
            logger.error(f"[{media_type}] Request timeout after {HISTORY_TIMEOUT_SECONDS} seconds: {e}")
            raise HTTPException(
                status_code=HTTP_GATEWAY_TIMEOUT,
                detail="Request timeout - Tautulli server is taking too long to respond",
            )
        except UpstreamError as e:
            logger.error(f"[{media_type}] Error fetching history: {e}")
            raise HTTPException(status_code=HTTP_INTERNAL_SERVER_ERROR, detail="Failed to fetch history")

    @app.get("/api/metadata/{rating_key}")
    def get_metadata(rating_key: str):
        try:
            return tautulli.get_metadata(rating_key)
        except UpstreamError as e:
            logger.error(f"Error fetching metadata for {rating_key}: {e}")
            raise HTTPException(status_code=HTTP_INTERNAL_SERVER_ERROR, detail="Failed to fetch metadata")

    @app.get("/api/poster")
    def get_poster(thumb: Optional[str] = None, ratingKey: Optional[str] = None):
        """Poster bytes by thumb path, or by rating key via a metadata lookup."""
        try:
            thumb_path = posters.resolve_thumb(thumb=thumb, rating_key=ratingKey)
        except UpstreamError as e:
            logger.error(f"Error looking up poster for {ratingKey}: {e}")
            raise HTTPException(status_code=HTTP_INTERNAL_SERVER_ERROR, detail="Failed to fetch poster")
        if not thumb_path:
            raise HTTPException(status_code=HTTP_NOT_FOUND, detail="Poster not found")

        try:
            content, content_type = posters.fetch(thumb_path)
        except PosterUnavailableError as e:
            raise HTTPException(status_code=HTTP_SERVICE_UNAVAILABLE, detail=str(e))
        except PosterNotFoundError as e:
            raise HTTPException(status_code=HTTP_NOT_FOUND, detail=str(e))
        return _image_response(content, content_type)

    @app.get("/api/rankings/{content_type}")
    def get_rankings(content_type: ContentType):
        """Stored rankings; a missing file is an empty list."""
        try:
            rankings = ranking_store.load_raw(content_type)
        except (OSError, ValueError) as e:
            logger.error(f"Error reading rankings for {content_type.value}: {e}")
            raise HTTPException(status_code=HTTP_INTERNAL_SERVER_ERROR, detail="Failed to read rankings")
        logger.info(f"[GET] Returning {len(rankings)} rankings for {content_type.value}")
        return rankings

    @app.post("/api/rankings/{content_type}")
    async def save_rankings(content_type: ContentType, request: Request):
        """Overwrite the rankings file. Anything but a JSON array is rejected."""
        body = await request.body()
        try:
            payload = json.loads(body) if body else None
        except ValueError:
            logger.error(f"[POST] Invalid JSON body for {content_type.value} rankings")
            raise HTTPException(status_code=HTTP_BAD_REQUEST, detail="Invalid JSON body")

        try:
            count = ranking_store.save(content_type, payload)
        except RankingValidationError as e:
            logger.error(f"[POST] Rejected {content_type.value} rankings: {e}")
            raise HTTPException(status_code=HTTP_BAD_REQUEST, detail=str(e))
        except OSError as e:
            logger.error(f"[POST] Error saving rankings: {e}")
            raise HTTPException(status_code=HTTP_INTERNAL_SERVER_ERROR, detail="Failed to save rankings")

        bus.publish(rankings_cache_key(content_type))
        return {"success": True, "count": count}

    @app.get("/api/komga/read-progress")
    def get_read_progress(page: int = 0, size: int = KOMGA_PAGE_SIZE):
        """One page of books, keeping only those with read progress."""
        client = require_komga()
        try:
            books = page_content(client.get_books_page(page, size))
        except UpstreamError as e:
            logger.error(f"Error fetching Komga read progress: {e}")
            raise HTTPException(status_code=HTTP_INTERNAL_SERVER_ERROR, detail="Failed to fetch read progress")
        return [book for book in books if book.get("readProgress") is not None]

    @app.get("/api/komga/series")
    def get_series(page: int = 0, size: int = KOMGA_PAGE_SIZE):
        client = require_komga()
        try:
            return client.get_series_page(page, size)
        except UpstreamError as e:
            logger.error(f"Error fetching Komga series: {e}")
            raise HTTPException(status_code=HTTP_INTERNAL_SERVER_ERROR, detail="Failed to fetch series")

    @app.get("/api/komga/cover/{series_id}")
    def get_cover(series_id: str):
        client = require_komga()
        try:
            content, content_type = client.get_series_thumbnail(series_id)
        except UpstreamError as e:
            if e.status_code is not None:
                raise HTTPException(status_code=HTTP_NOT_FOUND, detail="Cover not found")
            logger.error(f"Error fetching Komga cover: {e}")
            raise HTTPException(status_code=HTTP_INTERNAL_SERVER_ERROR, detail="Failed to fetch cover")
        return _image_response(content, content_type)

    @app.get("/api/summary/{content_type}")
    def get_summary(content_type: ContentType, year: Optional[int] = None):
        """Year tab data: stats, cards and top favorites."""
        try:
            view = history_service.load_history(content_type)
            summary = history_service.year_summary(content_type, year)
        except DataUnavailableError as e:
            raise HTTPException(status_code=HTTP_SERVICE_UNAVAILABLE, detail=str(e))

        data = summary.model_dump(mode="json")
        data["years"] = view.years
        data["stats"]["watch_time"] = summary.stats.watch_time
        data["stats"]["issues"] = summary.stats.issues
        return data

    app.mount("/data", StaticFiles(directory=settings.data_dir, check_dir=False), name="data")
    return app
