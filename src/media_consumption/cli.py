"""Command-line interface for the media consumption dashboard."""

import logging
import sys
from pathlib import Path
from typing import Optional

import click

from .cache import DataCache, JsonFileStore
from .config import ConfigError, Settings, check_admin_password, get_settings, validate_credentials
from .constants import DEFAULT_WEB_PORT, ContentType
from .dashboard import DataUnavailableError, HistoryService
from .events import InvalidationBus
from .fetcher import DataFetcher
from .komga_client import KomgaClient
from .plex_client import PlexClient
from .posters import PosterResolver
from .rankings import LocalRankingStore, RankingEditor, RankingFileStore, RankingsAPIClient, SaveStatus
from .storage import SnapshotStore
from .tautulli_client import TautulliClient

logger = logging.getLogger(__name__)

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]
CONTENT_TYPES = [c.value for c in ContentType]

log_level_option = click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS),
    default=None,
    help="Logging level (default: dashboard.log_level from config)",
)
content_type_argument = click.argument("content_type", type=click.Choice(CONTENT_TYPES))
password_option = click.option(
    "--password",
    prompt="Admin password",
    hide_input=True,
    envvar="MEDIA_CONSUMPTION_ADMIN_PASSWORD",
    help="Admin password required to edit rankings",
)


def _show_config_error(invalid_vars: list[str], config_path: str = "data/config.yaml", exit_code: int = 1):
    """Display configuration error message and optionally exit."""
    logger.error("=" * 60)
    logger.error("CONFIGURATION ERROR: Missing or invalid credentials")
    logger.error("=" * 60)
    logger.error("Missing/invalid variables:")
    for var in invalid_vars:
        logger.error(f"  - {var}")
    logger.error("")
    logger.error("Required steps:")
    logger.error("  1. Find your Tautulli API key under Settings > Web Interface")
    logger.error(f"  2. Edit {config_path} or set the variables in the environment")
    logger.error("")
    logger.error("Make sure to replace ALL placeholder values")
    logger.error("=" * 60)
    if exit_code is not None:
        sys.exit(exit_code)


def setup_logging(level: str):
    """Configure logging for the application."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )


def _load_settings(log_level: Optional[str]) -> Settings:
    """Load settings and configure logging; config errors are fatal."""
    try:
        settings = get_settings()
    except ConfigError as e:
        setup_logging(log_level or "INFO")
        logger.error(str(e))
        sys.exit(1)
    setup_logging(log_level or settings.log_level)
    return settings


def _require_valid_config(settings: Settings):
    """Validate config credentials and exit if invalid."""
    is_valid, invalid_vars = validate_credentials(settings)
    if not is_valid:
        _show_config_error(invalid_vars, str(settings.config_path))


def _require_admin(settings: Settings, password: str):
    if not check_admin_password(settings, password):
        click.echo("Invalid admin password", err=True)
        sys.exit(1)


def _history_service(settings: Settings, bus: Optional[InvalidationBus] = None) -> HistoryService:
    return HistoryService(
        snapshot_store=SnapshotStore(settings.data_dir),
        cache=DataCache(JsonFileStore(settings.cache_dir)),
        rankings_loader=RankingFileStore(settings.data_dir).load,
        mode=settings.mode,
        bus=bus,
    )


def _editing_session(settings: Settings, content_type: str) -> tuple[HistoryService, RankingEditor]:
    """History service and ranking editor sharing one invalidation bus.

    The editor is backed by the proxy in dynamic mode and by local files in
    static mode. Its saves and exports clear the persisted dashboard cache.
    """
    bus = InvalidationBus()
    service = _history_service(settings, bus)
    editor = RankingEditor(
        ContentType(content_type),
        local_store=LocalRankingStore(settings.cache_dir / "rankings"),
        remote=RankingsAPIClient(settings.api_base_url) if settings.is_dynamic else None,
        published=RankingFileStore(settings.data_dir),
        bus=bus,
    )
    editor.load()
    return service, editor


def _report_save(status: Optional[SaveStatus]):
    if status == SaveStatus.ERROR:
        click.echo("Saved to local backup, but the server save failed", err=True)
        sys.exit(1)
    if status == SaveStatus.SAVED:
        click.echo("Rankings saved")


def _print_rankings(editor: RankingEditor):
    if not editor.entries:
        click.echo("No rankings yet")
        return
    for rank, entry in enumerate(editor.entries, start=1):
        year = f" ({entry.year})" if entry.year else ""
        click.echo(f"{rank:>3}. {entry.title}{year} [{entry.rating_key}]")


@click.group()
@click.version_option(version="0.1.0")
def main():
    """Personal media consumption dashboard."""
    pass


@main.command("fetch-data")
@log_level_option
def fetch_data(log_level: Optional[str]):
    """Fetch watch history, reading progress and images into the data directory."""
    settings = _load_settings(log_level)
    _require_valid_config(settings)

    tautulli = TautulliClient(settings.tautulli_url, settings.tautulli_api_key)
    plex = PlexClient(settings.plex_url, settings.plex_token) if settings.plex_url else None
    komga = KomgaClient(settings.komga_url, settings.komga_api_key) if settings.komga_enabled else None

    fetcher = DataFetcher(
        SnapshotStore(settings.data_dir),
        tautulli,
        PosterResolver(tautulli, plex),
        komga=komga,
    )

    logger.info(f"Fetching data into {settings.data_dir}")
    results = fetcher.fetch_all()

    click.echo("\n=== Fetch Results ===")
    for result in results:
        status = "ok" if result.success else "FAILED"
        click.echo(
            f"{result.content_type.value:<8} {status:<7} items: {result.item_count}, "
            f"images: {result.images_downloaded} downloaded, {result.images_present} present, "
            f"{result.images_failed} failed"
        )
        for error in result.errors[:10]:
            click.echo(f"  - {error}")

    sys.exit(0 if all(r.success for r in results) else 1)


@main.command()
@click.option("--host", type=str, default=None, help="Bind host (default: server.host from config)")
@click.option("--port", type=int, default=None, help=f"Bind port (default: {DEFAULT_WEB_PORT})")
@log_level_option
def serve(host: Optional[str], port: Optional[int], log_level: Optional[str]):
    """Run the proxy service and serve the data directory."""
    import uvicorn

    from .web import create_app

    settings = _load_settings(log_level)
    _require_valid_config(settings)

    host = host or settings.host
    port = port or settings.port

    logger.info("=" * 60)
    logger.info("Media Consumption - Proxy Service")
    logger.info("=" * 60)
    logger.info(f"API: http://{host}:{port}/api")
    logger.info(f"Data: {settings.data_dir} (served at /data)")
    logger.info(f"Mode: {settings.mode.value}")
    logger.info("=" * 60)

    app = create_app(settings)
    try:
        uvicorn.run(app, host=host, port=port, log_level="warning")
    except KeyboardInterrupt:
        logger.info("Proxy service stopped by user")
        sys.exit(0)


@main.command()
@content_type_argument
@click.option("--year", type=int, default=None, help="Year tab to show (default: most recent)")
@log_level_option
def summary(content_type: str, year: Optional[int], log_level: Optional[str]):
    """Show year stats and top favorites from the fetched snapshots."""
    settings = _load_settings(log_level)
    service = _history_service(settings)

    try:
        view = service.load_history(content_type)
        result = service.year_summary(content_type, year)
    except DataUnavailableError as e:
        click.echo(str(e), err=True)
        sys.exit(1)

    is_comics = ContentType(content_type) == ContentType.COMICS
    click.echo(f"\n=== {content_type} {result.year} ===")
    click.echo(f"Years: {', '.join(str(y) for y in view.years) or '-'}")
    click.echo(f"{'Series' if is_comics else 'Titles'}: {result.stats.count}")
    if is_comics:
        click.echo(f"Issues read: {result.stats.issues}")
    else:
        click.echo(f"Watch time: {result.stats.watch_time}")

    click.echo("\nTop favorites:")
    if not result.top:
        click.echo("  (none ranked for this year)")
    for rank, entry in enumerate(result.top, start=1):
        click.echo(f"  {rank}. {entry.title}")


@main.group()
def rankings():
    """View and edit ranked favorites."""
    pass


@rankings.command("list")
@content_type_argument
@log_level_option
def list_rankings(content_type: str, log_level: Optional[str]):
    """Print the ranking list."""
    settings = _load_settings(log_level)
    _, editor = _editing_session(settings, content_type)
    _print_rankings(editor)


@rankings.command()
@content_type_argument
@click.argument("item_id")
@password_option
@log_level_option
def add(content_type: str, item_id: str, password: str, log_level: Optional[str]):
    """Append a watched title (or comic series) to the rankings."""
    settings = _load_settings(log_level)
    _require_admin(settings, password)

    service, editor = _editing_session(settings, content_type)
    try:
        item = service.find_item(content_type, item_id)
    except DataUnavailableError as e:
        click.echo(str(e), err=True)
        sys.exit(1)
    if item is None:
        click.echo(f"No {content_type} item with id {item_id} in the history", err=True)
        sys.exit(1)

    status = editor.add(item)
    if status is None:
        click.echo(f"{item.title} is already ranked")
        return
    _report_save(status)


@rankings.command()
@content_type_argument
@click.argument("rating_key")
@password_option
@log_level_option
def remove(content_type: str, rating_key: str, password: str, log_level: Optional[str]):
    """Remove an entry by its rating key."""
    settings = _load_settings(log_level)
    _require_admin(settings, password)

    _, editor = _editing_session(settings, content_type)
    if not editor.contains(rating_key):
        click.echo(f"{rating_key} is not ranked", err=True)
        sys.exit(1)
    _report_save(editor.remove(rating_key))


@rankings.command()
@content_type_argument
@click.argument("source_rank", type=int)
@click.argument("target_rank", type=int)
@password_option
@log_level_option
def move(content_type: str, source_rank: int, target_rank: int, password: str, log_level: Optional[str]):
    """Move the entry at SOURCE_RANK so it ends up at TARGET_RANK (1-based)."""
    settings = _load_settings(log_level)
    _require_admin(settings, password)

    _, editor = _editing_session(settings, content_type)
    size = len(editor.entries)
    if not (1 <= source_rank <= size and 1 <= target_rank <= size):
        click.echo(f"Ranks must be between 1 and {size}", err=True)
        sys.exit(1)

    # Drop index is "before this slot"; moving down lands one slot further
    source_index = source_rank - 1
    drop_index = target_rank if target_rank > source_rank else target_rank - 1
    _report_save(editor.reorder(source_index, drop_index))
    _print_rankings(editor)


@rankings.command()
@content_type_argument
@click.argument("path", type=click.Path(path_type=Path), required=False)
@log_level_option
def export(content_type: str, path: Optional[Path], log_level: Optional[str]):
    """Write the rankings as JSON (default: into the data directory)."""
    settings = _load_settings(log_level)
    _, editor = _editing_session(settings, content_type)
    written = editor.export(path or settings.data_dir)
    click.echo(f"Exported {len(editor.entries)} rankings to {written}")


if __name__ == "__main__":
    main()
