"""Configuration management using Pydantic models."""

import logging
import os
import secrets
import shutil
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from .constants import DEFAULT_WEB_PORT, PLEX_TOKEN_PLACEHOLDER, OperatingMode

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Configuration error."""

    pass


# Placeholder values that indicate unconfigured credentials
INVALID_PLACEHOLDERS = {
    "YOUR_TAUTULLI_URL_HERE",
    "YOUR_TAUTULLI_API_KEY_HERE",
    "YOUR_KOMGA_API_KEY_HERE",
    PLEX_TOKEN_PLACEHOLDER,
    "",
}

REQUIRED_VARS = [
    "TAUTULLI_URL",
    "TAUTULLI_API_KEY",
]

# Environment variable -> (section, field)
ENV_OVERRIDES = {
    "TAUTULLI_URL": ("tautulli", "url"),
    "TAUTULLI_API_KEY": ("tautulli", "api_key"),
    "PLEX_URL": ("plex", "url"),
    "PLEX_TOKEN": ("plex", "token"),
    "KOMGA_URL": ("komga", "url"),
    "KOMGA_API_KEY": ("komga", "api_key"),
    "ADMIN_PASSWORD": ("dashboard", "admin_password"),
    "DASHBOARD_MODE": ("dashboard", "mode"),
}


class TautulliConfig(BaseModel):
    """Watch-history service configuration."""
    url: Optional[str] = None
    api_key: Optional[str] = None


class PlexConfig(BaseModel):
    """Media server configuration."""
    url: Optional[str] = None
    token: Optional[str] = None


class KomgaConfig(BaseModel):
    """Comics library configuration."""
    url: Optional[str] = None
    api_key: Optional[str] = None


class ServerConfig(BaseModel):
    """Proxy server settings."""
    host: str = "127.0.0.1"
    port: int = DEFAULT_WEB_PORT


class DashboardConfig(BaseModel):
    """Dashboard settings."""
    mode: OperatingMode = OperatingMode.DYNAMIC
    admin_password: str = "admin"
    data_dir: str = "public/data"
    cache_dir: str = "data/cache"
    api_base_url: str = f"http://localhost:{DEFAULT_WEB_PORT}/api"
    log_level: str = "INFO"

    @field_validator("mode", mode="before")
    @classmethod
    def normalize_mode(cls, v):
        """Accept 'Dynamic', 'STATIC' and friends."""
        return v.strip().lower() if isinstance(v, str) else v


class Config(BaseModel):
    """Root configuration model."""
    tautulli: TautulliConfig = Field(default_factory=TautulliConfig)
    plex: PlexConfig = Field(default_factory=PlexConfig)
    komga: KomgaConfig = Field(default_factory=KomgaConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    dashboard: DashboardConfig = Field(default_factory=DashboardConfig)


def _default_config_path() -> Path:
    """Get config file path based on environment."""
    env_path = os.environ.get("MEDIA_CONSUMPTION_CONFIG")
    if env_path:
        return Path(env_path)
    if os.path.exists("/.dockerenv"):
        return Path("/app/data/config.yaml")
    return Path("data/config.yaml")


class Settings:
    """Application settings loaded from config.yaml and the environment."""

    def __init__(self, config_path: Optional[Path] = None):
        """Load and validate configuration."""
        self.config_path = Path(config_path) if config_path else _default_config_path()

        if not self.config_path.exists():
            self._create_config_template()

        self._load_config()

    def _create_config_template(self) -> None:
        """Create config template from example."""
        example_path = Path("config.example.yaml")
        if example_path.exists():
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy(example_path, self.config_path)
            logger.info(f"Created config template: {self.config_path}")
            logger.info("Please edit the config file with your credentials")

    def _read_raw_config(self) -> dict:
        if not self.config_path.exists():
            logger.info(f"No config file at {self.config_path}, using defaults and environment")
            return {}
        with open(self.config_path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}

    @staticmethod
    def _apply_env_overrides(raw_config: dict) -> dict:
        """Environment variables win over the config file."""
        for var_name, (section, key) in ENV_OVERRIDES.items():
            value = os.environ.get(var_name)
            if value:
                raw_config.setdefault(section, {})
                if raw_config[section] is None:
                    raw_config[section] = {}
                raw_config[section][key] = value
        return raw_config

    def _load_config(self) -> None:
        """Load configuration from YAML using Pydantic."""
        try:
            raw_config = self._apply_env_overrides(self._read_raw_config())
            config = Config(**raw_config)
        except (yaml.YAMLError, ValueError) as e:
            logger.error(f"Failed to load config: {e}")
            raise ConfigError(f"Invalid configuration in {self.config_path}: {e}") from e

        self.tautulli_url = (config.tautulli.url or "").rstrip("/") or None
        self.tautulli_api_key = config.tautulli.api_key

        self.plex_url = (config.plex.url or "").rstrip("/") or None
        self.plex_token = config.plex.token

        self.komga_url = (config.komga.url or "").rstrip("/") or None
        self.komga_api_key = config.komga.api_key

        self.host = config.server.host
        self.port = config.server.port

        self.mode = config.dashboard.mode
        self.admin_password = config.dashboard.admin_password
        self.data_dir = Path(config.dashboard.data_dir)
        self.cache_dir = Path(config.dashboard.cache_dir)
        self.api_base_url = config.dashboard.api_base_url.rstrip("/")
        self.log_level = config.dashboard.log_level

    @property
    def is_dynamic(self) -> bool:
        return self.mode == OperatingMode.DYNAMIC

    @property
    def komga_enabled(self) -> bool:
        """Komga is optional; comics are skipped without it."""
        return _is_set(self.komga_url) and _is_set(self.komga_api_key)


def _is_set(value: Optional[str]) -> bool:
    return bool(value) and value not in INVALID_PLACEHOLDERS


def validate_credentials(settings: Settings) -> tuple[bool, list[str]]:
    """
    Validate that required credentials are present and not placeholder values.
    Returns (is_valid, list_of_invalid_vars).
    """
    values = {
        "TAUTULLI_URL": settings.tautulli_url,
        "TAUTULLI_API_KEY": settings.tautulli_api_key,
    }
    missing_or_invalid = [name for name in REQUIRED_VARS if not _is_set(values[name])]
    return len(missing_or_invalid) == 0, missing_or_invalid


def check_admin_password(settings: Settings, candidate: Optional[str]) -> bool:
    """Compare a candidate admin password in constant time."""
    if not candidate:
        return False
    return secrets.compare_digest(candidate.encode("utf-8"), settings.admin_password.encode("utf-8"))


# Singleton cache for settings
_SETTINGS_SINGLETON = None


def get_settings() -> Settings:
    """Get (cached) application settings singleton."""
    global _SETTINGS_SINGLETON
    if _SETTINGS_SINGLETON is None:
        _SETTINGS_SINGLETON = Settings()
    return _SETTINGS_SINGLETON
