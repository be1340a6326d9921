"""Shared fixtures."""

import socket

import pytest
import yaml

from media_consumption.config import ENV_OVERRIDES, Settings

TAUTULLI_URL = "http://tautulli.test"
PLEX_URL = "http://plex.test:32400"
KOMGA_URL = "http://komga.test"


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep credentials from the host environment out of the tests."""
    for var in ENV_OVERRIDES:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.delenv("MEDIA_CONSUMPTION_CONFIG", raising=False)


@pytest.fixture
def make_settings(tmp_path):
    """Write a config file under tmp_path and load it."""

    def _make(**sections):
        config = {
            "tautulli": {"url": TAUTULLI_URL, "api_key": "tautulli-key"},
            "plex": {"url": PLEX_URL, "token": "plex-token"},
            "komga": {"url": KOMGA_URL, "api_key": "komga-key"},
            "dashboard": {
                "admin_password": "secret",
                "data_dir": str(tmp_path / "public" / "data"),
                "cache_dir": str(tmp_path / "cache"),
            },
        }
        for section, values in sections.items():
            if values is None:
                config[section] = {}
            else:
                config.setdefault(section, {}).update(values)
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump(config))
        return Settings(config_path=path)

    return _make


@pytest.fixture
def silent_server():
    """Base URL of a TCP listener that completes the handshake but never answers."""
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    server.listen(8)
    host, port = server.getsockname()
    yield f"http://{host}:{port}"
    server.close()
