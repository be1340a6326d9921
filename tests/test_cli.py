"""Tests for CLI commands."""

import json
import re

import pytest
import responses
from click.testing import CliRunner

from media_consumption import cli as cli_module
from media_consumption.cli import main
from media_consumption.constants import ContentType
from media_consumption.storage import SnapshotStore

TAUTULLI = "http://tautulli.test"
RANK_LINE = re.compile(r"\d+\. ")


@pytest.fixture
def use_settings(monkeypatch):
    def _use(settings):
        monkeypatch.setattr(cli_module, "get_settings", lambda: settings)
        return settings

    return _use


@pytest.fixture
def static_settings(make_settings, use_settings):
    settings = use_settings(make_settings(dashboard={"mode": "static"}))
    SnapshotStore(settings.data_dir).save(
        ContentType.MOVIES,
        [
            {"media_type": "movie", "rating_key": 1, "title": "Heat", "date": 1704067200, "duration": 6000},
            {"media_type": "movie", "rating_key": 2, "title": "Ronin", "date": 1717200000, "duration": 7200},
            {"media_type": "movie", "rating_key": 3, "title": "Thief", "date": 1717300000, "duration": 7200},
        ],
    )
    return settings


def test_cli_help():
    runner = CliRunner()
    result = runner.invoke(main, ["--help"])
    assert result.exit_code == 0
    for command in ("fetch-data", "serve", "summary", "rankings"):
        assert command in result.output


def test_cli_version():
    result = CliRunner().invoke(main, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output


def test_fetch_data_has_no_content_or_batch_flags():
    result = CliRunner().invoke(main, ["fetch-data", "--help"])
    assert "--log-level" in result.output
    assert "--batch" not in result.output
    assert "--content" not in result.output


class TestFetchData:
    """Tests for fetch-data."""

    def test_missing_credentials_exit_1(self, make_settings, use_settings):
        use_settings(make_settings(tautulli={"api_key": "YOUR_TAUTULLI_API_KEY_HERE"}))

        result = CliRunner().invoke(main, ["fetch-data"])

        assert result.exit_code == 1

    @responses.activate
    def test_success(self, make_settings, use_settings):
        settings = use_settings(make_settings(komga=None))
        responses.add(responses.GET, f"{TAUTULLI}/api/v2", json={"response": {"data": {"data": []}}})

        result = CliRunner().invoke(main, ["fetch-data", "--log-level", "WARNING"])

        assert result.exit_code == 0, result.output
        assert "Fetch Results" in result.output
        assert (settings.data_dir / "movies.json").exists()
        assert (settings.data_dir / "tv-shows.json").exists()

    @responses.activate
    def test_upstream_failure_exit_1(self, make_settings, use_settings):
        use_settings(make_settings(komga=None))
        responses.add(responses.GET, f"{TAUTULLI}/api/v2", status=500)

        result = CliRunner().invoke(main, ["fetch-data"])

        assert result.exit_code == 1
        assert "FAILED" in result.output


def test_serve_missing_credentials_exit_1(make_settings, use_settings):
    use_settings(make_settings(tautulli={"url": ""}))

    result = CliRunner().invoke(main, ["serve"])

    assert result.exit_code == 1


class TestSummary:
    """Tests for summary."""

    def test_prints_stats_and_top(self, static_settings):
        (static_settings.data_dir / "movie-rankings.json").write_text(
            json.dumps([{"rating_key": "3", "title": "Thief"}, {"rating_key": "1", "title": "Heat"}])
        )

        result = CliRunner().invoke(main, ["summary", "movies", "--year", "2024"])

        assert result.exit_code == 0, result.output
        assert "Titles: 3" in result.output
        assert "Watch time: 5 hours, 40 minutes" in result.output
        assert "1. Thief" in result.output
        assert "2. Heat" in result.output

    def test_missing_snapshot(self, static_settings):
        result = CliRunner().invoke(main, ["summary", "comics"])

        assert result.exit_code == 1
        assert "fetch-data" in result.output


class TestRankings:
    """Tests for the rankings commands (static mode, local backup)."""

    def test_wrong_password(self, static_settings):
        result = CliRunner().invoke(main, ["rankings", "add", "movies", "1"], input="nope\n")

        assert result.exit_code == 1
        assert "Invalid admin password" in result.output

    def test_add_move_remove_list(self, static_settings):
        runner = CliRunner()
        for item_id in ("1", "2", "3"):
            result = runner.invoke(main, ["rankings", "add", "movies", item_id, "--password", "secret"])
            assert result.exit_code == 0, result.output

        result = runner.invoke(main, ["rankings", "move", "movies", "3", "1", "--password", "secret"])
        assert result.exit_code == 0, result.output

        result = runner.invoke(main, ["rankings", "remove", "movies", "2", "--password", "secret"])
        assert result.exit_code == 0, result.output

        result = runner.invoke(main, ["rankings", "list", "movies"])
        lines = [line.strip() for line in result.output.splitlines() if RANK_LINE.match(line.strip())]
        assert lines == ["1. Thief [3]", "2. Heat [1]"]

    def test_move_down_lands_on_target_rank(self, static_settings):
        runner = CliRunner()
        for item_id in ("1", "2", "3"):
            runner.invoke(main, ["rankings", "add", "movies", item_id, "--password", "secret"])

        runner.invoke(main, ["rankings", "move", "movies", "1", "3", "--password", "secret"])
        result = runner.invoke(main, ["rankings", "list", "movies"])

        assert [line.split()[1] for line in result.output.splitlines() if RANK_LINE.match(line.strip())] == ["Ronin", "Thief", "Heat"]

    def test_add_unknown_item(self, static_settings):
        result = CliRunner().invoke(main, ["rankings", "add", "movies", "99", "--password", "secret"])

        assert result.exit_code == 1

    def test_add_duplicate(self, static_settings):
        runner = CliRunner()
        runner.invoke(main, ["rankings", "add", "movies", "1", "--password", "secret"])

        result = runner.invoke(main, ["rankings", "add", "movies", "1", "--password", "secret"])

        assert result.exit_code == 0
        assert "already ranked" in result.output

    def test_export(self, static_settings, tmp_path):
        runner = CliRunner()
        runner.invoke(main, ["rankings", "add", "movies", "2", "--password", "secret"])

        result = runner.invoke(main, ["rankings", "export", "movies", str(tmp_path / "export.json")])

        assert result.exit_code == 0, result.output
        exported = json.loads((tmp_path / "export.json").read_text())
        assert exported == [{"rating_key": "2", "title": "Ronin", "poster": "/data/posters/2.jpg"}]

    def test_export_refreshes_cached_summary(self, static_settings):
        runner = CliRunner()
        result = runner.invoke(main, ["summary", "movies"])
        assert "(none ranked for this year)" in result.output

        runner.invoke(main, ["rankings", "add", "movies", "1", "--password", "secret"])
        result = runner.invoke(main, ["rankings", "export", "movies"])
        assert result.exit_code == 0, result.output

        result = runner.invoke(main, ["summary", "movies"])
        assert result.exit_code == 0, result.output
        assert "1. Heat" in result.output
        assert "(none ranked for this year)" not in result.output
