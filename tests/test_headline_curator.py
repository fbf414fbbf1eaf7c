"""Tests for the admin CLI wiring."""
import pytest

import headline_curator
from pipeline_models import FeedParseError


@pytest.fixture
def cli(tmp_path, monkeypatch):
    monkeypatch.setattr(headline_curator, "setup_logging", lambda **kwargs: None)
    db_path = tmp_path / "cli.db"

    def run(*argv):
        return headline_curator.main(["--db", str(db_path), *argv])
    return run


def test_init_seeds_categories(cli, capsys):
    assert cli("init") == 0
    assert cli("categories", "list") == 0

    out = capsys.readouterr().out
    assert "Database ready" in out
    assert "(ai)" in out


def test_producer_lifecycle(cli, capsys):
    cli("init")

    assert cli("producers", "add", "Tech Feed", "https://example.com/rss", "ai", "--interval", "1hr") == 0
    assert cli("producers", "toggle", "1", "off") == 0
    assert cli("producers", "list") == 0

    out = capsys.readouterr().out
    assert "Created producer [1] Tech Feed" in out
    assert "is now inactive" in out


def test_pipeline_errors_exit_with_1(cli):
    cli("init")

    assert cli("producers", "delete", "42") == 1
    assert cli("producers", "add", "Feed", "ftp://example.com", "ai") == 1


def test_queue_stats_on_empty_database(cli, capsys):
    assert cli("queue", "stats") == 0
    assert '"total": 0' in capsys.readouterr().out


def test_config_validate(cli, capsys):
    assert cli("config", "validate") == 0
    assert "valid" in capsys.readouterr().out


def test_producers_test_suggests_discovered_feed(cli, capsys, monkeypatch):
    """A page URL that fails to parse gets a warning and a suggested feed location."""
    error = FeedParseError("https://example.com/about", None, "2024-01-01T00:00:00+00:00", "Invalid XML format")
    monkeypatch.setattr(headline_curator, "analyze_feed", lambda *args, **kwargs: error)
    monkeypatch.setattr(headline_curator, "discover_feed", lambda url: "https://example.com/feed")

    assert cli("producers", "test", "https://example.com/about") == 1

    out = capsys.readouterr().out
    assert "does not look like a feed URL" in out
    assert "https://example.com/feed" in out


def test_producers_list_shows_domain(cli, capsys):
    cli("init")
    cli("producers", "add", "Tech Feed", "https://www.example.com/rss", "ai")

    cli("producers", "list")

    assert "example.com | https://www.example.com/rss" in capsys.readouterr().out
