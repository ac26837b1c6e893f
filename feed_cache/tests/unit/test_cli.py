import pytest
from typer.testing import CliRunner
from unittest.mock import AsyncMock

from feed_cache import cli
from feed_cache.models.dtos import HotTagDTO

runner = CliRunner()


@pytest.fixture(autouse=True)
def quiet_logging(mocker):
    # dictConfig would detach feed_cache loggers from caplog for later tests
    return mocker.patch.object(cli, "_configure_logging")


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"


@pytest.mark.parametrize(
    "stream_id, expected",
    [
        ("alice:followers", True),
        ("alice:muted", True),
        ("timeline:all:all", False),
        ("timeline:following:all:btc", False),
        ("alice:enemies", False),
    ],
)
def test_is_user_stream(stream_id, expected):
    assert cli.is_user_stream(stream_id) is expected


def test_init_db_creates_database(db_url, tmp_path):
    result = runner.invoke(cli.app, ["init-db", "--database-url", db_url])

    assert result.exit_code == 0, result.output
    assert "Cache tables created." in result.output
    assert (tmp_path / "cli.db").exists()


def test_clear_requires_confirmation(db_url):
    result = runner.invoke(cli.app, ["clear", "--database-url", db_url], input="n\n")

    assert result.exit_code == 1
    assert "Cache cleared." not in result.output


def test_clear_with_yes(db_url):
    result = runner.invoke(cli.app, ["clear", "--database-url", db_url, "--yes"])

    assert result.exit_code == 0, result.output
    assert "Cache cleared." in result.output


def test_warm_reports_count(mocker, db_url):
    warm = mocker.patch.object(cli, "_warm", AsyncMock(return_value=3))

    result = runner.invoke(cli.app, ["warm", "alice:followers", "--viewer", "me", "-n", "5", "--database-url", db_url])

    assert result.exit_code == 0, result.output
    assert "alice:followers: 3 entries cached" in result.output
    warm.assert_awaited_once_with("alice:followers", "me", 5, db_url)


def test_warm_failure_exits_nonzero(mocker):
    mocker.patch.object(cli, "_warm", AsyncMock(side_effect=RuntimeError("index down")))

    result = runner.invoke(cli.app, ["warm", "timeline:all:all"])

    assert result.exit_code == 1


def test_hot_tags_prints_rows(mocker):
    mocker.patch.object(
        cli, "_hot_tags", AsyncMock(return_value=[HotTagDTO(label="btc", tagged_count=9, taggers_count=4)])
    )

    result = runner.invoke(cli.app, ["hot-tags", "-t", "this_month", "-n", "5"])

    assert result.exit_code == 0, result.output
    assert "btc\t9\t4" in result.output


def test_hot_tags_rejects_unknown_timeframe():
    result = runner.invoke(cli.app, ["hot-tags", "--timeframe", "yesterday"])

    assert result.exit_code == 2
