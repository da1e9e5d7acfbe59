"""
CLI Tests

Tests for argument parsing and the offline editing commands.
"""

from unittest.mock import AsyncMock, patch

import pytest

from milksync.cli import App, build_parser, main, run
from milksync.config import Settings
from milksync.connectivity import HttpConnectionManager
from milksync.local_store import LocalStore
from milksync.models import TaskModel


@pytest.fixture
def stored_tasks(store):
    store.replace_all_tasks([
        TaskModel(list_id="100", taskseries_id="1", task_id="11", name="Buy milk"),
        TaskModel(list_id="100", taskseries_id="2", task_id="21", name="Walk dog"),
    ])
    return store


def test_parser_flags():
    args = build_parser().parse_args(["--rename", "11", "Buy oat milk", "--sync", "-v"])
    assert args.rename == ["11", "Buy oat milk"]
    assert args.sync is True
    assert args.verbose is True
    assert args.watch is False


def test_main_requires_credentials(tmp_path, capsys):
    empty = Settings(api_key="", shared_secret="", cache_dir=tmp_path)
    with patch("milksync.cli.get_settings", return_value=empty):
        assert main(["--status"]) == 2
    assert "MILKSYNC_API_KEY" in capsys.readouterr().out


class TestApp:
    """Tests for the wired-up application."""

    def test_loads_stored_collections(self, settings, stored_tasks):
        app = App(settings)
        assert [t.task_id for t in app.task_list_model.get_task_list()] == ["11", "21"]

    def test_edit_queues_change_durably(self, settings, stored_tasks):
        app = App(settings)

        assert app.edit("21", "completed", True) is True
        assert app.edit("99", "name", "Nope") is False

        reloaded = LocalStore(settings.cache_db_path).load_all_tasks()
        assert reloaded[1].completed is True
        assert reloaded[1].local_changes == ["completed"]
        assert reloaded[0].local_changes == []

    @pytest.mark.asyncio
    async def test_run_rename_and_list(self, settings, stored_tasks, capsys):
        args = build_parser().parse_args(["--rename", "11", "Buy oat milk", "--list"])

        assert await run(args, settings) == 0

        out = capsys.readouterr().out
        assert "Buy oat milk" in out
        assert "[name]" in out

    @pytest.mark.asyncio
    async def test_sync_offline_keeps_edits_queued(self, settings, stored_tasks, capsys):
        args = build_parser().parse_args(["--due", "11", "2009-12-01", "--sync"])

        with patch.object(HttpConnectionManager, "probe", new=AsyncMock(return_value=False)):
            assert await run(args, settings) == 0

        assert "No network connection" in capsys.readouterr().out
        reloaded = LocalStore(settings.cache_db_path).load_all_tasks()
        assert reloaded[0].due == "2009-12-01"
        assert reloaded[0].local_changes == ["due"]
