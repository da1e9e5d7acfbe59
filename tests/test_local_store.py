"""
Local Store Tests

Tests for the SQLite token, collection and metadata storage.
"""

import pytest

from milksync.errors import StoreError
from milksync.local_store import LocalStore
from milksync.models import ListModel, TaskModel


class TestLocalStore:
    """Tests for the local SQLite store."""

    def test_token_lifecycle(self, store):
        """Test saving, replacing and clearing the auth token."""
        assert store.get_token() is None

        store.save_token("first")
        store.save_token("second")
        assert store.get_token() == "second"

        store.clear_token()
        assert store.get_token() is None

    def test_token_store_view(self, store):
        """Test the credential-store adapter."""
        tokens = store.token_store()
        tokens.put("tok")
        assert tokens.get() == "tok"
        assert store.get_token() == "tok"
        tokens.remove()
        assert tokens.get() is None

    def test_tasks_keep_order_and_pending_changes(self, store):
        """Test that the task collection round-trips in order."""
        edited = TaskModel(list_id="1", taskseries_id="2", task_id="4", name="Edited",
                           due="2009-12-01T00:00:00Z", modified="2009-12-01T10:00:00Z")
        edited.set_for_push("completed", True)
        tasks = [
            TaskModel(list_id="1", taskseries_id="2", task_id="9", name="Zeta"),
            edited,
        ]

        store.replace_all_tasks(tasks)
        loaded = store.load_all_tasks()

        assert [t.task_id for t in loaded] == ["9", "4"]
        assert loaded[1].completed is True
        assert loaded[1].local_changes == ["completed"]
        assert loaded[1].modified == "2009-12-01T10:00:00Z"

    def test_replace_drops_old_tasks(self, store):
        store.replace_all_tasks([TaskModel(list_id="1", taskseries_id="2", task_id="3")])
        store.replace_all_tasks([])
        assert store.load_all_tasks() == []

    def test_lists(self, store):
        lists = [
            ListModel(list_id="100", name="Inbox", locked=True),
            ListModel(list_id="101", name="Urgent", smart=True, filter="priority:1"),
        ]
        store.replace_all_lists(lists)
        assert store.load_all_lists() == lists

    def test_metadata(self, store):
        """Test setting, overwriting and removing metadata."""
        assert store.get_metadata("latest_modified") is None

        store.set_metadata("latest_modified", "2009-12-01T10:00:00Z")
        store.set_metadata("latest_modified", "2009-12-02T10:00:00Z")
        assert store.get_metadata("latest_modified") == "2009-12-02T10:00:00Z"

        store.set_metadata("latest_modified", None)
        assert store.get_metadata("latest_modified") is None

    def test_survives_reopen(self, settings):
        """Test that a second store on the same file sees the data."""
        LocalStore(settings.cache_db_path).save_token("tok")
        assert LocalStore(settings.cache_db_path).get_token() == "tok"

    def test_unopenable_database(self, tmp_path):
        """Test that a path that cannot be a database raises StoreError."""
        (tmp_path / "db").mkdir()
        with pytest.raises(StoreError):
            LocalStore(tmp_path / "db")
