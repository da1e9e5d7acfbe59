"""
In-memory task and list collections.

``TaskListModel`` merges pulled tasks with the local collection without
clobbering pending local edits, purges tasks the server has finished with, and
keeps display order. ``ListListModel`` holds the lists, which carry no local
edits and are simply replaced on each pull.
"""

import logging
from collections.abc import Iterable, Iterator
from datetime import date, datetime
from typing import Any, Optional, Union

from .local_store import CollectionStore
from .models import ListModel, TaskKey, TaskModel, due_then_name_key

logger = logging.getLogger(__name__)


def make_array(value: Any) -> list:
    """The service returns a lone object where a JSON array holds one element."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _flag(value: Any) -> bool:
    """Service booleans are "1"/"0"; timestamps such as ``completed`` are set or empty."""
    if isinstance(value, str):
        return value not in ("", "0")
    return bool(value)


# =============================================================================
# Tasks
# =============================================================================

class TaskListModel:
    """The task collection, in display order."""

    # Server-owned fields taken from a pull unless pending locally
    MERGED_FIELDS = ("name", "due", "modified", "deleted", "completed")

    def __init__(self, store: Optional[CollectionStore] = None):
        self.store = store
        self._task_list: list[TaskModel] = []

    # === Decoding ===

    @staticmethod
    def object_to_task_list(data_obj: dict) -> list[TaskModel]:
        """Decode an ``rtm.tasks.getList`` response into tasks."""
        task_list = []
        tasks_obj = data_obj["rsp"].get("tasks") or {}
        for list_obj in make_array(tasks_obj.get("list")):
            list_id = list_obj.get("id")
            for series_obj in make_array(list_obj.get("taskseries")):
                task_list.extend(TaskListModel._series_to_tasks(list_id, series_obj))
            # Incremental pulls report removed task series separately
            deleted_obj = list_obj.get("deleted") or {}
            for series_obj in make_array(deleted_obj.get("taskseries")):
                for task in TaskListModel._series_to_tasks(list_id, series_obj):
                    task.deleted = True
                    task_list.append(task)
        logger.debug(f"Decoded {len(task_list)} tasks")
        return task_list

    @staticmethod
    def _series_to_tasks(list_id: Optional[str], series_obj: dict) -> list[TaskModel]:
        tasks = []
        for task_obj in make_array(series_obj.get("task")):
            tasks.append(TaskModel(
                list_id=list_id,
                taskseries_id=series_obj.get("id"),
                task_id=task_obj.get("id"),
                name=series_obj.get("name") or "",
                due=task_obj.get("due") or None,
                modified=series_obj.get("modified") or None,
                deleted=_flag(task_obj.get("deleted")),
                completed=_flag(task_obj.get("completed")),
            ))
        return tasks

    # === Access ===

    def get_task_list(self) -> list[TaskModel]:
        return self._task_list

    def set_task_list(self, task_list: list[TaskModel]) -> None:
        for task in task_list:
            if not isinstance(task, TaskModel):
                raise TypeError("TaskListModel.set_task_list needs a list of TaskModel objects")
        self._task_list = list(task_list)

    def get_task(self, key: TaskKey) -> Optional[TaskModel]:
        for task in self._task_list:
            if task.key == key:
                return task
        return None

    def tasks_with_local_changes(self) -> list[TaskModel]:
        return [task for task in self._task_list if task.has_local_changes]

    # === Merge / purge / sort ===

    def merge_batches(
        self,
        pulled: Iterable[TaskModel],
        batch_size: int = 10,
        full: bool = False,
    ) -> Iterator[int]:
        """
        Merge pulled tasks in chunks of ``batch_size``, yielding after each chunk.

        A pulled task updates the local one with the same key in place, except
        that fields in the local pending-change set keep their local values. After
        a full pull (not an incremental one) local tasks the server no longer
        reports are dropped, unless they have pending changes. Yields the
        number of tasks merged so far.
        """
        pulled = list(pulled)
        merged = 0
        for start in range(0, len(pulled), batch_size):
            # The collection may change while we are suspended between chunks
            by_key = {task.key: task for task in self._task_list}
            for task in pulled[start:start + batch_size]:
                self._merge_task(task, by_key)
            merged = min(start + batch_size, len(pulled))
            yield merged

        if full:
            pulled_keys = {task.key for task in pulled}
            before = len(self._task_list)
            self._task_list = [
                task for task in self._task_list
                if task.key in pulled_keys or task.has_local_changes
            ]
            if len(self._task_list) != before:
                logger.info(f"Dropped {before - len(self._task_list)} tasks no longer on the server")

    def _merge_task(self, pulled: TaskModel, by_key: dict[TaskKey, TaskModel]) -> None:
        local = by_key.get(pulled.key)
        if local is None:
            by_key[pulled.key] = pulled
            self._task_list.append(pulled)
            return

        # Update in place: pushes in flight hold a reference to the local task
        for field_name in self.MERGED_FIELDS:
            if field_name not in local.local_changes:
                setattr(local, field_name, getattr(pulled, field_name))
        local.update()

    def merge_task_list(self, pulled: Iterable[TaskModel], full: bool = False) -> None:
        """Merge pulled tasks in one go."""
        pulled = list(pulled)
        for _ in self.merge_batches(pulled, batch_size=max(1, len(pulled)), full=full):
            pass

    def purge_task_list(self) -> int:
        """Remove deleted or completed tasks whose changes are all confirmed."""
        before = len(self._task_list)
        self._task_list = [
            task for task in self._task_list
            if task.has_local_changes or not (task.deleted or task.completed)
        ]
        purged = before - len(self._task_list)
        if purged:
            logger.info(f"Purged {purged} finished tasks")
        return purged

    def sort(self, now: Union[datetime, date, None] = None) -> None:
        """Restore display order: by due day, then name."""
        for task in self._task_list:
            task.update(now)
        self._task_list.sort(key=due_then_name_key(now))

    def get_latest_modified(self) -> Optional[str]:
        """Latest "last modified" timestamp across the collection."""
        modified = [task.modified for task in self._task_list if task.modified]
        return max(modified) if modified else None

    # === Persistence ===

    def load_task_list(self) -> None:
        """Replace the in-memory collection with the stored one."""
        if self.store is None:
            return
        self._task_list = self.store.load_all_tasks()
        logger.info(f"Loaded {len(self._task_list)} tasks from local store")

    def save_task_list(self) -> None:
        """Persist the collection, pending changes included."""
        if self.store is None:
            return
        self.store.replace_all_tasks(self._task_list)


# =============================================================================
# Lists
# =============================================================================

class ListListModel:
    """The list collection, replaced wholesale on each pull."""

    def __init__(self, store: Optional[CollectionStore] = None):
        self.store = store
        self._list_list: list[ListModel] = []

    @staticmethod
    def object_to_list_list(data_obj: dict) -> list[ListModel]:
        """Decode an ``rtm.lists.getList`` response into lists."""
        lists_obj = data_obj["rsp"].get("lists") or {}
        list_list = []
        for list_obj in make_array(lists_obj.get("list")):
            smart = _flag(list_obj.get("smart"))
            list_list.append(ListModel(
                list_id=list_obj.get("id"),
                name=list_obj.get("name") or "",
                deleted=_flag(list_obj.get("deleted")),
                locked=_flag(list_obj.get("locked")),
                archived=_flag(list_obj.get("archived")),
                position=list_obj.get("position"),
                smart=smart,
                filter=(list_obj.get("filter") or "") if smart else "",
            ))
        return list_list

    def set_list_list(self, list_list: list[ListModel]) -> None:
        for lst in list_list:
            if not isinstance(lst, ListModel):
                raise TypeError("ListListModel.set_list_list needs a list of ListModel objects")
        self._list_list = list(list_list)

    def get_list_list(self) -> list[ListModel]:
        return self._list_list

    def get_regular_list_list(self) -> list[ListModel]:
        """Lists that are not smart lists."""
        return [lst for lst in self._list_list if not lst.smart]

    def get_list_name_by_list_id(self, list_id: Optional[str]) -> str:
        for lst in self._list_list:
            if lst.list_id == list_id:
                return lst.name
        return "All Tasks"

    def load_list_list(self) -> None:
        if self.store is None:
            return
        self._list_list = self.store.load_all_lists()
        logger.info(f"Loaded {len(self._list_list)} lists from local store")

    def replace_list_list(self, list_list: list[ListModel]) -> None:
        """Persist the lists, then make them current."""
        if self.store is not None:
            self.store.replace_all_lists(list_list)
        self.set_list_list(list_list)
