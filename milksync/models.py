"""
Local task and list entities.

A ``TaskModel`` remembers which of its fields carry local edits that have not
yet been confirmed by the remote service (its pending-change set). Those
fields survive a merge with freshly pulled data and are what the push sequence
sends.
"""

import functools
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)

# Composite key assigned by the remote service: (list ID, task series ID, task ID)
TaskKey = tuple[str, str, str]

Now = Union[datetime, date, None]


def _utc_today(now: Now = None) -> date:
    """Calendar day of ``now`` (default: the current moment) in UTC."""
    if now is None:
        return datetime.now(timezone.utc).date()
    if isinstance(now, datetime):
        if now.tzinfo is not None:
            now = now.astimezone(timezone.utc)
        return now.date()
    return now


def parse_due(due: Any) -> Optional[date]:
    """
    Calendar day of a due value, or None if there is no due date.

    The service reports "no due date" as an empty string, and decoded JSON may
    carry it as an empty object; both, like None, mean "no due date".
    """
    if not due:
        return None
    if isinstance(due, datetime):
        return _utc_today(due)
    if isinstance(due, date):
        return due
    if not isinstance(due, str):
        logger.warning(f"Ignoring unrecognised due value: {due!r}")
        return None
    text = due.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return _utc_today(datetime.fromisoformat(text))
    except ValueError:
        logger.warning(f"Ignoring unparseable due date: {due!r}")
        return None


# =============================================================================
# Tasks
# =============================================================================

@dataclass
class TaskModel:
    """A task as held locally, with its pending-change set."""

    # Fields whose edits can be pushed to the remote service
    PUSHABLE_FIELDS = ("name", "due", "deleted", "completed")

    list_id: Optional[str] = None
    taskseries_id: Optional[str] = None
    task_id: Optional[str] = None
    name: str = ""
    due: Any = None
    modified: Optional[str] = None
    deleted: bool = False
    completed: bool = False
    local_changes: list[str] = field(default_factory=list)
    is_due: bool = field(default=True, init=False)
    is_overdue: bool = field(default=False, init=False)

    def __post_init__(self):
        self.update()

    @property
    def key(self) -> TaskKey:
        return (self.list_id, self.taskseries_id, self.task_id)

    @property
    def has_local_changes(self) -> bool:
        return bool(self.local_changes)

    def update(self, now: Now = None) -> None:
        """Recompute the due and overdue flags against ``now`` (calendar days)."""
        due_day = parse_due(self.due)
        if due_day is None:
            self.is_due = True
            self.is_overdue = False
            return
        today = _utc_today(now)
        self.is_due = due_day <= today
        self.is_overdue = due_day < today

    def set_for_push(self, field_name: str, value: Any) -> None:
        """Set a field locally and flag it for pushing to the remote service."""
        if field_name not in self.PUSHABLE_FIELDS:
            raise ValueError(f"Field '{field_name}' cannot be pushed")
        setattr(self, field_name, value)
        if field_name not in self.local_changes:
            self.local_changes.append(field_name)
        if field_name == "due":
            self.update()

    def mark_not_for_push(self, field_name: str) -> None:
        """Unflag a field once its change is confirmed; unflagged fields are ignored."""
        if field_name in self.local_changes:
            self.local_changes.remove(field_name)

    def to_dict(self) -> dict:
        """Convert to dictionary for storage."""
        return {
            "list_id": self.list_id,
            "taskseries_id": self.taskseries_id,
            "task_id": self.task_id,
            "name": self.name,
            "due": self.due if self.due else None,
            "modified": self.modified,
            "deleted": self.deleted,
            "completed": self.completed,
            "local_changes": list(self.local_changes),
        }

    @classmethod
    def from_dict(cls, d: dict) -> "TaskModel":
        """Create from dictionary."""
        return cls(
            list_id=d.get("list_id"),
            taskseries_id=d.get("taskseries_id"),
            task_id=d.get("task_id"),
            name=d.get("name", ""),
            due=d.get("due"),
            modified=d.get("modified"),
            deleted=bool(d.get("deleted", False)),
            completed=bool(d.get("completed", False)),
            local_changes=list(dict.fromkeys(d.get("local_changes", []))),
        )


def sort_by_due_then_name(a: TaskModel, b: TaskModel, now: Now = None) -> int:
    """
    Compare two tasks by due day, then by name (case-sensitive).

    A task without a due date sorts as if due today. Returns -1, 0 or 1.
    """
    today = _utc_today(now)
    a_due = parse_due(a.due) or today
    b_due = parse_due(b.due) or today
    if a_due != b_due:
        return -1 if a_due < b_due else 1
    if a.name != b.name:
        return -1 if a.name < b.name else 1
    return 0


def due_then_name_key(now: Now = None):
    """Sort key equivalent to ``sort_by_due_then_name`` evaluated against ``now``."""
    today = _utc_today(now)
    return functools.cmp_to_key(lambda a, b: sort_by_due_then_name(a, b, today))


# =============================================================================
# Lists
# =============================================================================

@dataclass
class ListModel:
    """A task list. Smart lists are computed by the server from ``filter``."""

    list_id: Optional[str] = None
    name: str = ""
    deleted: bool = False
    locked: bool = False
    archived: bool = False
    position: Optional[str] = None
    smart: bool = False
    filter: str = ""

    def __post_init__(self):
        if not self.smart:
            self.filter = ""

    def to_dict(self) -> dict:
        """Convert to dictionary for storage."""
        return {
            "list_id": self.list_id,
            "name": self.name,
            "deleted": self.deleted,
            "locked": self.locked,
            "archived": self.archived,
            "position": self.position,
            "smart": self.smart,
            "filter": self.filter,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "ListModel":
        """Create from dictionary."""
        return cls(
            list_id=d.get("list_id"),
            name=d.get("name", ""),
            deleted=bool(d.get("deleted", False)),
            locked=bool(d.get("locked", False)),
            archived=bool(d.get("archived", False)),
            position=d.get("position"),
            smart=bool(d.get("smart", False)),
            filter=d.get("filter") or "",
        )
