"""
SQLite-backed local storage for offline operation.

Holds the authorization token (the credential store), the last known task and
list collections (the durable collection store) and small metadata values such
as the pull watermark.
"""

import json
import logging
import sqlite3
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

from .errors import StoreError
from .models import ListModel, TaskModel

logger = logging.getLogger(__name__)


class TokenStore(Protocol):
    """Where the durable authorization token lives."""

    def put(self, token: str) -> None: ...

    def get(self) -> Optional[str]: ...

    def remove(self) -> None: ...


class CollectionStore(Protocol):
    """Durable copy of the task and list collections."""

    def load_all_lists(self) -> list[ListModel]: ...

    def replace_all_lists(self, lists: list[ListModel]) -> None: ...

    def load_all_tasks(self) -> list[TaskModel]: ...

    def replace_all_tasks(self, tasks: list[TaskModel]) -> None: ...

    def get_metadata(self, key: str) -> Optional[str]: ...

    def set_metadata(self, key: str, value: Optional[str]) -> None: ...


class LocalStore:
    """SQLite-based local store."""

    SCHEMA = """
    CREATE TABLE IF NOT EXISTS auth_token (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        token TEXT NOT NULL,
        saved_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS lists (
        list_id TEXT PRIMARY KEY,
        seq INTEGER NOT NULL,
        data TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS tasks (
        list_id TEXT,
        taskseries_id TEXT,
        task_id TEXT,
        seq INTEGER NOT NULL,
        data TEXT NOT NULL,
        PRIMARY KEY (list_id, taskseries_id, task_id)
    );

    CREATE TABLE IF NOT EXISTS sync_metadata (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_tasks_seq ON tasks(seq);
    CREATE INDEX IF NOT EXISTS idx_lists_seq ON lists(seq);
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the database schema."""
        with self._get_connection() as conn:
            conn.executescript(self.SCHEMA)
            conn.commit()

    @contextmanager
    def _get_connection(self):
        """Get a database connection with proper cleanup and retry for SQLITE_BUSY."""
        conn = None
        for attempt in range(5):
            try:
                conn = sqlite3.connect(str(self.db_path), timeout=30.0)
                conn.row_factory = sqlite3.Row
                break
            except sqlite3.OperationalError as e:
                if "database is locked" in str(e) and attempt < 4:
                    time.sleep(0.1 * (2 ** attempt))
                else:
                    raise StoreError(f"Cannot open local store {self.db_path}: {e}") from e
        try:
            yield conn
        except sqlite3.Error as e:
            raise StoreError(f"Local store {self.db_path} failed: {e}") from e
        finally:
            if conn:
                conn.close()

    # === Auth Token Operations ===

    def save_token(self, token: str) -> None:
        """Save the authorization token."""
        with self._get_connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO auth_token (id, token, saved_at) VALUES (1, ?, ?)",
                (token, datetime.now(timezone.utc).isoformat()),
            )
            conn.commit()

    def get_token(self) -> Optional[str]:
        """Get the stored authorization token."""
        with self._get_connection() as conn:
            row = conn.execute("SELECT token FROM auth_token WHERE id = 1").fetchone()
            return row["token"] if row else None

    def clear_token(self) -> None:
        """Clear the stored authorization token."""
        with self._get_connection() as conn:
            conn.execute("DELETE FROM auth_token WHERE id = 1")
            conn.commit()

    # === List Operations ===

    def load_all_lists(self) -> list[ListModel]:
        """Load every stored list, in stored order."""
        with self._get_connection() as conn:
            rows = conn.execute("SELECT data FROM lists ORDER BY seq ASC").fetchall()
        return [ListModel.from_dict(json.loads(row["data"])) for row in rows]

    def replace_all_lists(self, lists: list[ListModel]) -> None:
        """Replace the stored lists wholesale."""
        with self._get_connection() as conn:
            conn.execute("DELETE FROM lists")
            conn.executemany(
                "INSERT OR REPLACE INTO lists (list_id, seq, data) VALUES (?, ?, ?)",
                [
                    (lst.list_id, seq, json.dumps(lst.to_dict()))
                    for seq, lst in enumerate(lists)
                ],
            )
            conn.commit()
        logger.debug(f"Stored {len(lists)} lists")

    # === Task Operations ===

    def load_all_tasks(self) -> list[TaskModel]:
        """Load every stored task, in stored order."""
        with self._get_connection() as conn:
            rows = conn.execute("SELECT data FROM tasks ORDER BY seq ASC").fetchall()
        return [TaskModel.from_dict(json.loads(row["data"])) for row in rows]

    def replace_all_tasks(self, tasks: list[TaskModel]) -> None:
        """Replace the stored tasks wholesale, keeping their pending changes."""
        with self._get_connection() as conn:
            conn.execute("DELETE FROM tasks")
            conn.executemany(
                """
                INSERT OR REPLACE INTO tasks (list_id, taskseries_id, task_id, seq, data)
                VALUES (?, ?, ?, ?, ?)
                """,
                [
                    (task.list_id, task.taskseries_id, task.task_id, seq,
                     json.dumps(task.to_dict()))
                    for seq, task in enumerate(tasks)
                ],
            )
            conn.commit()
        logger.debug(f"Stored {len(tasks)} tasks")

    # === Metadata Operations ===

    def set_metadata(self, key: str, value: Optional[str]) -> None:
        """Set a metadata value; None removes it."""
        with self._get_connection() as conn:
            if value is None:
                conn.execute("DELETE FROM sync_metadata WHERE key = ?", (key,))
            else:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO sync_metadata (key, value, updated_at)
                    VALUES (?, ?, ?)
                    """,
                    (key, value, datetime.now(timezone.utc).isoformat()),
                )
            conn.commit()

    def get_metadata(self, key: str) -> Optional[str]:
        """Get a metadata value."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT value FROM sync_metadata WHERE key = ?",
                (key,),
            ).fetchone()
            return row["value"] if row else None

    def token_store(self) -> "LocalTokenStore":
        """The credential-store view of this store."""
        return LocalTokenStore(self)


class LocalTokenStore:
    """``TokenStore`` backed by a ``LocalStore``."""

    def __init__(self, store: LocalStore):
        self._store = store

    def put(self, token: str) -> None:
        self._store.save_token(token)

    def get(self) -> Optional[str]:
        return self._store.get_token()

    def remove(self) -> None:
        self._store.clear_token()
