"""
Command line interface for the milksync client.

Usage:
    python -m milksync --login            # Authorize access to your tasks
    python -m milksync --sync             # Push local edits and pull once
    python -m milksync --watch            # Keep syncing on a timer
    python -m milksync --rename ID NAME   # Edit a task offline; pushed on next sync
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from .client import RemoteClient
from .config import Settings, get_settings
from .connectivity import HttpConnectionManager
from .errors import SyncError
from .local_store import LocalStore
from .models import TaskModel
from .retrier import Retrier, SequenceOutcome
from .task_list_model import ListListModel, TaskListModel

logger = logging.getLogger(__name__)

MAX_SYNC_ROUNDS = 5


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="milksync",
        description="Offline-first task sync client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--login", action="store_true", help="Authorize access to your tasks")
    parser.add_argument("--logout", action="store_true", help="Forget the stored authorization")
    parser.add_argument("--status", action="store_true", help="Show sync status")
    parser.add_argument("--sync", action="store_true", help="Push local edits and pull once")
    parser.add_argument("--watch", action="store_true", help="Keep syncing on a timer")
    parser.add_argument("--list", action="store_true", help="Show local tasks")
    parser.add_argument("--rename", nargs=2, metavar=("TASK_ID", "NAME"), help="Rename a task")
    parser.add_argument("--due", nargs=2, metavar=("TASK_ID", "DATE"), help="Reschedule a task ('' clears)")
    parser.add_argument("--complete", metavar="TASK_ID", help="Mark a task complete")
    parser.add_argument("--delete", metavar="TASK_ID", help="Delete a task")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    return parser


class App:
    """Wires the store, client, models and retrier together."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.store = LocalStore(settings.cache_db_path)
        self.rtm = RemoteClient(self.store.token_store(), settings, store=self.store)
        self.task_list_model = TaskListModel(self.store)
        self.list_list_model = ListListModel(self.store)
        self.retrier = Retrier(self.rtm, self.task_list_model, self.list_list_model)
        self.retrier.on_task_list_model_change = self._on_change
        self.task_list_model.load_task_list()
        self.list_list_model.load_list_list()

    def _on_change(self) -> None:
        tasks = self.task_list_model.get_task_list()
        print(f"Now holding {len(tasks)} tasks in {len(self.list_list_model.get_list_list())} lists")

    def find_task(self, task_id: str) -> Optional[TaskModel]:
        for task in self.task_list_model.get_task_list():
            if task.task_id == task_id:
                return task
        return None

    def edit(self, task_id: str, field_name: str, value) -> bool:
        task = self.find_task(task_id)
        if task is None:
            print(f"No local task with ID {task_id}")
            return False
        task.set_for_push(field_name, value)
        self.task_list_model.save_task_list()
        print(f"'{task.name}': {field_name} will be pushed on next sync")
        return True

    async def login(self) -> None:
        frob = await self.rtm.fetch_frob()
        print("Open this URL and authorize access:")
        print(self.rtm.get_auth_url(frob))
        input("Press Enter once you have authorized... ")
        self.rtm.set_token(await self.rtm.fetch_token(frob))
        self.retrier.reset_pull_event_spacers()
        print("Login successful!")

    async def status(self) -> None:
        tasks = self.task_list_model.get_task_list()
        pending = self.task_list_model.tasks_with_local_changes()
        print("\n=== Sync Status ===")
        print(f"Authorized: {self.rtm.get_token() is not None}")
        print(f"Tasks: {len(tasks)} ({len(pending)} with unpushed edits)")
        print(f"Lists: {len(self.list_list_model.get_list_list())}")
        print(f"Last modified: {self.rtm.get_latest_modified() or 'never pulled'}")
        if self.rtm.get_token():
            try:
                auth = await self.rtm.check_token()
                user = auth.get("user", {})
                print(f"User: {user.get('username', '?')} (perms: {auth.get('perms', '?')})")
            except SyncError as e:
                print(f"Token check failed: {e}")

    def show_tasks(self) -> None:
        for task in self.task_list_model.get_task_list():
            flags = "!" if task.is_overdue else ("*" if task.is_due else " ")
            pending = f" [{', '.join(task.local_changes)}]" if task.local_changes else ""
            list_name = self.list_list_model.get_list_name_by_list_id(task.list_id)
            print(f"{flags} {task.task_id:>10}  {task.due or '-':<22} {task.name}  ({list_name}){pending}")

    async def sync_once(self) -> None:
        """Fire until no sequence has anything left to start."""
        manager = HttpConnectionManager(self.settings.rest_url)
        self.rtm.connection_manager = manager
        self.rtm.set_network_connectivity(await manager.probe())
        if not self.rtm.have_network_connectivity:
            print("No network connection; edits stay queued locally")
            return
        for _ in range(MAX_SYNC_ROUNDS):
            outcomes = self.retrier.fire()
            if SequenceOutcome.STARTED not in outcomes.values():
                break
            await self.retrier.drain()
        self.task_list_model.save_task_list()
        print(f"Sync finished; {len(self.task_list_model.tasks_with_local_changes())} tasks still have unpushed edits")

    async def close(self) -> None:
        await self.rtm.close()


async def run(args: argparse.Namespace, settings: Settings) -> int:
    app = App(settings)
    try:
        if args.logout:
            app.rtm.delete_token()
            print("Logged out")
        if args.login:
            await app.login()
        if args.rename:
            app.edit(args.rename[0], "name", args.rename[1])
        if args.due:
            app.edit(args.due[0], "due", args.due[1] or None)
        if args.complete:
            app.edit(args.complete, "completed", True)
        if args.delete:
            app.edit(args.delete, "deleted", True)
        if args.sync:
            await app.sync_once()
        if args.status:
            await app.status()
        if args.list:
            app.show_tasks()
        if args.watch:
            await app.retrier.run_forever()
    except SyncError as e:
        print(f"Error: {e}")
        return 1
    finally:
        await app.close()
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    # Configure logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    settings = get_settings()
    if not settings.api_key or not settings.shared_secret.get_secret_value():
        print("Set MILKSYNC_API_KEY and MILKSYNC_SHARED_SECRET first")
        return 2

    try:
        return asyncio.run(run(args, settings))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
