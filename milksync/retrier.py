"""
Retries the dependent sync steps until they succeed.

Each ``fire()`` runs four independent sequences, each of which checks its
preconditions from scratch and stops at the first one not met:

- Connection manager
  - Only if no connection manager is set up yet
  - Set up connection manager

- Push changes
  - Have an internet connection
  - No requests for pushing changes already in flight
  - Be authorised to access the user's data
  - Have a timeline (otherwise fetch one and push on a later fire)
  - Push local changes

- Pull tasks
  - Not too soon after the last successful pull
  - Have an internet connection
  - No pull of tasks already in flight
  - Be authorised to access the user's data
  - Pull, merge, purge, sort and record the latest modified time

- Pull lists
  - As for tasks, with its own spacing, replacing the lists wholesale

Firing is idempotent, so it is safe on a timer, on connectivity changes and
after authorization. A failed step simply leaves things for the next fire.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Callable, Optional

from .client import NetworkRequests, RemoteClient
from .config import Settings
from .connectivity import ConnectionManager, HttpConnectionManager
from .errors import RemoteCallError, StoreError
from .rate_limiter import RateLimiter
from .task_list_model import ListListModel, TaskListModel

logger = logging.getLogger(__name__)


class SequenceOutcome(Enum):
    """What a sequence did on one fire."""
    STARTED = "started"  # Network activity was started
    WAITING = "waiting"  # A precondition is not met yet
    SKIPPED = "skipped"  # Too soon since the last pull
    NOTHING_TO_DO = "nothing_to_do"


class Retrier:
    """Fires the connection, push and pull sequences whenever asked."""

    def __init__(
        self,
        rtm: RemoteClient,
        task_list_model: Optional[TaskListModel] = None,
        list_list_model: Optional[ListListModel] = None,
        settings: Optional[Settings] = None,
        connection_manager_factory: Optional[Callable[[], ConnectionManager]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.rtm = rtm
        self.settings = settings or rtm.settings
        self.task_list_model = task_list_model
        self.list_list_model = list_list_model
        self.connection_manager_factory = connection_manager_factory or self._default_connection_manager
        self._tasks: set[asyncio.Task] = set()
        self._pulling_tasks = False
        self._pulling_lists = False
        self.pull_event_spacer = RateLimiter(self.settings.pull_tasks_interval, clock)
        self.pull_lists_event_spacer = RateLimiter(self.settings.pull_lists_interval, clock)
        rtm.add_on_network_requests_change_listener(self.on_network_requests_change)
        rtm.add_on_connectivity_change_listener(self.on_connectivity_change)

    def reset_pull_event_spacers(self) -> None:
        """Let both pulls run on the next fire, e.g. after authorization."""
        self.pull_event_spacer.reset()
        self.pull_lists_event_spacer.reset()

    def _default_connection_manager(self) -> ConnectionManager:
        return HttpConnectionManager(self.settings.rest_url, poll_interval=self.settings.fire_interval)

    def on_task_list_model_change(self) -> None:
        """Override to respond whenever the task or list collection changes."""
        pass

    def _notify_change(self) -> None:
        self.on_task_list_model_change()

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait until all work started so far (and work it starts) has finished."""
        while True:
            await asyncio.sleep(0)
            pending = self._tasks | self.rtm.outstanding_calls
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # === Fire ===

    def fire(self) -> dict[str, SequenceOutcome]:
        """Advance every sequence whose preconditions hold."""
        logger.info("Firing")
        return {
            "connection_manager": self.fire_set_up_connection_manager_sequence(),
            "push_changes": self.fire_push_changes_sequence(),
            "pull_tasks": self.fire_pull_tasks_sequence(),
            "pull_lists": self.fire_pull_lists_sequence(),
        }

    def fire_set_up_connection_manager_sequence(self) -> SequenceOutcome:
        if self.rtm.connection_manager:
            return SequenceOutcome.NOTHING_TO_DO
        logger.info("Setting up connection manager")
        self.rtm.set_up_connection_manager(self.connection_manager_factory)
        return SequenceOutcome.STARTED

    def fire_push_changes_sequence(self) -> SequenceOutcome:
        if not self.rtm.have_network_connectivity:
            logger.info("Push: need an internet connection, but can't take action")
            return SequenceOutcome.WAITING
        if self.rtm.network_requests_for_pushing_changes() > 0:
            logger.info("Push: requests for pushing changes ongoing, so won't take action")
            return SequenceOutcome.WAITING
        if not self.rtm.get_token():
            logger.info("Push: no auth token, can't go further")
            return SequenceOutcome.WAITING
        if not self.rtm.timeline:
            logger.info("Push: getting timeline")
            self.rtm.create_timeline()
            return SequenceOutcome.STARTED
        if self.task_list_model is None:
            logger.info("Push: no actions to take")
            return SequenceOutcome.NOTHING_TO_DO

        started = self.rtm.push_local_changes(self.task_list_model)
        if not started:
            return SequenceOutcome.NOTHING_TO_DO
        logger.info(f"Push: pushing {len(started)} local changes")
        return SequenceOutcome.STARTED

    def fire_pull_tasks_sequence(self) -> SequenceOutcome:
        if not self.pull_event_spacer.is_ready():
            logger.info("Pull tasks: too soon after last pull to pull tasks again")
            return SequenceOutcome.SKIPPED
        if not self.rtm.have_network_connectivity:
            logger.info("Pull tasks: need an internet connection, but can't take action")
            return SequenceOutcome.WAITING
        if self.rtm.network_requests_for_pulling_tasks() > 0 or self._pulling_tasks:
            logger.info("Pull tasks: pull already ongoing, so won't take action")
            return SequenceOutcome.WAITING
        if not self.rtm.get_token():
            logger.info("Pull tasks: no auth token, can't go further")
            return SequenceOutcome.WAITING
        if self.task_list_model is None:
            return SequenceOutcome.NOTHING_TO_DO

        self._pulling_tasks = True
        self._spawn(self._pull_tasks(self.rtm.pull_tasks()))
        return SequenceOutcome.STARTED

    def fire_pull_lists_sequence(self) -> SequenceOutcome:
        if not self.pull_lists_event_spacer.is_ready():
            logger.info("Pull lists: too soon after last pull to pull lists again")
            return SequenceOutcome.SKIPPED
        if not self.rtm.have_network_connectivity:
            logger.info("Pull lists: need an internet connection, but can't take action")
            return SequenceOutcome.WAITING
        if self.rtm.network_requests_for_pulling_lists() > 0 or self._pulling_lists:
            logger.info("Pull lists: pull already ongoing, so won't take action")
            return SequenceOutcome.WAITING
        if not self.rtm.get_token():
            logger.info("Pull lists: no auth token, can't go further")
            return SequenceOutcome.WAITING
        if self.list_list_model is None:
            return SequenceOutcome.NOTHING_TO_DO

        self._pulling_lists = True
        self._spawn(self._pull_lists(self.rtm.pull_lists()))
        return SequenceOutcome.STARTED

    # === Completions ===

    async def _pull_tasks(self, call: asyncio.Task) -> None:
        try:
            try:
                result = await call
            except RemoteCallError as e:
                logger.info(f"Pull tasks: error: {e}")
                self.rtm.error_sink(
                    f"{e}\nLast response: {self.rtm.last_response}", "Retrier.pull_tasks",
                )
                return

            model = self.task_list_model
            for merged in model.merge_batches(
                result.tasks, self.settings.merge_batch_size, full=result.full,
            ):
                logger.debug(f"Merged {merged}/{len(result.tasks)} pulled tasks")
                await asyncio.sleep(0)

            model.purge_task_list()
            model.sort()
            watermarks = [m for m in (result.latest_modified, model.get_latest_modified()) if m]
            self._save(lambda: self.rtm.set_latest_modified(max(watermarks) if watermarks else None))
            self.pull_event_spacer.have_fired()
            self._save(model.save_task_list)
            self._notify_change()
        finally:
            self._pulling_tasks = False

    async def _pull_lists(self, call: asyncio.Task) -> None:
        try:
            try:
                list_list = await call
            except RemoteCallError as e:
                logger.info(f"Pull lists: error: {e}")
                self.rtm.error_sink(
                    f"{e}\nLast response: {self.rtm.last_response}", "Retrier.pull_lists",
                )
                return

            try:
                self.list_list_model.replace_list_list(list_list)
            except StoreError as e:
                self.rtm.error_sink(str(e), "Retrier.pull_lists")
                return
            self.pull_lists_event_spacer.have_fired()
            self._notify_change()
        finally:
            self._pulling_lists = False

    def _save(self, action: Callable[[], None]) -> None:
        try:
            action()
        except StoreError as e:
            self.rtm.error_sink(str(e), "Retrier.save")

    def on_network_requests_change(self, old: NetworkRequests, new: NetworkRequests) -> None:
        """Once every push has finished, drop the tasks the server is done with."""
        # A pull in progress purges when its merge completes
        if (self.task_list_model is not None
                and not self._pulling_tasks
                and new.for_pushing_changes == 0
                and old.for_pushing_changes > 0):
            if self.task_list_model.purge_task_list():
                self._notify_change()
            self._save(self.task_list_model.save_task_list)

    def on_connectivity_change(self, connected: bool) -> None:
        if connected:
            logger.info("Connectivity regained, firing")
            asyncio.get_running_loop().call_soon(self.fire)

    # === Timer ===

    async def run_forever(self, interval: Optional[float] = None) -> None:
        """Fire on a timer until cancelled."""
        interval = interval or self.settings.fire_interval
        while True:
            try:
                self.fire()
            except Exception as e:
                logger.exception(f"Error while firing: {e}")
            await asyncio.sleep(interval)
