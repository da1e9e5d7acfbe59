"""
Signed client for the remote task service.

Every call carries ``format=json``, the API key, the authorization token when
one is held, and an ``api_sig`` signature over all of those parameters. Calls
are non-blocking: starting one returns an ``asyncio.Task`` straight away and
bumps the in-flight counter for its category, which only drops once the call
and its follow-up work have finished.

The client never retries. Failures surface as ``RemoteCallError`` subclasses
whose message is the normalized error string; retrying is left to the
``Retrier``.
"""

import asyncio
import hashlib
import logging
from collections.abc import Awaitable
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Optional

import httpx

from .config import Settings, get_settings
from .connectivity import ConnectionManager
from .errors import ProtocolError, RemoteCallError, RemoteServiceError, TransportError
from .local_store import CollectionStore, TokenStore
from .models import ListModel, TaskModel
from .task_list_model import ListListModel, TaskListModel

logger = logging.getLogger(__name__)

ErrorSink = Callable[[str, str], None]

LATEST_MODIFIED_KEY = "latest_modified"


def log_error(message: str, label: str) -> None:
    """Default error sink: log it."""
    logger.error(f"{label}: {message}")


# =============================================================================
# In-flight request tracking
# =============================================================================

class RequestCategory(Enum):
    """What an outstanding request is for."""
    PUSHING_CHANGES = "for_pushing_changes"
    PULLING_TASKS = "for_pulling_tasks"
    PULLING_LISTS = "for_pulling_lists"


@dataclass(frozen=True)
class NetworkRequests:
    """Snapshot of outstanding request counts, one per category."""
    for_pushing_changes: int = 0
    for_pulling_tasks: int = 0
    for_pulling_lists: int = 0

    def adjusted(self, category: RequestCategory, delta: int) -> "NetworkRequests":
        return replace(self, **{category.value: getattr(self, category.value) + delta})


NetworkRequestsListener = Callable[[NetworkRequests, NetworkRequests], None]


@dataclass
class PullResult:
    """Decoded ``rtm.tasks.getList`` response."""
    tasks: list[TaskModel] = field(default_factory=list)
    latest_modified: Optional[str] = None
    full: bool = False  # True unless the pull was limited by ``last_sync``


# =============================================================================
# Pushing changes
# =============================================================================

# A push builder returns the remote method and its task-specific parameters,
# or None when the field's current value needs no remote call.
PushBuilder = Callable[[TaskModel], Optional[tuple[str, dict[str, Any]]]]


def _push_name(task: TaskModel):
    return "rtm.tasks.setName", {"name": task.name}


def _push_due(task: TaskModel):
    return "rtm.tasks.setDueDate", {"due": task.due or ""}


def _push_deleted(task: TaskModel):
    if not task.deleted:
        return None
    return "rtm.tasks.delete", {}


def _push_completed(task: TaskModel):
    if task.completed:
        return "rtm.tasks.complete", {}
    return "rtm.tasks.uncomplete", {}


PUSH_BUILDERS: dict[str, PushBuilder] = {
    "name": _push_name,
    "due": _push_due,
    "deleted": _push_deleted,
    "completed": _push_completed,
}


# =============================================================================
# Remote Client
# =============================================================================

class RemoteClient:
    """Signs and issues calls to the remote task service."""

    def __init__(
        self,
        token_store: TokenStore,
        settings: Optional[Settings] = None,
        store: Optional[CollectionStore] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        error_sink: ErrorSink = log_error,
    ):
        self.settings = settings or get_settings()
        self.token_store = token_store
        self.store = store
        self.error_sink = error_sink
        self.api_key = self.settings.api_key
        self.shared_secret = self.settings.shared_secret.get_secret_value()

        self.timeline: Optional[str] = None
        self.have_network_connectivity = False
        self.connection_manager: Optional[ConnectionManager] = None
        self.last_response: Optional[str] = None

        self._http_client = http_client
        self._latest_modified: Optional[str] = None
        self._network_requests = NetworkRequests()
        self._network_requests_listeners: list[NetworkRequestsListener] = []
        self._connectivity_listeners: list[Callable[[bool], None]] = []
        self._timeline_task: Optional[asyncio.Task] = None
        self._running: set[asyncio.Task] = set()

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.settings.api_timeout),
            )
        return self._http_client

    async def close(self) -> None:
        """Cancel outstanding calls and release network resources."""
        for task in list(self._running):
            task.cancel()
        if self._running:
            await asyncio.gather(*self._running, return_exceptions=True)
        if self.connection_manager:
            await self.connection_manager.stop()
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()
        logger.info("Remote client closed")

    # === Signing ===

    def order_and_concatenate(self, params: dict[str, Any]) -> str:
        """``name + value`` for every parameter, in sorted name order, no separators."""
        return "".join(f"{name}{params[name]}" for name in sorted(params))

    def get_api_sig(self, params: dict[str, Any]) -> str:
        """MD5 hex digest of the shared secret followed by the ordered parameters."""
        payload = self.shared_secret + self.order_and_concatenate(params)
        return hashlib.md5(payload.encode("utf-8")).hexdigest()

    def add_standard_params(self, params: dict[str, Any]) -> dict[str, Any]:
        """Copy of ``params`` with format, API key, auth token (if held) and signature."""
        request_params = {name: str(value) for name, value in params.items()}
        request_params["format"] = "json"
        request_params["api_key"] = self.api_key
        token = self.get_token()
        if token:
            request_params["auth_token"] = token
        request_params["api_sig"] = self.get_api_sig(request_params)
        return request_params

    # === Calling methods ===

    def _start_counted(
        self,
        coro: Awaitable[Any],
        category: Optional[RequestCategory],
    ) -> asyncio.Task:
        """Run ``coro`` as a task counted as in flight for ``category`` until it ends."""
        task = asyncio.get_running_loop().create_task(coro)
        self._running.add(task)
        task.add_done_callback(self._running.discard)
        if category is not None:
            self._adjust_network_requests(category, 1)
            task.add_done_callback(lambda _: self._adjust_network_requests(category, -1))
        return task

    def start_call(
        self,
        method: str,
        params: Optional[dict[str, Any]] = None,
        category: Optional[RequestCategory] = None,
    ) -> asyncio.Task:
        """Start a signed call; the task's result is the ``rsp`` payload."""
        return self._start_counted(self._perform(method, params or {}), category)

    async def call_method(
        self,
        method: str,
        params: Optional[dict[str, Any]] = None,
        category: Optional[RequestCategory] = None,
    ) -> dict:
        """Call a remote method and return its ``rsp`` payload."""
        return await self.start_call(method, params, category)

    async def _perform(self, method: str, params: dict[str, Any]) -> dict:
        request_params = self.add_standard_params({**params, "method": method})
        client = await self._get_http_client()
        logger.info(f"Calling {method}")

        try:
            response = await client.get(self.settings.rest_url, params=request_params)
        except httpx.RequestError as e:
            msg = f"HTTP error: No response ({e.__class__.__name__}: {e})"
            logger.warning(msg)
            raise TransportError(msg) from e

        self.last_response = response.text
        if response.is_error:
            msg = f"HTTP error {response.status_code}: {response.reason_phrase}"
            logger.warning(msg)
            raise TransportError(msg, status_code=response.status_code)

        return self.interpret_response(response)

    @staticmethod
    def interpret_response(response: httpx.Response) -> dict:
        """Return the ``rsp`` payload of a successful envelope, else raise."""
        try:
            body = response.json()
        except ValueError as e:
            raise ProtocolError("HTTP error: No data") from e

        rsp = body.get("rsp") if isinstance(body, dict) else None
        if not isinstance(rsp, dict):
            raise ProtocolError("RTM error: No data")
        if not rsp.get("stat"):
            raise ProtocolError("RTM error: Missing data")

        if rsp["stat"] == "fail":
            err = rsp.get("err")
            if not isinstance(err, dict):
                raise RemoteServiceError(None, None)
            raise RemoteServiceError(err.get("code"), err.get("msg"))
        return rsp

    @staticmethod
    def _decode(label: str, decoder: Callable[[], Any]) -> Any:
        """Run a decoder over a payload, turning any failure into a ``ProtocolError``."""
        try:
            return decoder()
        except (KeyError, TypeError, AttributeError, ValueError) as e:
            raise ProtocolError(f"Exception {e.__class__.__name__} decoding {label}: {e}") from e

    # === In-flight counters ===

    def add_on_network_requests_change_listener(self, listener: NetworkRequestsListener) -> None:
        self._network_requests_listeners.append(listener)

    def _adjust_network_requests(self, category: RequestCategory, delta: int) -> None:
        old = self._network_requests
        new = old.adjusted(category, delta)
        self._network_requests = new
        for listener in list(self._network_requests_listeners):
            listener(old, new)

    @property
    def outstanding_calls(self) -> set[asyncio.Task]:
        """Calls and pushes that have not finished yet."""
        return set(self._running)

    @property
    def network_requests(self) -> NetworkRequests:
        return self._network_requests

    def network_requests_for_pushing_changes(self) -> int:
        return self._network_requests.for_pushing_changes

    def network_requests_for_pulling_tasks(self) -> int:
        return self._network_requests.for_pulling_tasks

    def network_requests_for_pulling_lists(self) -> int:
        return self._network_requests.for_pulling_lists

    # === Connectivity ===

    def set_up_connection_manager(self, factory: Callable[[], ConnectionManager]) -> None:
        """Create the connection manager and start listening to it."""
        self.connection_manager = factory()
        self.connection_manager.start(self.set_network_connectivity)

    def add_on_connectivity_change_listener(self, listener: Callable[[bool], None]) -> None:
        self._connectivity_listeners.append(listener)

    def set_network_connectivity(self, connected: bool) -> None:
        changed = connected != self.have_network_connectivity
        self.have_network_connectivity = connected
        if changed:
            for listener in list(self._connectivity_listeners):
                listener(connected)

    # === Authorization ===

    def get_token(self) -> Optional[str]:
        return self.token_store.get()

    def set_token(self, token: str) -> None:
        self.token_store.put(token)
        logger.info("Authorization token stored")

    def delete_token(self) -> None:
        """Forget the token; the session's timeline goes with it."""
        self.token_store.remove()
        self.timeline = None
        logger.info("Authorization token removed")

    async def fetch_frob(self) -> str:
        """Get a frob for the user to authorize."""
        rsp = await self.call_method("rtm.auth.getFrob")
        return self._decode("frob", lambda: str(rsp["frob"]))

    def get_auth_url(self, frob: str) -> str:
        """Signed URL at which the user grants access for ``frob``."""
        params = self.add_standard_params({"frob": frob, "perms": "delete"})
        return str(httpx.URL(self.settings.auth_url, params=params))

    async def fetch_token(self, frob: str) -> str:
        """Exchange an authorized frob for an authorization token."""
        rsp = await self.call_method("rtm.auth.getToken", {"frob": frob})
        return self._decode("auth token", lambda: str(rsp["auth"]["token"]))

    async def check_token(self) -> dict:
        """Details of the held token (including the user) as the service sees them."""
        rsp = await self.call_method("rtm.auth.checkToken")
        return self._decode("auth", lambda: dict(rsp["auth"]))

    # === Timeline ===

    def create_timeline(self) -> asyncio.Task:
        """Fetch a timeline in the background; only one fetch runs at a time."""
        if self._timeline_task is not None and not self._timeline_task.done():
            return self._timeline_task
        logger.info("Getting timeline")
        self._timeline_task = self._start_counted(
            self._receive_timeline(), RequestCategory.PUSHING_CHANGES,
        )
        return self._timeline_task

    async def _receive_timeline(self) -> Optional[str]:
        try:
            rsp = await self._perform("rtm.timelines.create", {})
            self.timeline = self._decode("timeline", lambda: str(rsp["timeline"]))
        except RemoteCallError as e:
            self.error_sink(str(e), "RemoteClient.create_timeline")
            return None
        logger.info(f"Got timeline '{self.timeline}'")
        return self.timeline

    # === Push ===

    def push_local_change(self, task: TaskModel, field_name: str) -> Optional[asyncio.Task]:
        """
        Push one pending field of a task.

        Nothing happens without an auth token. Without a timeline a timeline
        fetch starts instead and the push waits for a later pass. Returns the
        push task, or None if nothing was sent. The task's result is True
        once the field is confirmed; an edit made while the call was in flight
        stays pending.
        """
        logger.info(f"Pushing '{field_name}' for task '{task.name}'")

        if not self.get_token():
            logger.info("No auth token so won't push")
            return None

        if not self.timeline:
            logger.info("No timeline so won't push, but will try to get new timeline")
            self.create_timeline()
            return None

        builder = PUSH_BUILDERS.get(field_name)
        if builder is None:
            logger.warning(f"No method defined for field '{field_name}'")
            return None

        operation = builder(task)
        if operation is None:
            logger.info(f"Nothing to send for '{field_name}' on task '{task.name}'")
            task.mark_not_for_push(field_name)
            return None

        method, specific = operation
        sent = getattr(task, field_name)
        params = {
            "list_id": task.list_id,
            "taskseries_id": task.taskseries_id,
            "task_id": task.task_id,
            "timeline": self.timeline,
            **specific,
        }
        return self._start_counted(
            self._push_and_confirm(task, field_name, sent, method, params),
            RequestCategory.PUSHING_CHANGES,
        )

    async def _push_and_confirm(
        self,
        task: TaskModel,
        field_name: str,
        sent: Any,
        method: str,
        params: dict[str, Any],
    ) -> bool:
        try:
            await self._perform(method, params)
        except RemoteCallError as e:
            logger.warning(f"Failed to push '{field_name}' for task '{task.name}': {e}")
            return False
        if getattr(task, field_name) != sent:
            logger.info(f"'{field_name}' of task '{task.name}' was edited again while pushing")
            return False
        task.mark_not_for_push(field_name)
        logger.info(f"Pushed '{field_name}' for task '{task.name}'")
        return True

    def push_local_changes(self, task_list_model: TaskListModel) -> list[asyncio.Task]:
        """Push every pending field of every task that has any."""
        started = []
        for task in task_list_model.tasks_with_local_changes():
            for field_name in list(task.local_changes):
                push = self.push_local_change(task, field_name)
                if push is not None:
                    started.append(push)
        return started

    # === Pull ===

    def get_latest_modified(self) -> Optional[str]:
        if self.store is not None:
            return self.store.get_metadata(LATEST_MODIFIED_KEY)
        return self._latest_modified

    def set_latest_modified(self, latest_modified: Optional[str]) -> None:
        if self.store is not None:
            self.store.set_metadata(LATEST_MODIFIED_KEY, latest_modified)
        self._latest_modified = latest_modified

    def get_list_parameters(self) -> dict[str, str]:
        """Only changes since the watermark if there is one, else all incomplete tasks."""
        latest_modified = self.get_latest_modified()
        if latest_modified:
            return {"last_sync": latest_modified}
        return {"filter": "status:incomplete"}

    def pull_tasks(self) -> asyncio.Task:
        """Start pulling tasks; the task's result is a ``PullResult``."""
        logger.info("Pulling tasks")
        params = self.get_list_parameters()
        return self._start_counted(
            self._receive_tasks(params), RequestCategory.PULLING_TASKS,
        )

    async def _receive_tasks(self, params: dict[str, str]) -> PullResult:
        rsp = await self._perform("rtm.tasks.getList", params)
        tasks = self._decode("tasks", lambda: TaskListModel.object_to_task_list({"rsp": rsp}))
        modified = [task.modified for task in tasks if task.modified]
        return PullResult(
            tasks=tasks,
            latest_modified=max(modified) if modified else None,
            full="last_sync" not in params,
        )

    def pull_lists(self) -> asyncio.Task:
        """Start pulling lists; the task's result is a list of ``ListModel``."""
        logger.info("Pulling lists")
        return self._start_counted(self._receive_lists(), RequestCategory.PULLING_LISTS)

    async def _receive_lists(self) -> list[ListModel]:
        rsp = await self._perform("rtm.lists.getList", {})
        return self._decode("lists", lambda: ListListModel.object_to_list_list({"rsp": rsp}))
