"""
Test doubles for the remote service and the client's collaborators.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional, Union

import httpx


# =============================================================================
# Fake remote service
# =============================================================================

Reply = Union[
    dict,
    httpx.Response,
    Callable[[httpx.Request], Union[httpx.Response, Awaitable[httpx.Response]]],
]


class FakeService:
    """
    Answers signed REST calls from canned replies, keyed by method name.

    A reply is an ``rsp`` payload dict, a ready ``httpx.Response``, or a
    callable taking the request, which may be a coroutine function. Unknown
    methods answer ``{"stat": "ok"}``. Every request's query parameters are
    recorded in ``calls``.
    """

    def __init__(self):
        self.calls: list[dict[str, str]] = []
        self.replies: dict[str, Reply] = {
            "rtm.timelines.create": {"stat": "ok", "timeline": "12345"},
            "rtm.lists.getList": lists_rsp(),
            "rtm.tasks.getList": tasks_rsp(),
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        params = dict(request.url.params)
        self.calls.append(params)
        reply = self.replies.get(params.get("method"), {"stat": "ok"})
        if callable(reply):
            return reply(request)
        if isinstance(reply, httpx.Response):
            return reply
        return httpx.Response(200, json={"rsp": reply})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def methods(self) -> list[str]:
        return [call.get("method") for call in self.calls]

    def calls_to(self, method: str) -> list[dict[str, str]]:
        return [call for call in self.calls if call.get("method") == method]


def fail_with(code: str, msg: str) -> dict:
    return {"stat": "fail", "err": {"code": code, "msg": msg}}


def connection_refused(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("Connection refused", request=request)


def delayed(rsp: dict, turns: int):
    """Reply with ``rsp`` after letting the event loop run ``turns`` times."""
    async def respond(request: httpx.Request) -> httpx.Response:
        for _ in range(turns):
            await asyncio.sleep(0)
        return httpx.Response(200, json={"rsp": rsp})
    return respond


# =============================================================================
# Response builders
# =============================================================================

def task_series(
    series_id: str,
    task_id: str,
    name: str,
    due: str = "",
    modified: str = "2009-12-01T10:00:00Z",
    completed: str = "",
    deleted: str = "",
) -> dict:
    return {
        "id": series_id,
        "name": name,
        "modified": modified,
        "task": {"id": task_id, "due": due, "completed": completed, "deleted": deleted},
    }


def tasks_rsp(*lists: dict) -> dict:
    """``rtm.tasks.getList`` payload; each argument is a ``task_list(...)``."""
    if not lists:
        return {"stat": "ok", "tasks": {"rev": "r1"}}
    return {"stat": "ok", "tasks": {"rev": "r1", "list": list(lists)}}


def task_list(list_id: str, *series: dict, deleted: Optional[list[dict]] = None) -> dict:
    list_obj: dict[str, Any] = {"id": list_id}
    if series:
        list_obj["taskseries"] = list(series)
    if deleted:
        list_obj["deleted"] = {"taskseries": deleted}
    return list_obj


def lists_rsp(*lists: dict) -> dict:
    if not lists:
        lists = (
            {"id": "100", "name": "Inbox", "deleted": "0", "locked": "1",
             "archived": "0", "position": "-1", "smart": "0"},
        )
    return {"stat": "ok", "lists": {"list": list(lists)}}


# =============================================================================
# Collaborators
# =============================================================================

class MemoryTokenStore:
    """TokenStore held in memory."""

    def __init__(self, token: Optional[str] = None):
        self.token = token

    def put(self, token: str) -> None:
        self.token = token

    def get(self) -> Optional[str]:
        return self.token

    def remove(self) -> None:
        self.token = None


class FakeConnectionManager:
    """Connection manager whose connectivity the test sets by hand."""

    def __init__(self):
        self.on_change: Optional[Callable[[bool], None]] = None
        self.started = 0
        self.stopped = False

    def start(self, on_change: Callable[[bool], None]) -> None:
        self.on_change = on_change
        self.started += 1

    async def stop(self) -> None:
        self.stopped = True

    def report(self, connected: bool) -> None:
        self.on_change(connected)


class FakeClock:
    """Monotonic clock the test moves forward."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
