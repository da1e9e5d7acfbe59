"""
Network connectivity detection.

A connection manager reports whether the remote service is reachable. The
client sets one up once and is told about every change through a callback.
"""

import asyncio
import logging
from typing import Callable, Optional, Protocol

import httpx

logger = logging.getLogger(__name__)

ConnectivityCallback = Callable[[bool], None]


class ConnectionManager(Protocol):
    """Reports connectivity changes to a callback once started."""

    def start(self, on_change: ConnectivityCallback) -> None: ...

    async def stop(self) -> None: ...


class HttpConnectionManager:
    """
    Polls the service with a lightweight HTTP request.

    Any HTTP response, whatever its status, means the network is up; a
    transport failure means it is down. The callback receives the first
    result and every change after that.
    """

    def __init__(
        self,
        probe_url: str,
        poll_interval: float = 30.0,
        timeout: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.probe_url = probe_url
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.is_connected: Optional[bool] = None
        self._on_change: Optional[ConnectivityCallback] = None
        self._task: Optional[asyncio.Task] = None
        self._http_client = http_client

    def start(self, on_change: ConnectivityCallback) -> None:
        """Begin polling on the running event loop."""
        self._on_change = on_change
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._poll_loop())
            logger.info(f"Connection manager polling {self.probe_url}")

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def probe(self) -> bool:
        """Check reachability once."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
        try:
            await self._http_client.head(self.probe_url)
            return True
        except httpx.RequestError as e:
            logger.debug(f"Connectivity probe failed: {e}")
            return False

    def _report(self, connected: bool) -> None:
        if connected == self.is_connected:
            return
        self.is_connected = connected
        logger.info(f"Network connectivity {'available' if connected else 'lost'}")
        if self._on_change:
            self._on_change(connected)

    async def _poll_loop(self) -> None:
        while True:
            self._report(await self.probe())
            await asyncio.sleep(self.poll_interval)
