"""Node status poller.

Checks a fixed list of panel nodes on a timer and reports reachability
transitions (``connect`` / ``disconnect``) plus an ``interval`` snapshot of
each node's attributes.  Checks within a cycle are strictly sequential with a
short pause between nodes, to keep load on the panel bounded.

Uses httpx for async HTTP.  The repeating cycle is an :class:`asyncio.Task`,
so it never keeps the process alive on its own; owners stop it with
:meth:`NodeStatus.close` or :meth:`NodeStatus.shutdown`.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, NoReturn

import httpx

from mercury.events import EventHandlers

from . import endpoints
from .casing import camel_case
from .client import USER_AGENT

logger = logging.getLogger(__name__)

MIN_CALL_INTERVAL = 10_000
MAX_CALL_INTERVAL = 43_200_000
DEFAULT_NEXT_INTERVAL = 5_000

_DOMAIN_RE = re.compile(
    r"^https?://"
    r"(?:localhost:\d{1,5}"
    r"|(?!localhost(?:[:/]|$))[\w.\-]{3,256}(?::\d{1,5})?)"
    r"/?$",
    re.IGNORECASE,
)


# ------------------------------------------------------------------ #
# Errors
# ------------------------------------------------------------------ #

class NodeStatusError(Exception):
    """Base error for the status poller.  Every fatal condition is one."""


class StatusConfigError(NodeStatusError, ValueError):
    """Invalid poller options."""


class DomainFormatError(StatusConfigError):
    pass


class NodeIdTypeError(StatusConfigError, TypeError):
    pass


class IntervalRangeError(StatusConfigError):
    pass


class StatusAlreadyRunningError(NodeStatusError):
    pass


class StatusAuthError(NodeStatusError):
    """The panel rejected the API key (401) or its permissions (403)."""


class StatusUnavailableError(NodeStatusError):
    """The Application API did not answer like a panel."""


class RetryLimitExceededError(NodeStatusError):
    pass


# ------------------------------------------------------------------ #
# Options
# ------------------------------------------------------------------ #

@dataclass
class StatusOptions:
    """Poller configuration, validated on construction.

    Intervals are in milliseconds.
    """

    domain: str
    auth: str
    nodes: list[int] = field(default_factory=list)
    call_interval: int = 30_000
    next_interval: int = DEFAULT_NEXT_INTERVAL
    retry_limit: int = 0

    def __post_init__(self) -> None:
        if not isinstance(self.domain, str) or not _DOMAIN_RE.match(self.domain):
            raise DomainFormatError(
                "Domain URL must start with 'http://' or 'https://' and "
                "must be bound to a port if using localhost."
            )
        self.domain = self.domain.rstrip("/")

        self.nodes = list(self.nodes)
        if any(isinstance(i, bool) or not isinstance(i, int) for i in self.nodes):
            raise NodeIdTypeError("Node IDs must be integers only.")

        if not MIN_CALL_INTERVAL <= self.call_interval <= MAX_CALL_INTERVAL:
            raise IntervalRangeError("Call interval must be between 10 seconds and 12 hours.")

        if self.next_interval is None:
            self.next_interval = DEFAULT_NEXT_INTERVAL
        if self.next_interval < 0:
            raise IntervalRangeError("Next interval cannot be negative.")
        if self.next_interval >= self.call_interval:
            raise IntervalRangeError("Next interval must be less than the call interval.")

        if self.retry_limit is None:
            self.retry_limit = 0
        if isinstance(self.retry_limit, bool) or not isinstance(self.retry_limit, int) or self.retry_limit < 0:
            raise StatusConfigError("Retry limit must be a non-negative integer.")


# ------------------------------------------------------------------ #
# Poller
# ------------------------------------------------------------------ #

class NodeStatus:
    """Periodic reachability poller for panel nodes.

    Events (subscribe with :meth:`on`):

    - ``debug(message)``
    - ``connect(node_id)``: a node became reachable
    - ``disconnect(node_id)``: a previously reachable node returned 404
    - ``interval(attributes)``: camelCased node attributes, every check

    ``on_connect``, ``on_disconnect`` and ``on_interval`` may also be set to a
    single callable each.
    """

    def __init__(
        self,
        options: StatusOptions,
        *,
        client: httpx.AsyncClient | None = None,
        events: EventHandlers | None = None,
    ) -> None:
        self.options = options
        self.headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": f"NodeStatus {USER_AGENT}",
            "Authorization": f"Bearer {options.auth}",
        }
        self.events = events if events is not None else EventHandlers()

        self.on_connect: Callable[[int], Any] | None = None
        self.on_disconnect: Callable[[int], Any] | None = None
        self.on_interval: Callable[[dict], Any] | None = None

        self.ping = -1
        self.retry_count = 0
        self.ready_at: float | None = None
        self.snapshots: dict[int, dict] = {}

        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=15.0)
        self._connected: set[int] = set()
        self._task: asyncio.Task | None = None
        self._cycle_running = False
        self._closed = False
        self._stopped = asyncio.Event()
        self._failure: Exception | None = None

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def on(self, event: str, callback: Callable[..., Any] | None = None) -> Any:
        return self.events.on(event, callback)

    @property
    def running(self) -> bool:
        return self.ready_at is not None

    @property
    def connected(self) -> frozenset[int]:
        return frozenset(self._connected)

    async def connect(self) -> None:
        """Check the panel, run a first cycle, then keep polling."""
        if self.ready_at is not None:
            raise StatusAlreadyRunningError("Process already running.")

        self._closed = False
        self._failure = None
        self._stopped.clear()
        self.retry_count = 0
        self._connected.clear()
        self.snapshots.clear()
        self._debug("Starting connection to API")
        await self._ping()
        await self.handle_next()

        self._task = asyncio.create_task(self._loop())
        self.ready_at = time.time()
        logger.info(
            "Node status polling %d node(s) every %d ms",
            len(self.options.nodes),
            self.options.call_interval,
        )

    async def handle_next(self) -> bool:
        """Run one cycle over every watched node, in order.

        Returns ``False`` without fetching when a cycle is already running.
        """
        if self._cycle_running:
            self._debug("Cycle already in progress, skipping")
            return False

        self._cycle_running = True
        try:
            nodes = self.options.nodes
            for index, node_id in enumerate(nodes):
                if self._closed:
                    return True
                await self.request(node_id)
                if index + 1 < len(nodes):
                    await asyncio.sleep(self.options.next_interval / 1000)
            self.retry_count = 0
        finally:
            self._cycle_running = False
        return True

    async def request(self, node_id: int) -> None:
        """Fetch one node, retrying transient failures on the same ID."""
        path = endpoints.node(node_id)
        while True:
            self._debug(f"Fetching: {path}")
            status_code: int | None
            try:
                response = await self._client.get(
                    f"{self.options.domain}{path}", headers=self.headers
                )
                status_code = response.status_code
            except httpx.TransportError as exc:
                logger.warning("Node %d fetch failed: %s", node_id, exc)
                response = None
                status_code = None

            if self._closed:
                return

            if response is not None and response.is_success:
                break

            if status_code in (401, 403):
                self._terminate(StatusAuthError(_auth_message(status_code)))

            if status_code == 404:
                if node_id in self._connected:
                    self._connected.discard(node_id)
                    self.snapshots.pop(node_id, None)
                    self._emit("disconnect", self.on_disconnect, node_id)
                return

            if self.retry_count >= self.options.retry_limit:
                self._terminate(RetryLimitExceededError("[NS] Maximum retry limit exceeded."))

            self.retry_count += 1
            self._debug("Attempting retry fetch")

        try:
            body = response.json()
        except ValueError:
            body = {}
        attributes = camel_case(body.get("attributes", {}) if isinstance(body, dict) else {})

        if node_id not in self._connected:
            self._connected.add(node_id)
            self._emit("connect", self.on_connect, node_id)

        self.snapshots[node_id] = attributes
        self._emit("interval", self.on_interval, attributes)

    def close(self, message: str | None = None, error: bool = False) -> None:
        """Stop polling and drop every listener.

        No-op when the poller was never started.  With ``error=True`` and a
        *message*, raises :class:`NodeStatusError` after tearing down.
        """
        if self.ready_at is None:
            return
        self._teardown()
        if error and message:
            raise NodeStatusError(message)

    async def shutdown(self) -> None:
        """Close the poller and release the HTTP client it created.

        Meant to be wired to the owning process's signal handling.
        """
        self.close()
        if self._owns_client:
            await self._client.aclose()

    async def wait_closed(self) -> None:
        """Block until the poller stops; re-raise a fatal background failure."""
        await self._stopped.wait()
        if self._failure is not None:
            raise self._failure

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    async def _ping(self) -> None:
        start = time.monotonic()
        url = f"{self.options.domain}{endpoints.APPLICATION}"
        try:
            response = await self._client.get(url, headers=self.headers)
        except httpx.TransportError as exc:
            self._terminate(StatusUnavailableError(f"[NS] Cannot reach {url}: {exc}"))

        if response.status_code in (401, 403):
            self._terminate(StatusAuthError(_auth_message(response.status_code)))

        self.ping = round((time.monotonic() - start) * 1000)
        if response.is_success:
            return
        try:
            data = response.json()
        except ValueError:
            data = None
        # The Application API root answers with the panel's error envelope.
        if isinstance(data, dict) and data.get("errors"):
            return
        self._terminate(StatusUnavailableError("[NS:404] Application API is unavailable."))

    async def _loop(self) -> None:
        interval = self.options.call_interval / 1000
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + interval
        try:
            while not self._closed:
                await asyncio.sleep(max(0.0, next_tick - loop.time()))
                if self._closed:
                    break
                try:
                    await self.handle_next()
                except NodeStatusError as exc:
                    logger.error("Node status stopped: %s", exc)
                    self._failure = exc
                    break
                except Exception as exc:
                    logger.exception("Node status cycle failed")
                    self._failure = exc
                    self._teardown()
                    break

                next_tick += interval
                now = loop.time()
                if next_tick <= now:
                    skipped = int((now - next_tick) // interval) + 1
                    self._debug(f"Cycle overran, skipping {skipped} tick(s)")
                    next_tick += skipped * interval
        finally:
            self._stopped.set()

    def _terminate(self, exc: NodeStatusError) -> NoReturn:
        logger.error("%s", exc)
        self._failure = exc
        if self.ready_at is not None:
            self._teardown()
        else:
            self._stopped.set()
        raise exc

    def _teardown(self) -> None:
        self._debug("Closing connection")
        self._closed = True
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
        self.events.clear()
        self._connected.clear()
        self.snapshots.clear()
        self.retry_count = 0
        self.ready_at = None
        if task is not asyncio.current_task():
            self._stopped.set()

    def _emit(self, event: str, callback: Callable[..., Any] | None, arg: Any) -> None:
        self.events.emit(event, arg)
        if callback is not None:
            try:
                callback(arg)
            except Exception:  # noqa: BLE001
                logger.exception("Error in on_%s callback", event)

    def _debug(self, message: str) -> None:
        message = f"[NS] {message}"
        logger.debug("%s", message)
        self.events.emit("debug", message)


def _auth_message(status_code: int | None) -> str:
    if status_code == 401:
        return "[NS:401] Invalid API credentials. Contact your panel administrator."
    return "[NS:403] Missing access."
