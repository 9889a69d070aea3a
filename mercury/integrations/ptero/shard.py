"""One websocket session to a game server's daemon.

The panel hands out a short-lived token plus a socket URL per server.  The
daemon sends one priming message as soon as the socket opens; the shard
treats that first message as its cue to authenticate, so "hello" and "auth"
share a single round trip.  When the daemon reports ``token expired`` the
shard fetches a new descriptor, drops the old channel and connects again.

Uses :mod:`aiohttp` for the WebSocket transport.  Tests (and callers that
already own a transport) can inject a *connector* coroutine instead.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
import time
from typing import Any, Awaitable, Callable

import aiohttp

from mercury.events import EventHandlers

from .client import SessionDescriptor
from .packets import handle_packet

logger = logging.getLogger(__name__)

NORMAL_CLOSE_CODE = 1000
RECONNECT_CLOSE_CODE = 4009

SessionProvider = Callable[[str], Awaitable[SessionDescriptor]]
Connector = Callable[[str], Awaitable[Any]]


class ShardError(Exception):
    """Base error for shard failures."""


class ShardNotConnectedError(ShardError):
    """Raised by :meth:`Shard.send` when no channel is open."""


class ShardState(str, enum.Enum):
    CLOSED = "closed"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class Shard:
    """Websocket session for a single server.

    Parameters
    ----------
    id:
        Server identifier the session belongs to.
    descriptor:
        Initial token and socket URL.
    session_provider:
        Coroutine returning a fresh :class:`SessionDescriptor` for *id*;
        called on every reconnect.
    events:
        Callback table for ``debug``, ``raw_payload`` and the packet events
        from :mod:`.packets`.  A private table is created when omitted.
    connector:
        Coroutine ``(url) -> channel`` replacing the aiohttp transport.
    origin:
        ``Origin`` header sent on connect; daemons reject sockets whose
        origin is not the panel URL.
    """

    def __init__(
        self,
        id: str,
        descriptor: SessionDescriptor,
        session_provider: SessionProvider,
        *,
        events: EventHandlers | None = None,
        connector: Connector | None = None,
        origin: str | None = None,
    ) -> None:
        self.id = id
        self.token: str | None = descriptor.token
        self.socket_url = descriptor.socket
        self.status = ShardState.CLOSED
        self.ready_at: float | None = None
        self.last_ping_sent_at: float | None = None
        self.ping = -1
        self.events = events if events is not None else EventHandlers()

        self._session_provider = session_provider
        self._connector = connector
        self._origin = origin
        self._ws: Any = None
        self._task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._session: aiohttp.ClientSession | None = None
        self._handshaken = False

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def connect(self, descriptor: SessionDescriptor | None = None) -> bool:
        """Open a new channel.  Only valid from CLOSED or RECONNECTING;
        returns ``False`` (and does nothing) otherwise."""
        if self.status not in (ShardState.CLOSED, ShardState.RECONNECTING):
            return False
        if descriptor is not None:
            self.socket_url = descriptor.socket
        self._ws = None
        self.status = ShardState.CONNECTING
        self._task = asyncio.create_task(self._run(self.socket_url))
        return True

    async def reconnect(self) -> None:
        """Refresh the session descriptor and reconnect on a new channel."""
        if self.status is ShardState.RECONNECTING:
            self._debug("Reconnect already in progress")
            return

        self.status = ShardState.RECONNECTING
        self.ready_at = None
        self._debug("Refreshing session")
        try:
            descriptor = await self._session_provider(self.id)
        except Exception:
            ws, self._ws = self._ws, None
            self.status = ShardState.CLOSED
            if ws is not None and not ws.closed:
                await ws.close(code=NORMAL_CLOSE_CODE, message=b"reconnect failed")
            raise

        ws, self._ws = self._ws, None
        if ws is not None and not ws.closed:
            await ws.close(code=RECONNECT_CLOSE_CODE, message=b"reconnect")
        self.token = descriptor.token
        self.connect(descriptor)

    async def disconnect(self) -> None:
        """Close the session for good.  No-op if the shard never became ready."""
        if not self._handshaken:
            return

        ws, self._ws = self._ws, None
        task, self._task = self._task, None
        if ws is not None and not ws.closed:
            await ws.close(code=NORMAL_CLOSE_CODE, message=b"disconnect")
        elif task is not None and not task.done():
            task.cancel()

        self.status = ShardState.CLOSED
        self.ready_at = None
        self.last_ping_sent_at = None
        self.ping = -1
        self.token = None
        self._handshaken = False
        self._debug("Disconnected")

    async def send(self, event: str, args: Any = None) -> None:
        """Send ``{"event": event, "args": [...]}`` on the open channel."""
        if self._ws is None or self._ws.closed:
            raise ShardNotConnectedError(f"Shard {self.id} has no open channel")
        if not isinstance(args, (list, tuple)):
            args = [args]
        await self._ws.send_json({"event": event, "args": list(args)})

    async def aclose(self) -> None:
        """Disconnect, drop any half-open channel and release the transport
        session, if owned."""
        await self.disconnect()

        ws, self._ws = self._ws, None
        task, self._task = self._task, None
        if ws is not None and not ws.closed:
            await ws.close(code=NORMAL_CLOSE_CODE, message=b"shutdown")
        elif task is not None and not task.done():
            task.cancel()
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        self.status = ShardState.CLOSED
        self.ready_at = None

        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    @property
    def connected(self) -> bool:
        return self.status is ShardState.CONNECTED

    def snapshot(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "ping": self.ping,
            "ready_at": self.ready_at,
        }

    # ------------------------------------------------------------------ #
    # Channel lifecycle
    # ------------------------------------------------------------------ #

    async def _run(self, url: str) -> None:
        task = asyncio.current_task()
        try:
            ws = await self._open(url)
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as exc:
            if task is self._task:
                self._on_error(exc)
                self._on_close()
            return

        if task is not self._task:
            # Superseded by a newer connect() while the socket was opening.
            await ws.close(code=NORMAL_CLOSE_CODE, message=b"superseded")
            return

        self._ws = ws
        self._on_open()
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    await self._on_message(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    self._on_error(ws.exception())
                elif msg.type in (
                    aiohttp.WSMsgType.CLOSE,
                    aiohttp.WSMsgType.CLOSING,
                    aiohttp.WSMsgType.CLOSED,
                ):
                    break
        except (aiohttp.ClientError, ConnectionError, ShardError) as exc:
            self._on_error(exc)
        finally:
            self._on_close(ws)

    async def _open(self, url: str) -> Any:
        if self._connector is not None:
            return await self._connector(url)
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        headers = {"Origin": self._origin} if self._origin else None
        return await self._session.ws_connect(url, headers=headers)

    # ------------------------------------------------------------------ #
    # Channel callbacks
    # ------------------------------------------------------------------ #

    def _on_open(self) -> None:
        self._debug("Socket connected")

    async def _on_message(self, data: str | bytes | None) -> None:
        if not data:
            self._debug("Received a malformed packet")
            return
        try:
            packet = json.loads(data)
        except ValueError:
            self._debug("Received a malformed packet")
            return
        if not isinstance(packet, dict):
            self._debug("Received a malformed packet")
            return

        if self.status is ShardState.CONNECTING:
            self.status = ShardState.CONNECTED
            self.ready_at = time.time()
            self._handshaken = True
            self.last_ping_sent_at = time.monotonic()
            await self.send("auth", self.token)
            return

        self.events.emit("raw_payload", packet)

        event = packet.get("event")
        if event == "auth success":
            if self.last_ping_sent_at is not None:
                self.ping = round((time.monotonic() - self.last_ping_sent_at) * 1000)
        elif event == "token expiring":
            return
        elif event == "token expired":
            self._schedule_reconnect()

        handle_packet(self.events, packet, self.id)

    def _on_error(self, error: BaseException | None) -> None:
        if error is None:
            return
        logger.warning("[SHARD %s] Websocket error: %s", self.id, error)
        self._debug(f"Error received: {error}")

    def _on_close(self, ws: Any = None) -> None:
        if ws is not None and ws is not self._ws:
            self._debug("Replaced channel closed")
            return
        self._ws = None
        if self.status is ShardState.RECONNECTING:
            self._debug("Connection closed during reconnect")
            return
        self.status = ShardState.CLOSED
        self.ready_at = None
        self._debug("Connection closed")

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _schedule_reconnect(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.create_task(self._reconnect_logged())

    async def _reconnect_logged(self) -> None:
        try:
            await self.reconnect()
        except Exception as exc:  # noqa: BLE001
            logger.error("[SHARD %s] Reconnect failed: %s", self.id, exc)

    def _debug(self, message: str) -> None:
        message = f"[SHARD {self.id}] {message}"
        logger.debug("%s", message)
        self.events.emit("debug", message)
