"""Tests for websocket shards, packet dispatch and the shard manager."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from mercury.events import EventHandlers
from mercury.integrations.ptero.client import SessionDescriptor
from mercury.integrations.ptero.packets import handle_packet
from mercury.integrations.ptero.shard import (
    RECONNECT_CLOSE_CODE,
    Shard,
    ShardNotConnectedError,
    ShardState,
)
from mercury.integrations.ptero.websocket import WebSocketManager


# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #

def _make_ws_msg(data: str) -> MagicMock:
    """Create a mock aiohttp WSMessage with TEXT type."""
    msg = MagicMock()
    msg.type = aiohttp.WSMsgType.TEXT
    msg.data = data
    return msg


class FakeWS:
    """In-memory channel: the test pushes frames, the shard reads them."""

    def __init__(self) -> None:
        self._frames: asyncio.Queue = asyncio.Queue()
        self.sent: list[dict] = []
        self.closed = False
        self.close_code: int | None = None

    def push(self, packet: dict | str) -> None:
        data = packet if isinstance(packet, str) else json.dumps(packet)
        self._frames.put_nowait(_make_ws_msg(data))

    async def send_json(self, data: dict) -> None:
        self.sent.append(data)

    async def close(self, *, code: int = 1000, message: bytes = b"") -> None:
        self.closed = True
        self.close_code = code
        self._frames.put_nowait(None)

    def exception(self):
        return None

    def __aiter__(self):
        return self

    async def __anext__(self):
        msg = await self._frames.get()
        if msg is None:
            raise StopAsyncIteration
        return msg


class FakeConnector:
    def __init__(self, *channels: FakeWS) -> None:
        self._channels = list(channels)
        self.urls: list[str] = []

    async def __call__(self, url: str) -> FakeWS:
        self.urls.append(url)
        return self._channels.pop(0)


async def _settle() -> None:
    for _ in range(10):
        await asyncio.sleep(0)


def _shard(connector, provider=None, events=None) -> Shard:
    return Shard(
        "1a7ce997",
        SessionDescriptor("tok-1", "wss://node1.example.com/ws"),
        provider or AsyncMock(return_value=SessionDescriptor("tok-2", "wss://node1.example.com/ws2")),
        events=events,
        connector=connector,
    )


async def _ready_shard(events=None, provider=None):
    ws = FakeWS()
    connector = FakeConnector(ws)
    shard = _shard(connector, provider=provider, events=events)
    shard.connect()
    await _settle()
    ws.push({"event": "daemon message", "args": ["hello"]})
    await _settle()
    return shard, ws, connector


# ------------------------------------------------------------------ #
# Shard lifecycle
# ------------------------------------------------------------------ #

class TestConnect:
    async def test_closed_to_connecting(self):
        connector = FakeConnector(FakeWS())
        shard = _shard(connector)
        assert shard.status is ShardState.CLOSED
        assert shard.connect() is True
        assert shard.status is ShardState.CONNECTING
        await _settle()
        assert connector.urls == ["wss://node1.example.com/ws"]

    async def test_connect_is_idempotent(self):
        connector = FakeConnector(FakeWS(), FakeWS())
        shard = _shard(connector)
        shard.connect()
        assert shard.connect() is False
        await _settle()
        assert len(connector.urls) == 1

    async def test_first_message_authenticates(self):
        shard, ws, _ = await _ready_shard()
        assert shard.status is ShardState.CONNECTED
        assert shard.last_ping_sent_at is not None
        assert shard.ready_at is not None
        assert ws.sent == [{"event": "auth", "args": ["tok-1"]}]

    async def test_auth_success_measures_ping(self):
        events = EventHandlers()
        raw = []
        events.on("raw_payload", raw.append)
        shard, ws, _ = await _ready_shard(events=events)
        assert shard.ping == -1

        ws.push({"event": "auth success"})
        await _settle()

        assert shard.ping >= 0
        assert raw == [{"event": "auth success"}]

    async def test_first_message_not_forwarded(self):
        events = EventHandlers()
        raw = []
        events.on("raw_payload", raw.append)
        await _ready_shard(events=events)
        assert raw == []

    async def test_connection_failure_closes(self):
        async def refuse(url):
            raise aiohttp.ClientConnectionError("refused")

        events = EventHandlers()
        debug = []
        events.on("debug", debug.append)
        shard = _shard(refuse, events=events)
        shard.connect()
        await _settle()

        assert shard.status is ShardState.CLOSED
        assert any("Error received" in m for m in debug)

    async def test_channel_closing_during_auth(self):
        ws = FakeWS()
        events = EventHandlers()
        debug = []
        events.on("debug", debug.append)
        shard = _shard(FakeConnector(ws), events=events)
        shard.connect()
        await _settle()
        task = shard._task

        # Channel reports closed while the priming frame is still queued.
        ws.closed = True
        ws.push({"event": "daemon message", "args": ["hello"]})
        await _settle()

        assert task.done()
        assert task.exception() is None
        assert shard.status is ShardState.CLOSED
        assert any("no open channel" in m for m in debug)


class TestMessages:
    @pytest.mark.parametrize("frame", ["", "not json", "[1, 2]"])
    async def test_malformed_packets_dropped(self, frame):
        events = EventHandlers()
        debug = []
        events.on("debug", debug.append)
        ws = FakeWS()
        shard = _shard(FakeConnector(ws), events=events)
        shard.connect()
        await _settle()

        ws.push(frame)
        await _settle()

        assert shard.status is ShardState.CONNECTING
        assert ws.sent == []
        assert "[SHARD 1a7ce997] Received a malformed packet" in debug

    async def test_packets_dispatched(self):
        events = EventHandlers()
        updates = []
        events.on("status_update", lambda sid, state: updates.append((sid, state)))
        _, ws, _ = await _ready_shard(events=events)

        ws.push({"event": "status", "args": ["running"]})
        await _settle()

        assert updates == [("1a7ce997", "running")]

    async def test_token_expiring_ignored(self):
        provider = AsyncMock()
        shard, ws, _ = await _ready_shard(provider=provider)

        ws.push({"event": "token expiring"})
        await _settle()

        provider.assert_not_awaited()
        assert shard.status is ShardState.CONNECTED

    async def test_remote_close(self):
        shard, ws, _ = await _ready_shard()
        await ws.close(code=1006)
        await _settle()

        assert shard.status is ShardState.CLOSED
        assert shard.ready_at is None


class TestReconnect:
    async def test_token_expired_reconnects(self):
        ws1, ws2 = FakeWS(), FakeWS()
        connector = FakeConnector(ws1, ws2)
        statuses = []
        holder: dict[str, Shard] = {}

        async def provider(shard_id):
            shard = holder["shard"]
            statuses.append(shard.status)
            # A second trigger while refreshing is a no-op.
            await shard.reconnect()
            return SessionDescriptor("tok-2", "wss://node1.example.com/ws2")

        shard = _shard(connector, provider=provider)
        holder["shard"] = shard
        shard.connect()
        await _settle()
        ws1.push({"event": "daemon message", "args": ["hello"]})
        await _settle()
        assert shard.status is ShardState.CONNECTED

        ws1.push({"event": "token expired"})
        await _settle()
        await shard._reconnect_task

        assert statuses == [ShardState.RECONNECTING]
        assert ws1.closed and ws1.close_code == RECONNECT_CLOSE_CODE
        assert shard.token == "tok-2"
        assert shard.status is ShardState.CONNECTING

        await _settle()
        assert connector.urls[-1] == "wss://node1.example.com/ws2"
        # The replaced channel's close must not mark the new session closed.
        assert shard.status is ShardState.CONNECTING

        ws2.push({"event": "daemon message", "args": ["hello"]})
        await _settle()
        assert ws2.sent == [{"event": "auth", "args": ["tok-2"]}]

    async def test_reconnect_while_reconnecting_is_noop(self):
        provider = AsyncMock()
        shard = _shard(FakeConnector(), provider=provider)
        shard.status = ShardState.RECONNECTING
        await shard.reconnect()
        provider.assert_not_awaited()

    async def test_provider_failure_closes(self):
        provider = AsyncMock(side_effect=RuntimeError("panel down"))
        shard, ws, _ = await _ready_shard(provider=provider)

        with pytest.raises(RuntimeError):
            await shard.reconnect()

        assert shard.status is ShardState.CLOSED
        assert ws.closed


class TestDisconnect:
    async def test_never_ready_is_noop(self):
        ws = FakeWS()
        shard = _shard(FakeConnector(ws))
        shard.connect()
        await _settle()

        await shard.disconnect()

        assert not ws.closed
        assert shard.status is ShardState.CONNECTING
        assert shard.token == "tok-1"

    async def test_disconnect_clears_session(self):
        shard, ws, _ = await _ready_shard()
        ws.push({"event": "auth success"})
        await _settle()

        await shard.disconnect()
        await _settle()

        assert ws.closed and ws.close_code == 1000
        assert shard.status is ShardState.CLOSED
        assert shard.ready_at is None
        assert shard.last_ping_sent_at is None
        assert shard.ping == -1
        assert shard.token is None


class TestSend:
    async def test_send_without_channel_raises(self):
        shard = _shard(FakeConnector())
        with pytest.raises(ShardNotConnectedError):
            await shard.send("set state", "start")

    async def test_scalar_args_wrapped(self):
        shard, ws, _ = await _ready_shard()
        await shard.send("set state", "start")
        await shard.send("send command", ["say hi"])
        assert ws.sent[-2:] == [
            {"event": "set state", "args": ["start"]},
            {"event": "send command", "args": ["say hi"]},
        ]


# ------------------------------------------------------------------ #
# Packet dispatch
# ------------------------------------------------------------------ #

class TestHandlePacket:
    def test_console_output(self):
        events = EventHandlers()
        lines = []
        events.on("server_output", lambda sid, line: lines.append((sid, line)))
        name = handle_packet(events, {"event": "console output", "args": ["[Server] Done"]}, "abc")
        assert name == "server_output"
        assert lines == [("abc", "[Server] Done")]

    def test_stats_decoded(self):
        events = EventHandlers()
        stats = []
        events.on("stats_update", lambda sid, s: stats.append(s))
        payload = json.dumps({"memory_bytes": 1024, "cpu_absolute": 1.5, "network": {"rx_bytes": 7}})
        handle_packet(events, {"event": "stats", "args": [payload]}, "abc")
        assert stats == [{"memoryBytes": 1024, "cpuAbsolute": 1.5, "network": {"rxBytes": 7}}]

    def test_unknown_event(self):
        events = EventHandlers()
        assert handle_packet(events, {"event": "mystery", "args": []}, "abc") is None

    def test_missing_args(self):
        events = EventHandlers()
        got = []
        events.on("install_completed", lambda sid, p: got.append(p))
        handle_packet(events, {"event": "install completed"}, "abc")
        assert got == [None]


# ------------------------------------------------------------------ #
# Shard manager
# ------------------------------------------------------------------ #

def _manager_client(*descriptors: SessionDescriptor) -> MagicMock:
    client = MagicMock()
    client.domain = "https://panel.test"
    client.server_websocket = AsyncMock(side_effect=list(descriptors))
    return client


class TestWebSocketManager:
    async def test_connect_creates_shards(self):
        client = _manager_client(
            SessionDescriptor("t-a", "wss://n/a"),
            SessionDescriptor("t-b", "wss://n/b"),
        )
        connector = FakeConnector(FakeWS(), FakeWS())
        manager = WebSocketManager(client, connector=connector)

        opened = await manager.connect("a", "b")
        await _settle()

        assert [s.id for s in opened] == ["a", "b"]
        assert manager.shards["a"].status is ShardState.CONNECTING
        assert manager.shards["a"].events is manager.events
        assert connector.urls == ["wss://n/a", "wss://n/b"]

    async def test_active_shard_not_reopened(self):
        client = _manager_client(SessionDescriptor("t-a", "wss://n/a"))
        manager = WebSocketManager(client, connector=FakeConnector(FakeWS()))
        await manager.connect("a")
        assert await manager.connect("a") == []
        assert client.server_websocket.await_count == 1

    async def test_disconnect_and_destroy(self):
        client = _manager_client(SessionDescriptor("t-a", "wss://n/a"), SessionDescriptor("t-b", "wss://n/b"))
        manager = WebSocketManager(client, connector=FakeConnector(FakeWS(), FakeWS()))
        await manager.connect("a", "b")
        assert await manager.disconnect("a") is True
        assert await manager.disconnect("missing") is False
        await manager.destroy()
        assert manager.shards == {}

    async def test_ping_average(self):
        manager = WebSocketManager(_manager_client())
        assert manager.ping == -1
        for sid, ping in (("a", 40), ("b", 60), ("c", -1)):
            shard = _shard(FakeConnector())
            shard.id = sid
            shard.ping = ping
            manager.shards[sid] = shard
        assert manager.ping == 50
