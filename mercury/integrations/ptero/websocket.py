"""Shard manager: one :class:`Shard` per server, sharing a callback table."""

from __future__ import annotations

import logging
from typing import Any

from mercury.events import EventHandlers

from .client import PteroClient, SessionDescriptor
from .shard import Connector, Shard, ShardState

logger = logging.getLogger(__name__)


class WebSocketManager:
    """Creates, tracks and tears down server shards.

    Session descriptors come from the Client API
    (``GET /api/client/servers/{id}/websocket``), so *client* must be built
    with a user (client) API key.
    """

    def __init__(
        self,
        client: PteroClient,
        *,
        events: EventHandlers | None = None,
        connector: Connector | None = None,
    ) -> None:
        self.client = client
        self.events = events if events is not None else EventHandlers()
        self.shards: dict[str, Shard] = {}
        self._connector = connector

    async def connect(self, *identifiers: str) -> list[Shard]:
        """Open a shard for every identifier that does not have a live one."""
        opened: list[Shard] = []
        for identifier in identifiers:
            shard = self.shards.get(identifier)
            if shard is not None and shard.status is not ShardState.CLOSED:
                logger.debug("Shard %s already active (%s)", identifier, shard.status.value)
                continue

            descriptor = await self._session_for(identifier)
            if shard is None:
                shard = Shard(
                    identifier,
                    descriptor,
                    self._session_for,
                    events=self.events,
                    connector=self._connector,
                    origin=self.client.domain,
                )
                self.shards[identifier] = shard
            else:
                shard.token = descriptor.token
            shard.connect(descriptor)
            opened.append(shard)
            logger.info("Shard %s connecting to %s", identifier, descriptor.socket)
        return opened

    async def disconnect(self, identifier: str) -> bool:
        shard = self.shards.pop(identifier, None)
        if shard is None:
            return False
        await shard.aclose()
        return True

    async def destroy(self) -> None:
        """Disconnect every shard."""
        for identifier in list(self.shards):
            await self.disconnect(identifier)
        logger.info("All shards destroyed")

    @property
    def ping(self) -> float:
        """Mean auth round-trip over shards that have measured one, or -1."""
        pings = [s.ping for s in self.shards.values() if s.ping >= 0]
        if not pings:
            return -1
        return sum(pings) / len(pings)

    def snapshot(self) -> list[dict[str, Any]]:
        return [shard.snapshot() for shard in self.shards.values()]

    async def _session_for(self, identifier: str) -> SessionDescriptor:
        return await self.client.server_websocket(identifier)
