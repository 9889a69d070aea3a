"""Dispatch of panel websocket packets to named events.

Every packet has the shape ``{"event": str, "args": [...]}``.  Callbacks
receive ``(shard_id, payload)`` where *payload* is the first argument, or
the decoded stats object for ``stats`` packets.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from mercury.events import EventHandlers

from .casing import camel_case

logger = logging.getLogger(__name__)

PACKET_EVENTS: dict[str, str] = {
    "auth success": "auth_success",
    "status": "status_update",
    "console output": "server_output",
    "daemon message": "daemon_message",
    "install started": "install_started",
    "install output": "install_output",
    "install completed": "install_completed",
    "stats": "stats_update",
    "backup completed": "backup_completed",
    "transfer logs": "transfer_logs",
    "transfer status": "transfer_status",
    "daemon error": "daemon_error",
    "jwt error": "jwt_error",
    "token expired": "token_expired",
}


def handle_packet(events: EventHandlers, data: dict, shard_id: str) -> str | None:
    """Emit the event matching *data*; returns its name, or ``None`` when the
    packet is not recognised."""
    name = PACKET_EVENTS.get(data.get("event", ""))
    if name is None:
        logger.debug("[SHARD %s] Unhandled packet event: %r", shard_id, data.get("event"))
        return None

    args = data.get("args") or []
    payload: Any = args[0] if args else None

    if name == "stats_update" and isinstance(payload, str):
        try:
            payload = camel_case(json.loads(payload))
        except ValueError:
            logger.debug("[SHARD %s] Undecodable stats packet", shard_id)
            return None

    events.emit(name, shard_id, payload)
    return name
