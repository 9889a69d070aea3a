"""Read-only status router for the hosting backend.

Mount it on the backend's FastAPI app::

    app.include_router(create_status_router(status, shards))

Exposes:
  GET /status/nodes          poller state and the last snapshot per node
  GET /status/nodes/{id}     one watched node
  GET /status/shards         websocket shard states
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from mercury.integrations.ptero.status import NodeStatus
from mercury.integrations.ptero.websocket import WebSocketManager


class NodeState(BaseModel):
    id: int
    connected: bool
    attributes: dict[str, Any] | None = None


class PollerState(BaseModel):
    running: bool
    ready_at: float | None = None
    ping: int
    retry_count: int
    watched: list[int]
    connected: list[int]
    nodes: list[NodeState] = Field(default_factory=list)


class ShardInfo(BaseModel):
    id: str
    status: str
    ping: int
    ready_at: float | None = None


class ShardList(BaseModel):
    ping: float
    shards: list[ShardInfo]


def _node_state(status: NodeStatus, node_id: int) -> NodeState:
    return NodeState(
        id=node_id,
        connected=node_id in status.connected,
        attributes=status.snapshots.get(node_id),
    )


def create_status_router(
    status: NodeStatus,
    shards: WebSocketManager | None = None,
) -> APIRouter:
    router = APIRouter(prefix="/status", tags=["status"])

    @router.get("/nodes", response_model=PollerState)
    async def poller_state() -> PollerState:
        return PollerState(
            running=status.running,
            ready_at=status.ready_at,
            ping=status.ping,
            retry_count=status.retry_count,
            watched=list(status.options.nodes),
            connected=sorted(status.connected),
            nodes=[_node_state(status, i) for i in status.options.nodes],
        )

    @router.get("/nodes/{node_id}", response_model=NodeState)
    async def node_state(node_id: int) -> NodeState:
        if node_id not in status.options.nodes:
            raise HTTPException(status_code=404, detail=f"Node {node_id} is not watched")
        return _node_state(status, node_id)

    @router.get("/shards", response_model=ShardList)
    async def shard_states() -> ShardList:
        if shards is None:
            return ShardList(ping=-1, shards=[])
        return ShardList(
            ping=shards.ping,
            shards=[ShardInfo(**s) for s in shards.snapshot()],
        )

    return router
