"""Cached managers for panel nodes, nests and server subusers."""

from __future__ import annotations

import logging
from typing import Any, Iterable

from . import endpoints
from .client import PteroClient
from .query import build_query
from .structures import Nest, Node, SubUser

logger = logging.getLogger(__name__)

_NODE_REQUIRED = ("name", "location", "fqdn", "scheme", "memory", "disk")


def _items(data: dict) -> list[dict]:
    return [o.get("attributes", o) for o in data.get("data", [])]


class NodeManager:
    """Application API node management."""

    FILTERS = ("uuid", "name", "fqdn", "daemon_token_id")
    INCLUDES = ("allocations", "location", "servers")
    SORTS = ("id", "uuid", "memory", "disk")

    def __init__(self, client: PteroClient, cache: bool = True) -> None:
        self.client = client
        self.cache_enabled = cache
        self.cache: dict[int, Node] = {}

    def _patch(self, data: dict) -> Node | dict[int, Node]:
        if "data" in data:
            nodes = {n.id: n for n in map(Node.from_attributes, _items(data))}
            if self.cache_enabled:
                self.cache.update(nodes)
            return nodes

        node = Node.from_attributes(data.get("attributes", data))
        if self.cache_enabled:
            self.cache[node.id] = node
        return node

    def resolve(self, obj: Any) -> Node | None:
        """Resolve a node from a Node, an ID, a name or a raw relationship."""
        if isinstance(obj, Node):
            return obj
        if isinstance(obj, int):
            return self.cache.get(obj)
        if isinstance(obj, str):
            return next((n for n in self.cache.values() if n.name == obj), None)
        if isinstance(obj, dict):
            rel = (obj.get("relationships") or {}).get("node")
            if rel:
                result = self._patch(rel)
                return result if isinstance(result, Node) else None
        return None

    def admin_url_for(self, node: Node | int) -> str:
        node_id = node.id if isinstance(node, Node) else node
        return endpoints.admin_node(self.client.domain, node_id)

    async def fetch(
        self,
        id: int | None = None,
        *,
        force: bool = False,
        include: Iterable[str] = (),
    ) -> Node | dict[int, Node]:
        """Fetch one node (cache first unless *force*) or every node."""
        if id is not None and not force:
            cached = self.cache.get(id)
            if cached is not None:
                return cached

        query = build_query(include=include, allowed_includes=self.INCLUDES)
        path = endpoints.node(id) if id is not None else endpoints.NODES
        data = await self.client.get(path + query)
        return self._patch(data)

    async def query(
        self,
        entity: str,
        filter: str | None = None,
        sort: str | None = None,
    ) -> dict[int, Node]:
        """Direct (uncached) lookup of nodes matching *filter* / *sort*."""
        if not filter and not sort:
            raise ValueError("Sort or filter is required.")
        if filter == "daemonTokenId":
            filter = "daemon_token_id"

        query = build_query(
            filter=(filter, entity) if filter else None,
            sort=sort,
            allowed_filters=self.FILTERS,
            allowed_sorts=self.SORTS,
        )
        data = await self.client.get(endpoints.NODES + query)
        result = self._patch(data)
        return result if isinstance(result, dict) else {result.id: result}

    async def create(self, **options: Any) -> Node:
        sftp = options.get("sftp") or {}
        if any(not options.get(k) for k in _NODE_REQUIRED) or not sftp.get("port") or not sftp.get("listener"):
            raise ValueError("Missing required Node creation option.")

        payload = {k: options[k] for k in _NODE_REQUIRED}
        payload["sftp"] = sftp
        payload["upload_size"] = options.get("upload_size", 100)
        payload["memory_overallocate"] = options.get("memory_overallocate", 0)
        payload["disk_overallocate"] = options.get("disk_overallocate", 0)

        data = await self.client.post(endpoints.NODES, payload)
        node = self._patch(data)
        logger.info("Created node %s", getattr(node, "id", "?"))
        return node  # type: ignore[return-value]

    async def update(self, node: Node | int, **options: Any) -> Node:
        if not options:
            raise ValueError("Too few options to update.")
        if isinstance(node, int):
            node = await self.fetch(node)  # type: ignore[assignment]

        payload = node.to_payload()
        payload.update(options)
        payload["location_id"] = options.get("location", payload.pop("location_id", None))
        payload.pop("location", None)
        data = await self.client.patch(endpoints.node(node.id), payload)
        return self._patch(data)  # type: ignore[return-value]

    async def delete(self, node: Node | int) -> bool:
        node_id = node.id if isinstance(node, Node) else node
        await self.client.delete(endpoints.node(node_id))
        self.cache.pop(node_id, None)
        return True


class NestManager:
    """Application API nests (read-only on the panel)."""

    INCLUDES = ("eggs", "servers")

    def __init__(self, client: PteroClient, cache: bool = True) -> None:
        self.client = client
        self.cache_enabled = cache
        self.cache: dict[int, Nest] = {}

    def _patch(self, data: dict) -> list[Nest]:
        if "data" in data:
            nests = [Nest.from_attributes(a) for a in _items(data)]
        else:
            nests = [Nest.from_attributes(data.get("attributes", data))]
        if self.cache_enabled:
            self.cache.update((n.id, n) for n in nests)
        return nests

    def admin_url_for(self, id: int) -> str:
        return endpoints.admin_nest(self.client.domain, id)

    async def fetch(self, id: int | None = None, include: Iterable[str] = ()) -> list[Nest]:
        query = build_query(include=include, allowed_includes=self.INCLUDES)
        path = endpoints.nest(id) if id is not None else endpoints.NESTS
        data = await self.client.get(path + query)
        return self._patch(data)


def _permission_list(permissions: str | Iterable[str]) -> list[str]:
    if isinstance(permissions, str):
        permissions = [permissions]
    perms: list[str] = []
    for p in permissions:
        if not isinstance(p, str):
            raise TypeError(f"Permission must be a string, got {type(p).__name__}")
        p = p.strip()
        if p and p not in perms:
            perms.append(p)
    if not perms:
        raise ValueError("Need at least 1 permission for the subuser.")
    return perms


class SubUserManager:
    """Client API subusers of one server."""

    def __init__(self, client: PteroClient, server_identifier: str, cache: bool = True) -> None:
        self.client = client
        self.server_identifier = server_identifier
        self.cache_enabled = cache
        self.cache: dict[str, SubUser] = {}

    def _patch(self, data: dict) -> SubUser | dict[str, SubUser]:
        if "data" in data:
            users = {
                u.uuid: u
                for u in (SubUser.from_attributes(self.server_identifier, a) for a in _items(data))
            }
            if self.cache_enabled:
                self.cache.update(users)
            return users

        user = SubUser.from_attributes(self.server_identifier, data.get("attributes", data))
        if self.cache_enabled:
            self.cache[user.uuid] = user
        return user

    def resolve(self, obj: Any) -> SubUser | None:
        if isinstance(obj, SubUser):
            return obj
        if isinstance(obj, str):
            return self.cache.get(obj) or next(
                (u for u in self.cache.values() if u.username == obj), None
            )
        if isinstance(obj, dict):
            rel = (obj.get("relationships") or {}).get("user")
            if rel:
                result = self._patch(rel)
                return result if isinstance(result, SubUser) else None
        return None

    async def fetch(self, uuid: str | None = None, force: bool = False) -> SubUser | dict[str, SubUser]:
        if uuid is not None:
            if not force and uuid in self.cache:
                return self.cache[uuid]
            data = await self.client.get(endpoints.server_user(self.server_identifier, uuid))
            return self._patch(data)
        data = await self.client.get(endpoints.server_users(self.server_identifier))
        return self._patch(data)

    async def add(self, email: str, permissions: str | Iterable[str]) -> SubUser:
        if not isinstance(email, str) or "@" not in email:
            raise ValueError("Email must be a valid address string.")
        data = await self.client.post(
            endpoints.server_users(self.server_identifier),
            {"email": email, "permissions": _permission_list(permissions)},
        )
        return self._patch(data)  # type: ignore[return-value]

    async def set_permissions(self, uuid: str, permissions: str | Iterable[str]) -> SubUser:
        data = await self.client.post(
            endpoints.server_user(self.server_identifier, uuid),
            {"permissions": _permission_list(permissions)},
        )
        return self._patch(data)  # type: ignore[return-value]

    async def remove(self, uuid: str) -> bool:
        await self.client.delete(endpoints.server_user(self.server_identifier, uuid))
        self.cache.pop(uuid, None)
        return True
