"""Panel API paths (Application API for admins, Client API for users)."""

from __future__ import annotations

APPLICATION = "/api/application"
CLIENT = "/api/client"

NODES = f"{APPLICATION}/nodes"
NESTS = f"{APPLICATION}/nests"


def node(node_id: int) -> str:
    return f"{NODES}/{node_id}"


def nest(nest_id: int) -> str:
    return f"{NESTS}/{nest_id}"


def server_websocket(identifier: str) -> str:
    return f"{CLIENT}/servers/{identifier}/websocket"


def server_users(identifier: str) -> str:
    return f"{CLIENT}/servers/{identifier}/users"


def server_user(identifier: str, uuid: str) -> str:
    return f"{CLIENT}/servers/{identifier}/users/{uuid}"


def admin_node(domain: str, node_id: int) -> str:
    return f"{domain}/admin/nodes/view/{node_id}"


def admin_nest(domain: str, nest_id: int) -> str:
    return f"{domain}/admin/nests/view/{nest_id}"
