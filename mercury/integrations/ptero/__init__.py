"""Pterodactyl-style panel integration: REST client, websocket shards, node
status poller and resource managers."""

from .client import (
    PteroAuthError,
    PteroClient,
    PteroClientError,
    PteroConnectionError,
    PteroNotFoundError,
    PteroRequestError,
    SessionDescriptor,
)
from .managers import NestManager, NodeManager, SubUserManager
from .shard import Shard, ShardError, ShardNotConnectedError, ShardState
from .status import (
    DomainFormatError,
    IntervalRangeError,
    NodeIdTypeError,
    NodeStatus,
    NodeStatusError,
    RetryLimitExceededError,
    StatusAlreadyRunningError,
    StatusAuthError,
    StatusConfigError,
    StatusOptions,
    StatusUnavailableError,
)
from .websocket import WebSocketManager

__all__ = [
    "DomainFormatError",
    "IntervalRangeError",
    "NestManager",
    "NodeIdTypeError",
    "NodeManager",
    "NodeStatus",
    "NodeStatusError",
    "PteroAuthError",
    "PteroClient",
    "PteroClientError",
    "PteroConnectionError",
    "PteroNotFoundError",
    "PteroRequestError",
    "RetryLimitExceededError",
    "SessionDescriptor",
    "Shard",
    "ShardError",
    "ShardNotConnectedError",
    "ShardState",
    "StatusAlreadyRunningError",
    "StatusAuthError",
    "StatusConfigError",
    "StatusOptions",
    "StatusUnavailableError",
    "SubUserManager",
    "WebSocketManager",
]
