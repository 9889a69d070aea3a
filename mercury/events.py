"""Callback table shared by shards, the shard manager and the status poller.

Components own an :class:`EventHandlers` instance instead of inheriting an
emitter base class.  Subscribers are plain callables; an exception raised by
one subscriber is logged and never reaches the component that emitted.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)

Callback = Callable[..., Any]


class EventHandlers:
    """Named event → ordered list of callbacks."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Callback]] = {}

    def on(self, event: str, callback: Callback | None = None) -> Any:
        """Subscribe *callback* to *event* and return it.

        Without *callback*, returns a decorator that subscribes the
        decorated function.
        """
        if callback is None:
            return lambda fn: self.on(event, fn)
        self._handlers.setdefault(event, []).append(callback)
        return callback

    def off(self, event: str, callback: Callback | None = None) -> None:
        """Remove one callback, or every callback for *event* when omitted."""
        if callback is None:
            self._handlers.pop(event, None)
            return
        callbacks = self._handlers.get(event, [])
        if callback in callbacks:
            callbacks.remove(callback)
        if not callbacks:
            self._handlers.pop(event, None)

    def emit(self, event: str, *args: Any) -> int:
        """Invoke every callback for *event*; returns how many ran."""
        callbacks = list(self._handlers.get(event, ()))
        for cb in callbacks:
            try:
                cb(*args)
            except Exception:  # noqa: BLE001
                logger.exception("Error in %r event callback", event)
        return len(callbacks)

    def listeners(self, event: str) -> list[Callback]:
        return list(self._handlers.get(event, ()))

    def clear(self) -> None:
        self._handlers.clear()

    def __contains__(self, event: str) -> bool:
        return bool(self._handlers.get(event))
