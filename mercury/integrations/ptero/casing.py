"""snake_case → camelCase key conversion for panel payloads."""

from __future__ import annotations

import re
from typing import Any

_SNAKE_RE = re.compile(r"_+([a-zA-Z0-9])")


def to_camel(key: str) -> str:
    """``memory_overallocate`` → ``memoryOverallocate``.

    Leading underscores are kept as-is so private-looking keys survive.
    """
    stripped = key.lstrip("_")
    prefix = key[: len(key) - len(stripped)]
    return prefix + _SNAKE_RE.sub(lambda m: m.group(1).upper(), stripped)


def camel_case(obj: Any) -> Any:
    """Recursively camelCase every mapping key inside *obj*."""
    if isinstance(obj, dict):
        return {
            (to_camel(k) if isinstance(k, str) else k): camel_case(v)
            for k, v in obj.items()
        }
    if isinstance(obj, list):
        return [camel_case(v) for v in obj]
    return obj
