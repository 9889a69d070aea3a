"""Settings for the panel link, loaded from the environment or config.json."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path

from mercury.integrations.ptero.status import DEFAULT_NEXT_INTERVAL, StatusOptions

logger = logging.getLogger(__name__)


def parse_id_list(value: str) -> list[int]:
    return [int(v) for v in value.replace(" ", "").split(",") if v]


@dataclass
class PanelSettings:
    panel_url: str = "http://localhost:8080"
    application_key: str = ""
    client_key: str = ""

    # Node status polling (milliseconds)
    nodes: list[int] = field(default_factory=list)
    call_interval: int = 30_000
    next_interval: int = DEFAULT_NEXT_INTERVAL
    retry_limit: int = 0

    # Status HTTP surface
    status_host: str = "127.0.0.1"
    status_port: int = 5200

    @classmethod
    def from_env(cls) -> PanelSettings:
        defaults = cls()
        nodes = os.getenv("STATUS_NODES")
        return cls(
            panel_url=os.getenv("PANEL_URL", defaults.panel_url),
            application_key=os.getenv("PANEL_APP_KEY", ""),
            client_key=os.getenv("PANEL_CLIENT_KEY", ""),
            nodes=parse_id_list(nodes) if nodes else [],
            call_interval=int(os.getenv("STATUS_CALL_INTERVAL", defaults.call_interval)),
            next_interval=int(os.getenv("STATUS_NEXT_INTERVAL", defaults.next_interval)),
            retry_limit=int(os.getenv("STATUS_RETRY_LIMIT", defaults.retry_limit)),
            status_host=os.getenv("STATUS_HOST", defaults.status_host),
            status_port=int(os.getenv("STATUS_PORT", defaults.status_port)),
        )

    @classmethod
    def load(cls, path: str | Path) -> PanelSettings:
        path = Path(path)
        if path.exists():
            with open(path) as f:
                data = json.load(f)
            known = {f.name for f in fields(cls)}
            filtered = {k: v for k, v in data.items() if k in known}
            return cls(**filtered)
        logger.warning("Config not found at %s, using defaults", path)
        return cls()

    def status_options(self) -> StatusOptions:
        """Validated poller options; raises ``StatusConfigError`` on bad values."""
        return StatusOptions(
            domain=self.panel_url,
            auth=self.application_key,
            nodes=self.nodes,
            call_interval=self.call_interval,
            next_interval=self.next_interval,
            retry_limit=self.retry_limit,
        )
