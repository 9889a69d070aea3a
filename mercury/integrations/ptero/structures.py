"""Panel resources as plain dataclasses, built from API ``attributes``."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from . import endpoints


def _parse_dt(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


@dataclass
class Node:
    id: int
    uuid: str
    name: str
    fqdn: str
    scheme: str = "https"
    description: str | None = None
    public: bool = True
    location_id: int | None = None
    behind_proxy: bool = False
    maintenance_mode: bool = False
    memory: int = 0
    memory_overallocate: int = 0
    disk: int = 0
    disk_overallocate: int = 0
    upload_size: int = 100
    daemon_listen: int = 8080
    daemon_sftp: int = 2022
    daemon_base: str = "/var/lib/pterodactyl/volumes"
    created_at: datetime | None = None
    updated_at: datetime | None = None
    relationships: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_attributes(cls, attrs: dict[str, Any]) -> "Node":
        known = {k for k in cls.__dataclass_fields__} - {"created_at", "updated_at"}
        data = {k: v for k, v in attrs.items() if k in known}
        return cls(
            **data,
            created_at=_parse_dt(attrs.get("created_at")),
            updated_at=_parse_dt(attrs.get("updated_at")),
        )

    def admin_url(self, domain: str) -> str:
        return endpoints.admin_node(domain, self.id)

    def to_payload(self) -> dict[str, Any]:
        """Fields the panel accepts on ``PATCH /nodes/{id}``."""
        data = asdict(self)
        for key in ("id", "uuid", "created_at", "updated_at", "relationships"):
            data.pop(key)
        return data


@dataclass
class Nest:
    id: int
    uuid: str
    author: str
    name: str
    description: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_attributes(cls, attrs: dict[str, Any]) -> "Nest":
        return cls(
            id=attrs["id"],
            uuid=attrs["uuid"],
            author=attrs.get("author", ""),
            name=attrs["name"],
            description=attrs.get("description"),
            created_at=_parse_dt(attrs.get("created_at")),
            updated_at=_parse_dt(attrs.get("updated_at")),
        )


@dataclass
class SubUser:
    uuid: str
    username: str
    email: str
    server_identifier: str
    image: str | None = None
    two_factor_enabled: bool = False
    permissions: list[str] = field(default_factory=list)
    created_at: datetime | None = None

    @classmethod
    def from_attributes(cls, server_identifier: str, attrs: dict[str, Any]) -> "SubUser":
        return cls(
            uuid=attrs["uuid"],
            username=attrs.get("username", ""),
            email=attrs.get("email", ""),
            server_identifier=server_identifier,
            image=attrs.get("image"),
            two_factor_enabled=bool(attrs.get("2fa_enabled", False)),
            permissions=list(attrs.get("permissions", [])),
            created_at=_parse_dt(attrs.get("created_at")),
        )
