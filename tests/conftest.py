"""pytest configuration for Mercury tests."""

import pytest


# Configure asyncio mode for pytest-asyncio
def pytest_configure(config):
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


@pytest.fixture()
def node_attributes():
    """Factory for panel node payloads as the Application API returns them."""

    def _make(node_id: int, **overrides) -> dict:
        attrs = {
            "id": node_id,
            "uuid": f"00000000-0000-0000-0000-{node_id:012d}",
            "public": True,
            "name": f"node-{node_id}",
            "description": None,
            "location_id": 1,
            "fqdn": f"node{node_id}.example.com",
            "scheme": "https",
            "behind_proxy": False,
            "maintenance_mode": False,
            "memory": 8192,
            "memory_overallocate": 0,
            "disk": 102400,
            "disk_overallocate": 0,
            "upload_size": 100,
            "daemon_listen": 8080,
            "daemon_sftp": 2022,
            "daemon_base": "/var/lib/pterodactyl/volumes",
            "created_at": "2024-01-05T10:00:00+00:00",
            "updated_at": "2024-02-01T12:30:00+00:00",
        }
        attrs.update(overrides)
        return {"object": "node", "attributes": attrs}

    return _make
