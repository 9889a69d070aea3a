"""Panel REST API client.

Uses httpx for async HTTP.  One client instance serves either the
Application API (admin key) or the Client API (user key); the key decides
which endpoints succeed, the client itself does not care.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from . import endpoints

logger = logging.getLogger(__name__)

USER_AGENT = "Mercury-PanelLink/1.0"


class PteroClientError(Exception):
    """Base error for panel client failures."""


class PteroConnectionError(PteroClientError):
    """Raised when the panel is network-unreachable."""


class PteroAuthError(PteroClientError):
    """Raised when the panel returns 401 or 403."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class PteroRequestError(PteroClientError):
    """Raised on any other non-success response.

    ``errors`` holds the panel's error objects (``code``, ``status``,
    ``detail``) when the body carried them.
    """

    def __init__(self, message: str, status_code: int, errors: list[dict] | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.errors = errors or []


class PteroNotFoundError(PteroRequestError):
    """Raised when the panel returns 404."""


@dataclass(frozen=True)
class SessionDescriptor:
    """Credentials for one websocket session: a short-lived token and the
    socket URL it is valid for."""

    token: str
    socket: str

    @classmethod
    def from_response(cls, data: dict) -> "SessionDescriptor":
        body = data.get("data", data)
        try:
            return cls(token=body["token"], socket=body["socket"])
        except (KeyError, TypeError) as exc:
            raise PteroClientError(f"Malformed websocket descriptor: {data!r}") from exc


class PteroClient:
    """Thin async wrapper around the panel REST API.

    A single :class:`httpx.AsyncClient` is reused across calls for connection
    pooling and keep-alive.  Call :meth:`aclose` (or use as an async context
    manager) when done.
    """

    def __init__(
        self,
        domain: str,
        api_key: str,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.domain = domain.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=self.domain,
            timeout=self.timeout,
            headers=self._headers(),
            transport=transport,
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client and free resources."""
        await self._client.aclose()

    async def __aenter__(self) -> "PteroClient":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    async def get(self, path: str) -> Any:
        return await self.make(path)

    async def post(self, path: str, payload: dict | None = None) -> Any:
        return await self.make(path, payload, "POST")

    async def patch(self, path: str, payload: dict | None = None) -> Any:
        return await self.make(path, payload, "PATCH")

    async def delete(self, path: str) -> Any:
        return await self.make(path, None, "DELETE")

    async def make(self, path: str, payload: dict | None = None, method: str = "GET") -> Any:
        """Send one request and return the decoded JSON body (``None`` on 204)."""
        method = method.upper()
        logger.debug("%s %s", method, path)
        try:
            response = await self._client.request(method, path, json=payload)
        except (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError) as exc:
            raise PteroConnectionError(f"Cannot reach panel at {self.domain}{path}: {exc}") from exc

        if response.status_code in (401, 403):
            raise PteroAuthError(
                f"Panel returned {response.status_code} for {path}, check your API key",
                response.status_code,
            )
        if response.status_code == 204:
            return None
        if response.is_error:
            errors = _error_list(response)
            detail = errors[0].get("detail") if errors else response.reason_phrase
            cls = PteroNotFoundError if response.status_code == 404 else PteroRequestError
            raise cls(f"[{response.status_code}] {detail}", response.status_code, errors)
        return response.json()

    async def server_websocket(self, identifier: str) -> SessionDescriptor:
        """Fetch a fresh websocket token and URL for a server."""
        data = await self.get(endpoints.server_websocket(identifier))
        return SessionDescriptor.from_response(data)

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }


def _error_list(response: httpx.Response) -> list[dict]:
    try:
        body = response.json()
    except ValueError:
        return []
    errors = body.get("errors") if isinstance(body, dict) else None
    return errors if isinstance(errors, list) else []
