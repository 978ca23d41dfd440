"""HTTP transport for s3parts.

The client depends only on the ``Transport`` capability: something that
executes a prepared request and returns status, headers and body. The
default implementation wraps ``httpx.AsyncClient``; tests plug in an
``httpx.ASGITransport`` or a scripted transport.

Connection-level failures are mapped to ``TransientNetworkError`` here so
the retry policy never has to know about httpx.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping, Protocol

import httpx

from s3parts.errors import TransientNetworkError

logger = logging.getLogger(__name__)


@dataclass
class HTTPRequest:
    """A fully prepared (signed) request."""

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes | bytearray | memoryview = b""


@dataclass
class HTTPResponse:
    """A buffered response.

    Header names are lower-cased.
    """

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    def header(self, name: str, default: str = "") -> str:
        return self.headers.get(name.lower(), default)


class Transport(Protocol):
    """Executes prepared requests."""

    async def send(self, request: HTTPRequest) -> HTTPResponse:
        """Send ``request`` and return the buffered response.

        Raises:
            TransientNetworkError: On connection resets, timeouts and other
                transport-level failures.
        """
        ...

    async def close(self) -> None: ...


class HttpxTransport:
    """Transport backed by an ``httpx.AsyncClient``.

    Attributes:
        client: The underlying client; created on demand unless supplied.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout, transport=transport)

    async def send(self, request: HTTPRequest) -> HTTPResponse:
        try:
            response = await self.client.request(
                request.method,
                request.url,
                headers=request.headers,
                content=bytes(request.body),
            )
        except httpx.TransportError as exc:
            logger.debug("Transport error for %s %s: %r", request.method, request.url, exc)
            raise TransientNetworkError(str(exc) or type(exc).__name__) from exc
        return HTTPResponse(
            status=response.status_code,
            headers=_lower_headers(response.headers),
            body=response.content,
        )

    async def close(self) -> None:
        """Close the underlying client if this transport created it."""
        if self._owns_client:
            await self.client.aclose()


def _lower_headers(headers: Mapping[str, str]) -> dict[str, str]:
    return {name.lower(): value for name, value in headers.items()}
