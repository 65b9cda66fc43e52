"""Abstract transports used by the helper.

The helper only builds and signs requests; moving bytes is delegated to
these interfaces so tests (and alternative clients) can plug in their own.
"""
from __future__ import annotations
from abc import ABC, abstractmethod

from core.types import HttpMethod, RawResponse, RequestSpec


# ── HTTP ───────────────────────────────────────────────────────────────

class HttpTransport(ABC):
    """Performs one HTTP call per ``RequestSpec``.

    Network failures propagate as ``aiohttp.ClientError`` or
    ``asyncio.TimeoutError``; HTTP error statuses are returned normally.
    """

    @abstractmethod
    async def get(self, spec: RequestSpec) -> RawResponse: ...

    @abstractmethod
    async def post(self, spec: RequestSpec) -> RawResponse: ...

    async def send(self, spec: RequestSpec) -> RawResponse:
        if spec.method == HttpMethod.POST:
            return await self.post(spec)
        return await self.get(spec)

    async def close(self) -> None:
        pass


# ── WebSocket ──────────────────────────────────────────────────────────

class WsConnection(ABC):
    """An open socket. Frames are text."""

    @abstractmethod
    async def send(self, frame: str) -> None: ...

    @abstractmethod
    async def recv(self) -> str: ...

    @abstractmethod
    async def close(self) -> None: ...


class WsTransport(ABC):

    @abstractmethod
    async def connect(self, url: str) -> WsConnection:
        """Open a socket; returns once the connection is established."""
        ...
