"""Shared test fixtures."""
import sys
import os
from typing import List, Optional

import pytest
from websockets.exceptions import ConnectionClosed

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from core.config import HelperOptions  # noqa: E402
from core.types import RawResponse, RequestSpec  # noqa: E402
from gateway.base import HttpTransport, WsConnection, WsTransport  # noqa: E402

NONCE = "1700000000000000"


class FakeHttp(HttpTransport):
    """Records every spec; answers from a queue of RawResponse or exceptions."""

    def __init__(self, replies: Optional[list] = None):
        self.replies = list(replies or [])
        self.calls: List[RequestSpec] = []
        self.closed = False

    def reply(self, text: str, status: int = 200) -> "FakeHttp":
        self.replies.append(RawResponse(status=status, text=text))
        return self

    async def _answer(self, spec: RequestSpec) -> RawResponse:
        self.calls.append(spec)
        reply = self.replies.pop(0) if self.replies else RawResponse(200, "{}")
        if isinstance(reply, BaseException):
            raise reply
        return reply

    async def get(self, spec):
        return await self._answer(spec)

    async def post(self, spec):
        return await self._answer(spec)

    async def close(self):
        self.closed = True

    @property
    def last(self) -> RequestSpec:
        return self.calls[-1]


class FakeConn(WsConnection):
    def __init__(self, frames: List[str]):
        self.frames = list(frames)
        self.sent: List[str] = []
        self.closed = False

    async def send(self, frame):
        self.sent.append(frame)

    async def recv(self):
        if not self.frames:
            raise ConnectionClosed(None, None)
        return self.frames.pop(0)

    async def close(self):
        self.closed = True


class FakeWs(WsTransport):
    """Hands out one FakeConn per connect() call, in order."""

    def __init__(self, *conns: FakeConn):
        self.conns = list(conns)
        self.urls: List[str] = []

    async def connect(self, url):
        self.urls.append(url)
        return self.conns.pop(0)


@pytest.fixture
def http():
    return FakeHttp()


@pytest.fixture
def key_options():
    return HelperOptions(key="key", secret="secret")


@pytest.fixture
def token_options():
    return HelperOptions(token="tok-123")


@pytest.fixture
def anon_options():
    return HelperOptions()
