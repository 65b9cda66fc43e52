"""Authenticated WebSocket sessions.

``open_session`` connects, sends the auth frame and waits for the first
``auth`` event. On success the live ``WsSession`` is handed to the caller,
who owns it from then on (reading, sending, closing).
"""
from __future__ import annotations
import asyncio
import logging
from typing import Any, Dict, Optional

import orjson
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from core.config import HelperOptions
from core.types import AuthStatus, Credentials
from core.utils import NonceFactory
from gateway.base import WsConnection, WsTransport
from gateway.errors import (
    AuthenticationFailed, MissingCredentials, RateLimited, TransportError,
)
from gateway.signing import sign_ws_auth

log = logging.getLogger(__name__)

RATE_LIMIT_MSG = "rate: limit"
RATE_LIMIT_RETRY_S = 5.0
DMS_ENABLED = 4


class _WebsocketsConnection(WsConnection):

    def __init__(self, ws):
        self._ws = ws

    async def send(self, frame: str) -> None:
        await self._ws.send(frame)

    async def recv(self) -> str:
        return await self._ws.recv()

    async def close(self) -> None:
        await self._ws.close()


class WebsocketsTransport(WsTransport):
    """Socket transport on the ``websockets`` library."""

    def __init__(self, ping_interval: float = 20, ping_timeout: float = 10,
                 max_size: int = 10 * 1024 * 1024):
        self.ping_interval = ping_interval
        self.ping_timeout = ping_timeout
        self.max_size = max_size

    async def connect(self, url: str) -> WsConnection:
        ws = await websockets.connect(
            url,
            ping_interval=self.ping_interval,
            ping_timeout=self.ping_timeout,
            max_size=self.max_size,
        )
        log.info("WS connected: %s", url)
        return _WebsocketsConnection(ws)


class WsSession:
    """Authenticated socket handed back to the caller.

    ``send`` accepts any JSON-serializable frame, ``recv`` returns the
    decoded frame.
    """

    def __init__(self, conn: WsConnection, url: str, auth_frame: Dict[str, Any]):
        self.conn = conn
        self.url = url
        self.auth_frame = auth_frame
        self.closed = False

    async def send(self, frame: Any) -> None:
        if not isinstance(frame, str):
            frame = orjson.dumps(frame).decode()
        await self.conn.send(frame)

    async def recv(self) -> Any:
        return orjson.loads(await self.conn.recv())

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            await self.conn.close()

    def __aiter__(self):
        return self

    async def __anext__(self) -> Any:
        try:
            return await self.recv()
        except ConnectionClosed:
            raise StopAsyncIteration

    async def __aenter__(self) -> "WsSession":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()


def build_auth_frame(credentials: Credentials, nonce: str,
                     options: HelperOptions) -> Dict[str, Any]:
    if credentials.uses_token:
        frame: Dict[str, Any] = {"event": "auth", "token": credentials.token}
    else:
        auth_payload, auth_sig = sign_ws_auth(nonce, credentials.secret)
        frame = {
            "event": "auth",
            "apiKey": credentials.key,
            "authNonce": nonce,
            "authSig": auth_sig,
            "authPayload": auth_payload,
        }
    if options.dms:
        frame["dms"] = DMS_ENABLED
    if options.filter:
        frame["filter"] = list(options.filter)
    return frame


async def _await_auth_event(conn: WsConnection) -> Dict[str, Any]:
    """Read frames until the first ``auth`` event; others (e.g. ``info``) are skipped."""
    while True:
        try:
            raw = await conn.recv()
        except ConnectionClosed as e:
            raise TransportError(f"Socket closed before authentication: {e}", cause=e) from e
        try:
            msg = orjson.loads(raw)
        except orjson.JSONDecodeError:
            log.debug("Skipping non-JSON frame during auth: %r", raw)
            continue
        if isinstance(msg, dict) and msg.get("event") == "auth":
            return msg


async def open_session(
    transport: WsTransport,
    options: HelperOptions,
    delay_ms: int = 0,
    nonce: Optional[str] = None,
    nonces: Optional[NonceFactory] = None,
    retries_left: int = 1,
) -> WsSession:
    """Connect to ``options.base_ws_url`` and authenticate.

    A ``rate: limit`` refusal is retried after 5 seconds with the same
    arguments; if that retry is refused again ``RateLimited`` is raised.
    """
    credentials = options.credentials
    if not credentials.is_usable:
        raise MissingCredentials(
            "Unable to create WebSocket connection; credentials were not supplied."
        )

    nonces = nonces or NonceFactory()
    auth_nonce = nonces.next(nonce)
    frame = build_auth_frame(credentials, auth_nonce, options)

    try:
        conn = await transport.connect(options.base_ws_url)
    except (WebSocketException, OSError, asyncio.TimeoutError) as e:
        raise TransportError(f"Unable to connect to {options.base_ws_url}: {e}", cause=e) from e

    try:
        await conn.send(orjson.dumps(frame).decode())
    except (WebSocketException, OSError) as e:
        await conn.close()
        raise TransportError(f"Unable to send auth frame: {e}", cause=e) from e
    if options.verbose_output:
        log.info("WS auth frame sent: %s", frame)
    try:
        response = await _await_auth_event(conn)
    except TransportError:
        await conn.close()
        raise

    status = response.get("status")
    if status == AuthStatus.OK.value:
        log.info("WS authenticated (%s)", "token" if credentials.uses_token else "api key")
        if delay_ms:
            await asyncio.sleep(delay_ms / 1000)
        return WsSession(conn, options.base_ws_url, frame)

    await conn.close()
    if status == AuthStatus.FAILED.value and response.get("msg") == RATE_LIMIT_MSG:
        if retries_left <= 0:
            log.error("WS auth rate limited again, giving up: %s", response)
            raise RateLimited("Socket authentication refused: rate limit", response)
        log.warning("Socket connection refused: rate limit reached - retrying in %.0f seconds",
                    RATE_LIMIT_RETRY_S)
        await asyncio.sleep(RATE_LIMIT_RETRY_S)
        return await open_session(transport, options, delay_ms, nonce, nonces,
                                  retries_left=retries_left - 1)

    log.error("WS auth failed: %s", response)
    raise AuthenticationFailed(f"Socket authentication failed: {orjson.dumps(response).decode()}",
                               response)
