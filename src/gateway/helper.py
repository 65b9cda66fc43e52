"""ApiHelper — entry point for REST chains and authenticated sockets.

Loads credentials and per-request defaults once, owns the transports and
the nonce factory, and starts request chains::

    async with ApiHelper() as helper:
        result = await helper.set_context("v2/platform/status").send_get()
        result.print_response()

        socket = await helper.open_socket(delay_ms=250)
"""
from __future__ import annotations
import logging
from typing import Any, Mapping, Optional, Union

from core.config import HelperOptions, resolve_options
from core.utils import NonceFactory
from gateway.base import HttpTransport, WsTransport
from gateway.request import RequestContext
from gateway.rest import AiohttpTransport
from gateway.ws import WebsocketsTransport, WsSession, open_session

log = logging.getLogger(__name__)

OptionsLayer = Union[HelperOptions, Mapping[str, Any], None]


class ApiHelper:
    """Reusable Bitfinex API communicator.

    Args:
        credentials_path: JSON/YAML file with ``key`` and ``secret``. Falls
            back to ``BFX_API_KEY`` / ``BFX_API_SECRET`` (``.env`` honoured).
        suppress_warnings: Do not warn when no credentials are found.
        defaults_path: JSON/YAML file of per-request option defaults.
        http: HTTP transport; defaults to ``AiohttpTransport``.
        ws: Socket transport; defaults to ``WebsocketsTransport``.
    """

    def __init__(
        self,
        credentials_path: str = "credentials.json",
        suppress_warnings: bool = False,
        defaults_path: str = "defaults.json",
        http: Optional[HttpTransport] = None,
        ws: Optional[WsTransport] = None,
        options: Optional[HelperOptions] = None,
    ):
        if options is None:
            options = resolve_options(credentials_path, defaults_path, suppress_warnings)
        self.options = options
        self.http = http or AiohttpTransport(timeout_s=options.timeout_s)
        self.ws = ws or WebsocketsTransport()
        self.nonces = NonceFactory()

    def set_context(self, path: str, body: Optional[Mapping[str, Any]] = None,
                    options: OptionsLayer = None) -> RequestContext:
        """Start a request chain. Per-call *options* override the loaded defaults.

        A dict overrides only the keys it names; a ``HelperOptions`` replaces
        every field it sets.
        """
        return RequestContext.configure(
            path, body, options,
            http=self.http, defaults=self.options, nonces=self.nonces,
        )

    async def open_socket(self, options: OptionsLayer = None, delay_ms: int = 0,
                          nonce: Optional[str] = None) -> WsSession:
        """Open an authenticated socket.

        *delay_ms* is the settle time after auth; some authenticated
        channels need ~250ms before they accept further commands.
        """
        merged = self.options.merged(options)
        return await open_session(self.ws, merged, delay_ms, nonce, self.nonces)

    async def close(self) -> None:
        await self.http.close()

    async def __aenter__(self) -> "ApiHelper":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()
