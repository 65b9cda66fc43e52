"""aiohttp-backed HTTP transport.

Bodies arrive either as a dict (sent as JSON) or as a pre-serialized JSON
string (v1 key/secret calls, whose signature covers those exact bytes).
The response text is returned undecoded; the request layer decides how to
parse it.
"""
from __future__ import annotations
import logging
from typing import Optional

import aiohttp
import orjson

from core.types import RawResponse, RequestSpec
from gateway.base import HttpTransport

log = logging.getLogger(__name__)


class AiohttpTransport(HttpTransport):
    """Async HTTP transport on a lazily created ``aiohttp.ClientSession``."""

    def __init__(self, timeout_s: float = 30.0):
        self.timeout_s = timeout_s
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                json_serialize=lambda x: orjson.dumps(x).decode(),
                timeout=aiohttp.ClientTimeout(total=self.timeout_s),
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def get(self, spec: RequestSpec) -> RawResponse:
        return await self._request("GET", spec)

    async def post(self, spec: RequestSpec) -> RawResponse:
        return await self._request("POST", spec)

    async def _request(self, method: str, spec: RequestSpec) -> RawResponse:
        session = await self._get_session()
        headers = dict(spec.headers)
        kwargs = {}
        if spec.as_json:
            if spec.body is not None:
                kwargs["json"] = spec.body
        elif spec.body is not None:
            headers.setdefault("Content-Type", "application/json")
            kwargs["data"] = spec.body
        async with session.request(method, spec.url, headers=headers, **kwargs) as resp:
            text = await resp.text()
            if resp.status >= 400:
                log.debug("REST %s %s -> HTTP %d", method, spec.url, resp.status)
            return RawResponse(status=resp.status, text=text, headers=dict(resp.headers))
