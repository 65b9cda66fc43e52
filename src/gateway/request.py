"""Request lifecycle: configure, sign, transmit, react.

A ``RequestContext`` is an immutable, fully configured call. Each
transmission produces a fresh ``RequestResult`` so the same context can be
sent repeatedly (every send gets a new nonce) without state leaking
between sends::

    ctx = helper.set_context("v2/auth/r/wallets")
    result = await ctx.send_post()
    result.print_response().act_on_response(handle)

Version-specific payload shaping lives in ``V1Payload`` / ``V2Payload``;
the right one is picked once, when the context is configured.
"""
from __future__ import annotations
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union

import aiohttp
import orjson
from rich.console import Console

from core.config import HelperOptions
from core.types import ApiVersion, Credentials, HttpMethod, RequestSpec, Timing
from core.utils import NonceFactory, time_now_ms
from gateway.base import HttpTransport
from gateway.errors import InvalidPath, TransportError, UnresolvedVersion
from gateway.signing import dumps, encode_v1_payload, sign_v1, sign_v2

log = logging.getLogger(__name__)

_VERSION_PREFIXES = {
    "v1/": ApiVersion.V1,
    "v2/": ApiVersion.V2,
}


def split_path(path: str) -> Tuple[str, Optional[str]]:
    """Strip the leading slash and split off the query suffix at the first '?'."""
    if path.startswith("/"):
        path = path[1:]
    if "?" in path:
        path, args = path.split("?", 1)
        return path, args
    return path, None


def infer_version(path: str) -> ApiVersion:
    for prefix, version in _VERSION_PREFIXES.items():
        if path.startswith(prefix):
            return version
    raise UnresolvedVersion(
        f"Unable to determine endpoint version for {path!r}. "
        "Paths are expected to start with v1/ or v2/."
    )


# ── Payload builders ───────────────────────────────────────────────────

class PayloadBuilder(ABC):
    version: ApiVersion

    @abstractmethod
    def build(self, ctx: "RequestContext", method: HttpMethod,
              authenticated: bool, nonce: str) -> Tuple[RequestSpec, dict]:
        """Return the transport spec and the body as actually sent."""
        ...

    @staticmethod
    def _headers(ctx: "RequestContext", protocol: Mapping[str, str]) -> Dict[str, str]:
        # protocol headers win over caller extras
        headers = dict(ctx.options.optional_headers)
        headers.update(protocol)
        return headers


class V1Payload(PayloadBuilder):
    """v1: the path is echoed in the body as ``request``; the whole body
    (nonce included) is base64-encoded into X-BFX-PAYLOAD and signed."""

    version = ApiVersion.V1

    def build(self, ctx: "RequestContext", method: HttpMethod,
              authenticated: bool, nonce: str) -> Tuple[RequestSpec, dict]:
        body = dict(ctx.body)
        body["request"] = f"/{ctx.path}"
        if ctx.path_args:
            body["request"] += f"?{ctx.path_args}"

        if not authenticated:
            spec = RequestSpec(method, ctx.url, self._headers(ctx, {}),
                               body=dumps(body), as_json=False)
            return spec, body

        body["nonce"] = nonce
        creds = ctx.credentials
        if creds.uses_token:
            headers = self._headers(ctx, {"bfx-token": creds.token})
            return RequestSpec(method, ctx.url, headers, body=body, as_json=True), body

        payload = encode_v1_payload(body)
        headers = self._headers(ctx, {
            "X-BFX-APIKEY": creds.key,
            "X-BFX-PAYLOAD": payload,
            "X-BFX-SIGNATURE": sign_v1(payload, creds.secret),
        })
        return RequestSpec(method, ctx.url, headers, body=dumps(body), as_json=False), body


class V2Payload(PayloadBuilder):
    """v2: structured JSON body, signature over path + nonce + body."""

    version = ApiVersion.V2

    def build(self, ctx: "RequestContext", method: HttpMethod,
              authenticated: bool, nonce: str) -> Tuple[RequestSpec, dict]:
        body = dict(ctx.body)
        if not authenticated:
            protocol: Dict[str, str] = {}
        elif ctx.credentials.uses_token:
            protocol = {"bfx-token": ctx.credentials.token}
        else:
            protocol = {
                "bfx-nonce": nonce,
                "bfx-apikey": ctx.credentials.key,
                "bfx-signature": sign_v2(ctx.path, nonce, body, ctx.credentials.secret),
            }
        spec = RequestSpec(method, ctx.url, self._headers(ctx, protocol),
                           body=body, as_json=True)
        return spec, body


PAYLOAD_BUILDERS: Dict[ApiVersion, PayloadBuilder] = {
    ApiVersion.V1: V1Payload(),
    ApiVersion.V2: V2Payload(),
}


# ── Result ─────────────────────────────────────────────────────────────

@dataclass
class RequestResult:
    """Outcome of one transmission. ``response`` and ``error`` are exclusive."""
    context: "RequestContext"
    method: HttpMethod
    nonce: str
    spec: RequestSpec
    request_body: dict
    authenticated: bool
    response: Any = None
    error: Optional[BaseException] = None
    status: Optional[int] = None
    timing: Optional[Timing] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def request_path(self) -> str:
        return self.context.request_path

    def act_on_response(self, handler: Callable[[Any, Dict[str, Any]], Any]) -> "RequestResult":
        handler(self.response, {
            "requestBody": self.request_body,
            "requestPath": self.request_path,
        })
        return self

    def print_response(self, console: Optional[Console] = None) -> "RequestResult":
        console = console or Console()
        if isinstance(self.response, str):
            console.print(self.response)
        else:
            console.print_json(data=self.response)
        return self

    async def throttle(self, duration_ms: int) -> "RequestResult":
        await asyncio.sleep(duration_ms / 1000)
        return self


# ── Context ────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class RequestContext:
    path: str
    path_args: Optional[str]
    version: ApiVersion
    body: Dict[str, Any]
    options: HelperOptions
    http: HttpTransport = field(repr=False, compare=False)
    nonces: NonceFactory = field(default_factory=NonceFactory, repr=False, compare=False)

    @classmethod
    def configure(
        cls,
        path: str,
        body: Optional[Mapping[str, Any]] = None,
        options: Union[HelperOptions, Mapping[str, Any], None] = None,
        *,
        http: HttpTransport,
        defaults: Optional[HelperOptions] = None,
        nonces: Optional[NonceFactory] = None,
    ) -> "RequestContext":
        if not path:
            raise InvalidPath("Path is not set, unable to use the API without specifying an API path.")
        merged = (defaults or HelperOptions()).merged(options)
        clean_path, path_args = split_path(path)
        version = merged.version or infer_version(clean_path)
        return cls(
            path=clean_path,
            path_args=path_args,
            version=version,
            body=dict(body or {}),
            options=merged,
            http=http,
            nonces=nonces or NonceFactory(),
        )

    @property
    def credentials(self) -> Credentials:
        return self.options.credentials

    @property
    def payload(self) -> PayloadBuilder:
        return PAYLOAD_BUILDERS[self.version]

    @property
    def url(self) -> str:
        root = self.options.base_rest_url
        if not root.endswith("/"):
            root += "/"
        url = f"{root}{self.path}"
        if self.path_args:
            url += f"?{self.path_args}"
        return url

    @property
    def request_path(self) -> str:
        if self.path_args:
            return f"{self.path}?{self.path_args}"
        return self.path

    # --- Transmission ---

    async def send_get(self, authenticated: bool = False,
                       nonce: Optional[str] = None) -> RequestResult:
        return await self.transmit(HttpMethod.GET, authenticated, nonce)

    async def send_post(self, authenticated: bool = True,
                        nonce: Optional[str] = None) -> RequestResult:
        return await self.transmit(HttpMethod.POST, authenticated, nonce)

    async def transmit(self, method: Union[HttpMethod, str], authenticated: bool = False,
                       nonce: Optional[str] = None) -> RequestResult:
        """Sign and send; raises ``TransportError`` carrying the failed result."""
        method = HttpMethod(method)
        nonce = self.nonces.next(nonce)

        if authenticated and not self.credentials.is_usable:
            log.warning(
                "Authenticated request to %s attempted without credentials; "
                "performing it unauthenticated. Pass authenticated=False to "
                "silence this, or supply credentials via options or a "
                "credentials file.", self.path,
            )
            authenticated = False

        spec, sent_body = self.payload.build(self, method, authenticated, nonce)
        if self.options.verbose_output:
            log.info("Request payload: %s %s headers=%s body=%s",
                     spec.method.value, spec.url, spec.headers, spec.body)

        result = RequestResult(
            context=self, method=method, nonce=nonce, spec=spec,
            request_body=sent_body, authenticated=authenticated,
        )
        if self.options.performance:
            result.timing = Timing(started_ms=time_now_ms())

        try:
            raw = await self.http.send(spec)
            result.status = raw.status
            result.response = self._decode(raw.text, strict=not spec.as_json)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, orjson.JSONDecodeError) as e:
            result.error = e
            log.error("REST %s %s failed: %s", method.value, self.request_path, e)
            raise TransportError(f"{method.value} {self.request_path} failed: {e}",
                                 result=result, cause=e) from e
        finally:
            if result.timing is not None:
                result.timing.finished_ms = time_now_ms()

        if self.options.verbose_output:
            log.info("Response body: %s", raw.text)
        return result

    @staticmethod
    def _decode(text: str, strict: bool) -> Any:
        # v1 string-bodied calls must answer JSON; structured calls keep
        # non-JSON text as is
        if strict:
            return orjson.loads(text)
        if not text:
            return None
        try:
            return orjson.loads(text)
        except orjson.JSONDecodeError:
            return text

    async def throttle(self, duration_ms: int) -> "RequestContext":
        await asyncio.sleep(duration_ms / 1000)
        return self
