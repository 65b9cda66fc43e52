"""Gateway package — signing, request lifecycle and transports.

Re-exports the public surface so consumers can write::

    from gateway import ApiHelper, RequestContext, TransportError
"""
from gateway.base import HttpTransport, WsTransport, WsConnection
from gateway.errors import (
    HelperError,
    InvalidPath,
    UnresolvedVersion,
    MissingCredentials,
    AuthenticationFailed,
    RateLimited,
    TransportError,
)
from gateway.request import RequestContext, RequestResult, V1Payload, V2Payload
from gateway.ws import WsSession, build_auth_frame, open_session
from gateway.helper import ApiHelper

__all__ = [
    "ApiHelper",
    "RequestContext",
    "RequestResult",
    "V1Payload",
    "V2Payload",
    "WsSession",
    "build_auth_frame",
    "open_session",
    "HttpTransport",
    "WsTransport",
    "WsConnection",
    "HelperError",
    "InvalidPath",
    "UnresolvedVersion",
    "MissingCredentials",
    "AuthenticationFailed",
    "RateLimited",
    "TransportError",
]
