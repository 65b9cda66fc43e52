"""Exception hierarchy for the API helper.

Configuration mistakes (``InvalidPath``, ``UnresolvedVersion``) are also
``ValueError`` so generic callers can catch them as bad arguments.
"""
from __future__ import annotations
from typing import Any, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from gateway.request import RequestResult


class HelperError(Exception):
    """Base class for all helper errors."""


class InvalidPath(HelperError, ValueError):
    """No API path was given."""


class UnresolvedVersion(HelperError, ValueError):
    """The path does not start with a known version segment (v1/, v2/)."""


class MissingCredentials(HelperError):
    """Neither a token nor a key/secret pair is available for a socket session."""


class AuthenticationFailed(HelperError):
    """The socket auth response was not OK. ``frame`` is the raw response."""

    def __init__(self, message: str, frame: Optional[dict] = None):
        super().__init__(message)
        self.frame = frame or {}


class RateLimited(AuthenticationFailed):
    """Socket auth was refused with ``rate: limit`` and the retry was refused too."""


class TransportError(HelperError):
    """Network-level failure.

    For REST calls ``result`` is the failed ``RequestResult``; inspect
    ``result.error`` for the underlying exception.
    """

    def __init__(self, message: str, result: Optional["RequestResult"] = None,
                 cause: Any = None):
        super().__init__(message)
        self.result = result
        self.cause = cause
