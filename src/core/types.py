from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, Optional


class ApiVersion(IntEnum):
    V1 = 1
    V2 = 2


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"


class AuthStatus(str, Enum):
    OK = "OK"
    FAILED = "FAILED"


@dataclass(frozen=True, slots=True)
class Credentials:
    key: Optional[str] = None
    secret: Optional[str] = None
    token: Optional[str] = None

    @property
    def uses_token(self) -> bool:
        return bool(self.token)

    @property
    def has_key_pair(self) -> bool:
        return bool(self.key and self.secret)

    @property
    def is_usable(self) -> bool:
        """True when either a token or a full key/secret pair is present."""
        return self.uses_token or self.has_key_pair


@dataclass(slots=True)
class RequestSpec:
    """Everything the HTTP transport needs to perform one call."""
    method: HttpMethod
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None        # dict when as_json, pre-serialized str otherwise
    as_json: bool = True


@dataclass(slots=True)
class RawResponse:
    status: int
    text: str
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class Timing:
    started_ms: int
    finished_ms: int = 0

    @property
    def elapsed_ms(self) -> int:
        return max(self.finished_ms - self.started_ms, 0)
