"""HMAC-SHA384 signing for the Bitfinex v1, v2 and WebSocket auth schemes.

All signatures are lowercase hex digests. JSON is serialized compactly with
orjson, the same bytes the exchange re-hashes on its side.
"""
from __future__ import annotations
import base64
import hashlib
import hmac
from typing import Any, Tuple

import orjson


def dumps(obj: Any) -> str:
    return orjson.dumps(obj).decode()


def hmac_sha384_hex(message: str, secret: str) -> str:
    return hmac.new(
        secret.encode("utf-8"),
        message.encode("utf-8"),
        hashlib.sha384,
    ).hexdigest()


def encode_v1_payload(body: dict) -> str:
    """base64(JSON(body)), sent as X-BFX-PAYLOAD."""
    return base64.b64encode(dumps(body).encode("utf-8")).decode("ascii")


def sign_v1(payload: str, secret: str) -> str:
    return hmac_sha384_hex(payload, secret)


def sign_v2(path: str, nonce: str, body: dict, secret: str) -> str:
    return hmac_sha384_hex(f"/api/{path}{nonce}{dumps(body)}", secret)


def sign_ws_auth(nonce: str, secret: str) -> Tuple[str, str]:
    """Return ``(authPayload, authSig)`` for the socket auth frame."""
    payload = f"AUTH{nonce}"
    return payload, hmac_sha384_hex(payload, secret)
