"""Layered helper options.

Options resolve in a fixed order, later layers winning on key collision::

    hard defaults < credentials file / env < defaults file < per-call options

``HelperOptions.merged`` applies one layer. Layers are plain dicts (as read
from ``defaults.json`` / ``defaults.yaml``) or other ``HelperOptions``; keys
may use the file spelling (``baseRestUrl``) or the field name
(``base_rest_url``). ``None`` values mean "not supplied" and never clear a
lower layer. A ``HelperOptions`` layer is a complete option set, so all of
its non-``None`` fields win; pass a dict to override only some keys.

``key`` and ``secret`` are applied as a pair: a layer carrying only one of
them leaves the lower layer's pair untouched.
"""
from __future__ import annotations
import logging
import os
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, List, Mapping, Optional, Union

import orjson
import yaml
from dotenv import load_dotenv

from core.types import ApiVersion, Credentials

log = logging.getLogger(__name__)

DEFAULT_REST_URL = "https://api.bitfinex.com/"
DEFAULT_WS_URL = "wss://api.bitfinex.com/ws/2"

ENV_KEY = "BFX_API_KEY"
ENV_SECRET = "BFX_API_SECRET"

# File spelling -> field name
_ALIASES: Dict[str, str] = {
    "baseRestUrl": "base_rest_url",
    "baseWsUrl": "base_ws_url",
    "verboseOutput": "verbose_output",
    "optionalHeaders": "optional_headers",
    "timeout": "timeout_s",
}


@dataclass(frozen=True)
class HelperOptions:
    key: Optional[str] = None
    secret: Optional[str] = None
    token: Optional[str] = None
    base_rest_url: str = DEFAULT_REST_URL
    base_ws_url: str = DEFAULT_WS_URL
    verbose_output: bool = False
    dms: bool = False                       # cancel open orders on disconnect (WS only)
    filter: Optional[List[str]] = None      # WS auth channel filters
    performance: bool = False
    version: Optional[ApiVersion] = None    # force instead of inferring from path
    optional_headers: Dict[str, str] = field(default_factory=dict)
    timeout_s: float = 30.0

    @property
    def credentials(self) -> Credentials:
        if self.token:
            return Credentials(token=self.token)
        if self.key and self.secret:
            return Credentials(key=self.key, secret=self.secret)
        return Credentials()

    def merged(self, layer: Union["HelperOptions", Mapping[str, Any], None]) -> "HelperOptions":
        """Return a copy with *layer* applied on top of these options."""
        if layer is None:
            return self
        if isinstance(layer, HelperOptions):
            # a full option set: every field carries a value
            layer = {f.name: getattr(layer, f.name) for f in fields(layer)}
        return replace(self, **normalize_keys(layer))


_HARD_DEFAULTS = HelperOptions()
_FIELD_NAMES = {f.name for f in fields(HelperOptions)}


def normalize_keys(layer: Mapping[str, Any]) -> Dict[str, Any]:
    """Map file keys to field names, dropping ``None`` and unknown keys."""
    out: Dict[str, Any] = {}
    for raw_key, value in layer.items():
        name = _ALIASES.get(raw_key, raw_key)
        if name not in _FIELD_NAMES:
            log.debug("Ignoring unknown option %r", raw_key)
            continue
        if value is None:
            continue
        if name == "version":
            value = ApiVersion(int(value))
        elif name == "optional_headers":
            value = {str(k): str(v) for k, v in dict(value).items()}
        elif name == "filter":
            value = list(value)
        out[name] = value

    # key and secret only travel together
    if ("key" in out) != ("secret" in out):
        log.debug("Ignoring incomplete key/secret pair in option layer")
        out.pop("key", None)
        out.pop("secret", None)
    return out


def read_config_file(path: str) -> Dict[str, Any]:
    """Read a JSON or YAML mapping. Raises OSError / ValueError on failure."""
    with open(path, "rb") as f:
        raw = f.read()
    if path.endswith((".yaml", ".yml")):
        data = yaml.safe_load(raw) or {}
    else:
        data = orjson.loads(raw)
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping, got {type(data).__name__}")
    return data


def load_credentials(path: str, suppress_warnings: bool = False) -> Dict[str, str]:
    """Load ``{key, secret}`` from *path*, falling back to the environment.

    Missing credentials are not an error; only public endpoints will work.
    """
    try:
        data = read_config_file(path)
        if data.get("key") and data.get("secret"):
            return {"key": data["key"], "secret": data["secret"]}
        raise ValueError("file does not contain both 'key' and 'secret'")
    except (OSError, ValueError, yaml.YAMLError) as e:
        load_dotenv()
        key = os.environ.get(ENV_KEY, "")
        secret = os.environ.get(ENV_SECRET, "")
        if key and secret:
            return {"key": key, "secret": secret}
        if not suppress_warnings:
            log.warning("Failed to load credentials from file @ path: %s. "
                        "Only public endpoints can be used. (%s)", path, e)
        return {}


def load_defaults(path: str) -> Dict[str, Any]:
    """Load the per-request defaults file; a missing or broken file is ignored."""
    try:
        return read_config_file(path)
    except (OSError, ValueError, yaml.YAMLError) as e:
        log.debug("No defaults loaded from %s: %s", path, e)
        return {}


def resolve_options(credentials_path: str = "credentials.json",
                    defaults_path: str = "defaults.json",
                    suppress_warnings: bool = False) -> HelperOptions:
    """Build the helper-wide options from the hard defaults and both files."""
    options = _HARD_DEFAULTS
    options = options.merged(load_credentials(credentials_path, suppress_warnings))
    options = options.merged(load_defaults(defaults_path))
    return options
