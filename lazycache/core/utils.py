"""Configuration and address helpers shared by the cache and its callers."""

from __future__ import annotations

import os
import re
from datetime import timedelta
from urllib.parse import urlparse

_DURATION_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?|\.\d+)\s*(ms|s|m|h)?\s*$", re.IGNORECASE)
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}
_DEFAULT_PORTS = {"http": 80, "https": 443}


def parse_duration(value: str | float | int | timedelta) -> float:
    """Normalise a duration to seconds.

    Accepts numbers (seconds), ``timedelta`` and strings such as ``"10"``,
    ``"2.5s"``, ``"500ms"``, ``"2m"`` or ``"1h"``. Negative durations are rejected.
    """
    if isinstance(value, timedelta):
        seconds = value.total_seconds()
    elif isinstance(value, bool):
        raise TypeError("duration must be a number, timedelta or string")
    elif isinstance(value, (int, float)):
        seconds = float(value)
    elif isinstance(value, str):
        match = _DURATION_PATTERN.match(value)
        if not match:
            raise ValueError(f"invalid duration: {value!r}")
        unit = (match.group(2) or "s").lower()
        seconds = float(match.group(1)) * _UNIT_SECONDS[unit]
    else:
        raise TypeError("duration must be a number, timedelta or string")

    if seconds < 0:
        raise ValueError(f"duration must not be negative: {value!r}")
    return seconds


def lifetime_from_env(default: float = 0.0, env_name: str = "LAZYCACHE_LIFETIME") -> float:
    """Read an entry lifetime from the environment, falling back to ``default``."""
    raw = os.getenv(env_name, "").strip()
    if not raw:
        return default
    return parse_duration(raw)


def split_host_port(address: str) -> tuple[str, int]:
    """Split ``host:port`` (or ``[v6addr]:port``) into its parts."""
    address = (address or "").strip()
    if address.startswith("["):
        host, sep, rest = address[1:].partition("]")
        if not sep or not rest.startswith(":"):
            raise ValueError(f"invalid address: {address!r}")
        port_text = rest[1:]
    else:
        host, sep, port_text = address.rpartition(":")
        if not sep or ":" in host:
            raise ValueError(f"invalid address: {address!r}")

    if not port_text.isdigit() or not 0 < int(port_text) < 65536:
        raise ValueError(f"invalid port in address: {address!r}")
    return host or "localhost", int(port_text)


def origin_of(url: str) -> str:
    """Return ``scheme://host[:port]`` for an http(s) URL, omitting default ports."""
    parsed = urlparse(url)
    scheme = parsed.scheme.lower()
    if scheme not in _DEFAULT_PORTS:
        raise ValueError(f"Only http/https URLs are supported: {url!r}")
    host = (parsed.hostname or "").lower()
    if not host:
        raise ValueError(f"Missing hostname: {url!r}")
    if ":" in host:
        host = f"[{host}]"
    try:
        port = parsed.port
    except ValueError as exc:
        raise ValueError(f"invalid port in URL: {url!r}") from exc
    if port is None or port == _DEFAULT_PORTS[scheme]:
        return f"{scheme}://{host}"
    return f"{scheme}://{host}:{port}"
