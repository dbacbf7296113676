"""Shared runtime helpers: environment parsing and outbound HTTP clients."""

from __future__ import annotations

import os
from typing import Optional

import httpx

DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_READ_TIMEOUT = 30.0

_TRUTHY_VALUES = {"1", "true", "yes", "on"}


def env_str(name: str, default: str = "") -> str:
    """Read a string env var, stripping surrounding whitespace."""
    return (os.getenv(name, default) or default).strip()


def env_int(name: str, default: str) -> int:
    """Parse an integer env var using a string default value."""
    return int(os.getenv(name, default))


def env_float(name: str, default: str) -> float:
    """Parse a float env var using a string default value."""
    return float(os.getenv(name, default))


def env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in _TRUTHY_VALUES


def env_list(name: str, default: str = "") -> list[str]:
    """Parse a comma separated env var into a list of non-empty items."""
    raw = os.getenv(name, default) or ""
    return [item.strip() for item in raw.split(",") if item.strip()]


def default_http_timeout() -> httpx.Timeout:
    """Return the default timeout for outbound requests to storage and identity providers."""
    return httpx.Timeout(
        env_float("HTTP_CONNECT_TIMEOUT", str(DEFAULT_CONNECT_TIMEOUT)),
        read=env_float("HTTP_READ_TIMEOUT", str(DEFAULT_READ_TIMEOUT)),
    )


def build_http_client(
    user_agent: Optional[str] = None,
    transport: Optional[httpx.BaseTransport] = None,
) -> httpx.Client:
    """Build a Client with the service timeout defaults."""
    client_kwargs: dict = {"timeout": default_http_timeout()}
    if user_agent is not None:
        client_kwargs["headers"] = {"User-Agent": user_agent}
    if transport is not None:
        client_kwargs["transport"] = transport
    return httpx.Client(**client_kwargs)
