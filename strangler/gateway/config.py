"""Gateway configuration.

Everything comes from environment variables and is read once at startup:

    PORT                      listening port (default 8000)
    MONOLITH_URL              monolith origin
    MOVIES_SERVICE_URL        new movies-service origin
    EVENTS_SERVICE_URL        events-service origin
    GRADUAL_MIGRATION         "true" turns on the movies traffic split
    MOVIES_MIGRATION_PERCENT  share of /api/movies traffic sent to movies-service

The resolved settings object is frozen: routing reads it from every request
handler, so nothing may change it after the app is built.
"""

from __future__ import annotations

import os
from typing import Mapping, Optional

import httpx
from pydantic import BaseModel, ConfigDict

from strangler.logs import get_logger

LOG = get_logger(__name__)

DEFAULT_PORT = 8000
DEFAULT_MONOLITH_URL = "http://localhost:8080"
DEFAULT_MOVIES_SERVICE_URL = "http://localhost:8081"
DEFAULT_EVENTS_SERVICE_URL = "http://localhost:8082"


class ConfigError(RuntimeError):
    """Raised when the gateway cannot start with the given environment."""


class GatewaySettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    port: int = DEFAULT_PORT
    monolith_url: str = DEFAULT_MONOLITH_URL
    movies_service_url: str = DEFAULT_MOVIES_SERVICE_URL
    events_service_url: str = DEFAULT_EVENTS_SERVICE_URL
    gradual_migration: bool = False
    movies_migration_percent: int = 0


def parse_origin(name: str, value: str) -> httpx.URL:
    """Parse an upstream base URL or raise ConfigError.

    Only absolute http(s) URLs with a host are accepted; anything else would
    fail on the first proxied request instead of at startup.
    """
    try:
        url = httpx.URL(value)
    except httpx.InvalidURL as exc:
        raise ConfigError(f"Failed to parse {name}: {exc}") from exc
    if url.scheme not in ("http", "https") or not url.host:
        raise ConfigError(f"Failed to parse {name}: expected an absolute http(s) URL, got {value!r}")
    return url


def _parse_percent(raw: str) -> int:
    try:
        percent = int(raw)
    except ValueError:
        LOG.warning(
            "Invalid MOVIES_MIGRATION_PERCENT value, defaulting to 0",
            extra={"value": raw},
        )
        return 0
    if percent < 0 or percent > 100:
        clamped = min(max(percent, 0), 100)
        LOG.warning(
            "MOVIES_MIGRATION_PERCENT out of range, clamping",
            extra={"value": percent, "clamped": clamped},
        )
        return clamped
    return percent


def _parse_port(raw: str) -> int:
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid PORT value: {raw!r}") from exc


def load_settings(environ: Optional[Mapping[str, str]] = None) -> GatewaySettings:
    """Resolve gateway settings from the environment.

    Raises:
        ConfigError: an upstream URL is malformed or PORT is not a number.
    """
    env = os.environ if environ is None else environ

    urls = {
        "monolith_url": env.get("MONOLITH_URL", DEFAULT_MONOLITH_URL),
        "movies_service_url": env.get("MOVIES_SERVICE_URL", DEFAULT_MOVIES_SERVICE_URL),
        "events_service_url": env.get("EVENTS_SERVICE_URL", DEFAULT_EVENTS_SERVICE_URL),
    }
    for field, value in urls.items():
        parse_origin(field.upper(), value)

    return GatewaySettings(
        port=_parse_port(env.get("PORT", str(DEFAULT_PORT))),
        gradual_migration=env.get("GRADUAL_MIGRATION", "false").strip().lower() == "true",
        movies_migration_percent=_parse_percent(env.get("MOVIES_MIGRATION_PERCENT", "0")),
        **urls,
    )
