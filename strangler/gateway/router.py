"""Path-based routing with a gradual migration split for the movies API.

Routing rules, first match wins:

1) /api/movies... -> movies-service for `movies_migration_percent` % of requests
   when gradual migration is on, monolith otherwise.
2) /api/events... -> events-service.
3) anything else  -> monolith.

Each /api/movies request draws a fresh number, so one client can land on
either origin from call to call. Traffic shifts in aggregate, not per session.
"""

from __future__ import annotations

import enum
import random
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from .config import GatewaySettings, parse_origin

MOVIES_PREFIX = "/api/movies"
EVENTS_PREFIX = "/api/events"


class RandomSource(Protocol):
    def randrange(self, stop: int) -> int: ...


class Origin(str, enum.Enum):
    MONOLITH = "monolith"
    MOVIES_SERVICE = "movies-service"
    EVENTS_SERVICE = "events-service"


@dataclass(frozen=True)
class RoutingDecision:
    path: str
    origin: Origin
    # None when no draw was needed.
    roll: Optional[int] = None
    reason: str = ""


class Router:
    def __init__(self, settings: GatewaySettings, rng: Optional[RandomSource] = None) -> None:
        self.settings = settings
        self.rng: RandomSource = rng if rng is not None else random.Random()
        self.origins = {
            Origin.MONOLITH: parse_origin("MONOLITH_URL", settings.monolith_url),
            Origin.MOVIES_SERVICE: parse_origin("MOVIES_SERVICE_URL", settings.movies_service_url),
            Origin.EVENTS_SERVICE: parse_origin("EVENTS_SERVICE_URL", settings.events_service_url),
        }

    def route(self, path: str) -> RoutingDecision:
        if path.startswith(MOVIES_PREFIX):
            return self._route_movies(path)
        if path.startswith(EVENTS_PREFIX):
            return RoutingDecision(path, Origin.EVENTS_SERVICE, reason="events")
        return RoutingDecision(path, Origin.MONOLITH, reason="default")

    def _route_movies(self, path: str) -> RoutingDecision:
        if not self.settings.gradual_migration:
            return RoutingDecision(path, Origin.MONOLITH, reason="migration disabled")
        roll = self.rng.randrange(100)
        if roll < self.settings.movies_migration_percent:
            return RoutingDecision(path, Origin.MOVIES_SERVICE, roll=roll, reason="migration")
        return RoutingDecision(path, Origin.MONOLITH, roll=roll, reason="migration")

    def origin_url(self, origin: Origin) -> httpx.URL:
        return self.origins[origin]
