"""Strangler Fig gateway FastAPI application.

Responsibilities:
- Answer `GET /health` itself, without touching any upstream.
- Route every other request to the monolith, movies-service or events-service
  (see router.py) and forward it verbatim (see forwarder.py).
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse, Response

from strangler.logs import configure_logging, get_logger

from .config import GatewaySettings, load_settings
from .forwarder import Forwarder
from .router import RandomSource, Router

configure_logging()
LOG = get_logger(__name__)

HEALTH_BODY = "Strangler Fig Proxy is healthy"
PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def create_app(
    settings: Optional[GatewaySettings] = None,
    rng: Optional[RandomSource] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Build the gateway.

    Args:
        settings: resolved settings; read from the environment when omitted.
        rng: random source for the migration draw; a fresh `random.Random()`
            when omitted.
        transport: httpx transport for upstream calls (tests pass a
            `httpx.MockTransport`).

    Raises:
        ConfigError: an upstream URL is malformed.
    """
    settings = settings or load_settings()
    router = Router(settings, rng=rng)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # No gateway-side timeout: slow upstreams hold the request until they answer.
        async with httpx.AsyncClient(transport=transport, timeout=None, follow_redirects=False) as client:
            app.state.forwarder = Forwarder(client)
            LOG.info(
                "Strangler Fig Proxy started",
                extra={
                    "port": settings.port,
                    "monolith_url": settings.monolith_url,
                    "movies_service_url": settings.movies_service_url,
                    "events_service_url": settings.events_service_url,
                    "gradual_migration": settings.gradual_migration,
                    "movies_migration_percent": settings.movies_migration_percent,
                },
            )
            yield

    app = FastAPI(title="Strangler Fig Proxy", lifespan=lifespan)
    app.state.settings = settings
    app.state.router = router

    @app.get("/health", response_class=PlainTextResponse)
    def health() -> str:
        """Liveness only; says nothing about the upstreams."""
        return HEALTH_BODY

    @app.api_route("/{path:path}", methods=PROXY_METHODS)
    async def proxy(request: Request) -> Response:
        decision = router.route(request.url.path)
        LOG.info(
            "Routing request",
            extra={
                "method": request.method,
                "path": decision.path,
                "destination": decision.origin.value,
                "reason": decision.reason,
                "roll": decision.roll,
            },
        )
        return await request.app.state.forwarder.forward(request, router.origin_url(decision.origin))

    return app


def run() -> None:
    """Console entry point: serve the gateway on $PORT."""
    settings = load_settings()
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    run()
