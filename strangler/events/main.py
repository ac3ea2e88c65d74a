"""events-service FastAPI application.

Responsibilities:
- Accept movie, user and payment events over HTTP and publish each to its
  own Kafka topic before answering.
- Run one background consumer per topic that logs what lands there.

The consumers are decoupled from the HTTP request cycle: a 201 means the
broker accepted the event, not that a consumer has read it.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from strangler.logs import configure_logging, get_logger

from .config import EventsSettings, load_settings
from .consumer import ConsumerPool
from .models import EVENT_TOPICS, Event, MovieEvent, PaymentEvent, UserEvent
from .producer import EventPublisher, PublishError

configure_logging()
LOG = get_logger(__name__)


def get_publisher(request: Request) -> EventPublisher:
    return request.app.state.publisher


async def ingest(request: Request, model: type[Event], publisher: EventPublisher) -> JSONResponse:
    """Decode the body as `model`, publish it, and answer 201.

    - 400 if the body is not valid JSON for `model` (nothing is published)
    - 500 if the broker does not acknowledge the write (no retry)
    """
    topic = EVENT_TOPICS[model]
    body = await request.body()
    try:
        event = model.model_validate_json(body)
    except ValidationError as e:
        LOG.info("Rejected event", extra={"topic": topic, "errors": e.error_count()})
        raise HTTPException(
            status_code=400,
            detail=[{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()],
        )

    payload = event.model_dump_json().encode("utf-8")
    try:
        await run_in_threadpool(publisher.publish, topic, payload)
    except PublishError as e:
        LOG.error("Failed to write message to Kafka", extra={"topic": topic, "error": str(e)})
        raise HTTPException(status_code=500, detail="Failed to write message to Kafka")

    LOG.info("Produced message", extra={"topic": topic, "payload": payload.decode("utf-8")})
    return JSONResponse(status_code=201, content={"status": "success"})


def create_app(
    settings: Optional[EventsSettings] = None,
    publisher: Optional[EventPublisher] = None,
    consumers: Optional[ConsumerPool] = None,
) -> FastAPI:
    """Build the events service.

    `publisher` and `consumers` are created from `settings` when omitted.
    The publisher is built eagerly; the consumer threads only start when the
    app's lifespan begins.
    """
    settings = settings or load_settings()
    publisher = publisher or EventPublisher(settings)
    consumers = consumers or ConsumerPool(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        LOG.info("Events service starting", extra={"port": settings.port, "brokers": settings.bootstrap_servers})
        consumers.start()
        try:
            yield
        finally:
            consumers.stop()
            consumers.join(timeout=5)
            publisher.close()
            LOG.info("Events service stopped")

    app = FastAPI(title="Events Service", lifespan=lifespan)
    app.state.settings = settings
    app.state.publisher = publisher
    app.state.consumers = consumers

    @app.get("/api/events/health")
    def health() -> dict[str, bool]:
        """Process liveness; does not check the broker."""
        return {"status": True}

    @app.post("/api/events/movie", status_code=201)
    async def movie_event(request: Request, publisher: EventPublisher = Depends(get_publisher)):
        return await ingest(request, MovieEvent, publisher)

    @app.post("/api/events/user", status_code=201)
    async def user_event(request: Request, publisher: EventPublisher = Depends(get_publisher)):
        return await ingest(request, UserEvent, publisher)

    @app.post("/api/events/payment", status_code=201)
    async def payment_event(request: Request, publisher: EventPublisher = Depends(get_publisher)):
        return await ingest(request, PaymentEvent, publisher)

    return app


def run() -> None:
    """Console entry point: serve the events API and consumers on $PORT."""
    settings = load_settings()
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    run()
