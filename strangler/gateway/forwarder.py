"""Reverse-proxy forwarding to the upstream origins.

Why is this its own module?
- Route handlers only decide *where* a request goes; this module knows *how*.
- One httpx.AsyncClient is shared by all requests (connection pooling,
  keep-alive). It is created by the app lifespan and closed on shutdown.

Nothing is retried here. If an upstream is down the caller gets a 502 and the
error is logged; retries and circuit-breaking belong to the mesh in front of us.
"""

from __future__ import annotations

from typing import Iterable

import httpx
from fastapi import Request
from fastapi.responses import PlainTextResponse, Response, StreamingResponse
from starlette.background import BackgroundTask

from strangler.logs import get_logger

LOG = get_logger(__name__)

# RFC 7230 section 6.1: meaningful for a single connection only.
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "proxy-connection",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)


def join_url_path(base_path: str, path: str) -> str:
    """Join the origin's base path and the inbound path with exactly one slash."""
    base_slash = base_path.endswith("/")
    path_slash = path.startswith("/")
    if base_slash and path_slash:
        return base_path + path[1:]
    if not base_slash and not path_slash:
        return base_path + "/" + path
    return base_path + path


def build_upstream_url(origin: httpx.URL, path: str, query: str) -> httpx.URL:
    """`path` must still be percent-encoded; existing %xx escapes are kept as-is."""
    url = origin.copy_with(path=join_url_path(origin.path, path))
    if query:
        url = url.copy_with(query=query.encode("latin-1"))
    return url


def raw_request_path(request: Request) -> str:
    """The path as the client sent it.

    request.url.path is already percent-decoded, so %2F, %3F and %23 would
    turn into path, query and fragment delimiters upstream.
    """
    raw_path = request.scope.get("raw_path")
    if raw_path:
        return raw_path.decode("latin-1")
    return request.url.path


def _filter_headers(items: Iterable[tuple[str, str]]) -> list[tuple[str, str]]:
    return [(k, v) for k, v in items if k.lower() not in HOP_BY_HOP_HEADERS]


def build_upstream_headers(request: Request) -> list[tuple[str, str]]:
    """Copy end-to-end headers; drop Host so httpx sets the upstream's."""
    headers = [(k, v) for k, v in _filter_headers(request.headers.items()) if k.lower() != "host"]
    if request.client is not None:
        prior = request.headers.get("x-forwarded-for")
        forwarded = f"{prior}, {request.client.host}" if prior else request.client.host
        headers = [(k, v) for k, v in headers if k.lower() != "x-forwarded-for"]
        headers.append(("x-forwarded-for", forwarded))
    return headers


class Forwarder:
    def __init__(self, client: httpx.AsyncClient) -> None:
        self.client = client

    async def forward(self, request: Request, origin: httpx.URL) -> Response:
        """Send `request` to `origin` and stream the upstream response back.

        Returns a 502 response when the origin cannot be reached.
        """
        url = build_upstream_url(origin, raw_request_path(request), request.url.query)
        upstream_request = self.client.build_request(
            request.method,
            url,
            headers=build_upstream_headers(request),
            content=await request.body(),
        )
        try:
            upstream = await self.client.send(upstream_request, stream=True)
        except httpx.HTTPError as exc:
            LOG.error(
                "Upstream request failed",
                extra={"method": request.method, "url": str(url), "error": str(exc)},
            )
            return PlainTextResponse("Bad Gateway", status_code=502)

        # aiter_raw keeps the body exactly as sent (no content decoding), so
        # Content-Encoding and Content-Length stay valid.
        response = StreamingResponse(
            upstream.aiter_raw(),
            status_code=upstream.status_code,
            background=BackgroundTask(upstream.aclose),
        )
        # Raw pairs keep repeated headers such as Set-Cookie.
        response.raw_headers = [
            (k, v) for k, v in upstream.headers.raw if k.decode("latin-1").lower() not in HOP_BY_HOP_HEADERS
        ]
        return response
