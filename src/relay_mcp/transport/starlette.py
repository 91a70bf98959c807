"""Starlette adapter - thin wrapper around StreamableHTTPHandler.

This is the only module of the transport with a Starlette dependency. It
converts HTTP requests and responses to and from the framework-agnostic
StreamableHTTPHandler.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any

import anyio
from sse_starlette import EventSourceResponse
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route
from starlette.types import ASGIApp, Receive, Scope, Send

from relay_mcp.exceptions import ProtocolError
from relay_mcp.runner import Lifespan, ServerRunner
from relay_mcp.server import LowLevelServer
from relay_mcp.settings import TransportSettings
from relay_mcp.transport.event_store import EventStore
from relay_mcp.transport.http_body import read_request_body
from relay_mcp.transport.httphandler import (
    AcceptedResponse,
    ClosedResponse,
    ErrorResult,
    JSONResult,
    PushStream,
    SSEStream,
    StreamableHTTPHandler,
)
from relay_mcp.transport.registry import SessionRegistry
from relay_mcp.transport.sink import SinkEvent
from relay_mcp.types.json_rpc import INTERNAL_ERROR, dump_message, error_response

logger = logging.getLogger(__name__)

MCP_SESSION_ID_HEADER = "Mcp-Session-Id"
LAST_EVENT_ID_HEADER = "Last-Event-Id"
TRANSPORT_NAME = "http"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": f"Content-Type, Accept, {MCP_SESSION_ID_HEADER}, {LAST_EVENT_ID_HEADER}",
    "Access-Control-Expose-Headers": MCP_SESSION_ID_HEADER,
}


class CORSMiddleware(BaseHTTPMiddleware):
    """Adds the CORS headers to every response and answers preflight requests itself."""

    def __init__(self, app: ASGIApp, headers: dict[str, str] | None = None):
        super().__init__(app)
        self.headers = headers or CORS_HEADERS

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        if request.method == "OPTIONS":
            return Response(status_code=200, headers=self.headers)

        response = await call_next(request)
        response.headers.update(self.headers)
        return response


def _session_headers(session_id: str | None) -> dict[str, str]:
    return {MCP_SESSION_ID_HEADER: session_id} if session_id else {}


def _format_sse_event(event: SinkEvent) -> dict[str, Any]:
    sse: dict[str, Any] = {"event": "message", "data": json.dumps(dump_message(event.message))}
    if event.event_id is not None:
        sse["id"] = event.event_id
    return sse


class ClosingEventSourceResponse(EventSourceResponse):
    """EventSourceResponse that awaits `on_close` once the exchange is over.

    The callback also runs when the client goes away before the body
    generator was ever started, which a `finally` in the generator misses.
    """

    def __init__(self, content: Any, *, on_close: Callable[[], Awaitable[None]], **kwargs: Any) -> None:
        super().__init__(content, **kwargs)
        self._on_close = on_close

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            with anyio.CancelScope(shield=True):
                await self._on_close()


def _request_stream_response(result: SSEStream) -> EventSourceResponse:
    async def generate() -> AsyncIterator[dict[str, Any]]:
        try:
            yield _format_sse_event(result.first_event)
            async for event in result.event_stream:
                yield _format_sse_event(event)
        except (anyio.BrokenResourceError, anyio.ClosedResourceError):
            logger.debug("Response stream of session %s closed early", result.session_id)

    async def close_stream() -> None:
        result.event_stream.close()

    return ClosingEventSourceResponse(generate(), on_close=close_stream, headers=_session_headers(result.session_id))


def _push_stream_response(result: PushStream) -> EventSourceResponse:
    async def generate() -> AsyncIterator[dict[str, Any]]:
        try:
            async for event in result.event_stream:
                yield _format_sse_event(event)
        except Exception:
            # Headers are already out; all that is left to do is log.
            logger.exception("Push stream of session %s failed", result.session_id)

    async def detach() -> None:
        await result.session.detach_stream(result.event_stream)

    logger.debug("Push stream opened for session %s (%d replayed)", result.session_id, result.replayed)
    return ClosingEventSourceResponse(generate(), on_close=detach, headers=_session_headers(result.session_id))


def to_response(result: AcceptedResponse | JSONResult | SSEStream | PushStream | ClosedResponse | ErrorResult) -> Response:
    """Turn a handler result into a Starlette response."""
    match result:
        case AcceptedResponse(session_id=sid):
            return Response(status_code=202, headers=_session_headers(sid))
        case JSONResult(body=body, session_id=sid, status_code=status_code):
            return JSONResponse(dump_message(body), status_code=status_code, headers=_session_headers(sid))
        case SSEStream():
            return _request_stream_response(result)
        case PushStream():
            return _push_stream_response(result)
        case ClosedResponse():
            return Response(status_code=200)
        case ErrorResult(body=body, status_code=status_code):
            return JSONResponse(dump_message(body), status_code=status_code)
    raise TypeError(f"Unexpected handler result: {result!r}")


def create_starlette_app(
    server: LowLevelServer,
    *,
    settings: TransportSettings | None = None,
    event_store: EventStore | None = None,
    registry: SessionRegistry | None = None,
    lifespan: Lifespan | None = None,
) -> Starlette:
    """Create a Starlette ASGI app serving `server` over streamable HTTP.

    Usage:
        server = LowLevelServer(name="my-server", version="1.0")
        register_tool_handlers(server, provider)

        app = create_starlette_app(server)
        uvicorn.run(app, host="0.0.0.0", port=3000)
    """
    settings = settings or TransportSettings()

    @asynccontextmanager
    async def app_lifespan(app: Starlette) -> AsyncIterator[None]:
        runner = ServerRunner(server, lifespan=lifespan)
        async with runner.run() as running:
            handler = StreamableHTTPHandler(running, event_store=event_store, registry=registry, settings=settings)
            async with handler.run():
                app.state.handler = handler
                yield

    async def handle_mcp(request: Request) -> Response:
        handler: StreamableHTTPHandler = request.app.state.handler
        # An empty header counts as no header.
        session_id = request.headers.get(MCP_SESSION_ID_HEADER) or None
        logger.debug("Received %s request to %s", request.method, settings.path)

        try:
            if request.method == "POST":
                try:
                    body = await read_request_body(request, max_body_bytes=settings.max_body_bytes)
                except ProtocolError as exc:
                    return to_response(ErrorResult.from_exception(exc))
                result = await handler.handle_post(session_id, body)
            elif request.method == "GET":
                result = await handler.handle_get(session_id, request.headers.get(LAST_EVENT_ID_HEADER))
            elif request.method == "DELETE":
                result = await handler.handle_delete(session_id)
            else:
                return Response(status_code=405, headers={"Allow": "GET, POST, DELETE"})
            return to_response(result)
        except Exception as exc:
            logger.exception("HTTP request handling error")
            body = error_response(INTERNAL_ERROR, "Internal error", data=str(exc))
            return JSONResponse(dump_message(body), status_code=500)

    async def handle_health(request: Request) -> Response:
        return JSONResponse({"status": "ok", "transport": TRANSPORT_NAME})

    return Starlette(
        lifespan=app_lifespan,
        routes=[
            Route(settings.path, handle_mcp, methods=["GET", "POST", "DELETE"]),
            Route(settings.health_path, handle_health, methods=["GET"]),
        ],
        middleware=[Middleware(CORSMiddleware)],
    )
