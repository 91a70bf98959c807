"""LowLevelServer: maps JSON-RPC method names to the coroutines that answer them.

The bridge registers its `tools/*` handlers here. Sessions, the handshake and
HTTP are handled elsewhere; this module only turns one message into one answer.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel, ValidationError

from relay_mcp.context import RequestContext
from relay_mcp.exceptions import ProtocolError
from relay_mcp.types.common import ServerCapabilities
from relay_mcp.types.json_rpc import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    METHOD_NOT_FOUND,
    ErrorData,
    JSONRPCErrorResponse,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    JSONRPCResultResponse,
)

logger = logging.getLogger(__name__)

RequestHandler = Callable[[RequestContext, JSONRPCRequest], Awaitable[Any]]
NotificationHandler = Callable[[RequestContext, JSONRPCNotification], Awaitable[None]]

TOOL_METHODS = frozenset({"tools/list", "tools/call"})


async def _handle_ping(ctx: RequestContext, request: JSONRPCRequest) -> dict[str, Any]:
    return {}


def _to_result(value: Any) -> dict[str, Any]:
    if isinstance(value, BaseModel):
        return value.model_dump(by_alias=True, exclude_none=True)
    if isinstance(value, dict):
        return value
    return {}


class LowLevelServer:
    """Method table of an MCP server, plus the identity it reports on initialize.

    `ping` is answered out of the box. Anything else has to be registered:

        server = LowLevelServer(name="petstore", version="1.0")

        @server.request_handler("tools/list")
        async def list_tools(ctx: RequestContext, request: JSONRPCRequest):
            return ListToolsResult(tools=catalog.list_tools())
    """

    def __init__(self, *, name: str, version: str, instructions: str | None = None) -> None:
        self.name = name
        self.version = version
        self.instructions = instructions
        self._request_handlers: dict[str, RequestHandler] = {"ping": _handle_ping}
        self._notification_handlers: dict[str, NotificationHandler] = {}

    def request_handler(self, method: str) -> Callable[[RequestHandler], RequestHandler]:
        def register(fn: RequestHandler) -> RequestHandler:
            self._request_handlers[method] = fn
            return fn

        return register

    def notification_handler(self, method: str) -> Callable[[NotificationHandler], NotificationHandler]:
        def register(fn: NotificationHandler) -> NotificationHandler:
            self._notification_handlers[method] = fn
            return fn

        return register

    async def dispatch_request(self, ctx: RequestContext, request: JSONRPCRequest) -> JSONRPCResponse:
        """Answer one request. Handler failures become JSON-RPC errors, never exceptions."""
        handler = self._request_handlers.get(request.method)
        if handler is None:
            return self._error(request, ErrorData(code=METHOD_NOT_FOUND, message=f"Method not found: {request.method}"))
        try:
            value = await handler(ctx, request)
        except ProtocolError as exc:
            return self._error(request, exc.error)
        except ValidationError as exc:
            return self._error(request, ErrorData(code=INVALID_PARAMS, message="Invalid params", data=str(exc)))
        except Exception:
            logger.exception("Handler for %s failed", request.method)
            return self._error(request, ErrorData(code=INTERNAL_ERROR, message="Internal error"))
        return JSONRPCResultResponse(id=request.id, result=_to_result(value))

    async def dispatch_notification(self, ctx: RequestContext, notification: JSONRPCNotification) -> None:
        handler = self._notification_handlers.get(notification.method)
        if handler is None:
            logger.debug("No handler for notification %s", notification.method)
            return
        try:
            await handler(ctx, notification)
        except Exception:
            logger.exception("Notification handler for %s failed", notification.method)

    def get_capabilities(self) -> ServerCapabilities:
        """Advertise tools once either tool method is registered."""
        capabilities = ServerCapabilities()
        if TOOL_METHODS & self._request_handlers.keys():
            capabilities.tools = {"listChanged": True}
        return capabilities

    @staticmethod
    def _error(request: JSONRPCRequest, error: ErrorData) -> JSONRPCErrorResponse:
        return JSONRPCErrorResponse(id=request.id, error=error)
