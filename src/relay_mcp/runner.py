"""Glue between a LowLevelServer and the HTTP sessions that feed it.

`ServerRunner` holds the application lifespan open (the proxied API client
typically lives there). `RunningServer` answers `initialize` itself and hands
every other message to the server's method table.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any

from pydantic import ValidationError

from relay_mcp.context import RequestContext, ResponseSink
from relay_mcp.server import LowLevelServer
from relay_mcp.session import SessionInfo
from relay_mcp.types.base import LATEST_PROTOCOL_VERSION, SUPPORTED_PROTOCOL_VERSIONS
from relay_mcp.types.initialize import (
    INITIALIZE_METHOD,
    INITIALIZED_NOTIFICATION,
    InitializeRequestParams,
    InitializeResult,
)
from relay_mcp.types.json_rpc import (
    INVALID_PARAMS,
    JSONRPCMessage,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResultResponse,
    error_response,
)

logger = logging.getLogger(__name__)

Lifespan = Callable[[LowLevelServer], AbstractAsyncContextManager[Any]]


@asynccontextmanager
async def _no_state(server: LowLevelServer) -> AsyncIterator[dict[str, Any]]:
    yield {}


def negotiate_protocol_version(requested: str) -> str:
    """Echo a supported version back; answer anything else with the newest one we speak."""
    return requested if requested in SUPPORTED_PROTOCOL_VERSIONS else LATEST_PROTOCOL_VERSION


class ServerRunner:
    """Owns the lifespan of one LowLevelServer.

        async with ServerRunner(server, lifespan=open_api_client).run() as running:
            handler = StreamableHTTPHandler(running)
    """

    def __init__(self, server: LowLevelServer, *, lifespan: Lifespan | None = None) -> None:
        self.server = server
        self._lifespan = lifespan or _no_state

    @asynccontextmanager
    async def run(self) -> AsyncIterator[RunningServer]:
        async with self._lifespan(self.server) as server_state:
            logger.debug("Server %s %s is running", self.server.name, self.server.version)
            yield RunningServer(self.server, server_state)


class RunningServer:
    """Shared by every session of a handler. Holds no per-session state."""

    def __init__(self, server: LowLevelServer, server_state: Any) -> None:
        self._server = server
        self._server_state = server_state

    @property
    def server_state(self) -> Any:
        return self._server_state

    async def handle_message(
        self,
        sink: ResponseSink,
        message: JSONRPCMessage,
        *,
        session: SessionInfo | None = None,
    ) -> SessionInfo | None:
        """Answer one client message through `sink`.

        Returns the negotiated SessionInfo when `message` was a successful
        `initialize`, and None in every other case.
        """
        if isinstance(message, JSONRPCRequest):
            if message.method == INITIALIZE_METHOD:
                return await self._initialize(sink, message)
            response = await self._server.dispatch_request(self._context(sink, session, message.id), message)
            await sink.send_result(response)
        elif isinstance(message, JSONRPCNotification):
            if message.method != INITIALIZED_NOTIFICATION:
                await self._server.dispatch_notification(self._context(sink, session, "notification"), message)
        else:
            # Client responses: the bridge never sends requests, so nothing waits for them.
            logger.debug("Ignoring client response %r", getattr(message, "id", None))
        return None

    def _context(self, sink: ResponseSink, session: SessionInfo | None, request_id: Any) -> RequestContext:
        return RequestContext(server_state=self._server_state, session=session, request_id=request_id, _sink=sink)

    async def _initialize(self, sink: ResponseSink, request: JSONRPCRequest) -> SessionInfo | None:
        try:
            params = InitializeRequestParams.model_validate(request.params or {})
        except ValidationError as exc:
            await sink.send_result(
                error_response(INVALID_PARAMS, "Invalid initialize params", request_id=request.id, data=str(exc))
            )
            return None

        protocol_version = negotiate_protocol_version(params.protocol_version)
        result = InitializeResult.model_validate(
            {
                "protocolVersion": protocol_version,
                "capabilities": self._server.get_capabilities().model_dump(by_alias=True, exclude_none=True),
                "serverInfo": {"name": self._server.name, "version": self._server.version},
                "instructions": self._server.instructions,
            }
        )
        await sink.send_result(
            JSONRPCResultResponse(id=request.id, result=result.model_dump(by_alias=True, exclude_none=True))
        )
        return SessionInfo(
            client_info=params.client_info,
            client_capabilities=params.capabilities,
            protocol_version=protocol_version,
        )
