from collections.abc import AsyncIterator
from typing import Any

import anyio
import httpx
import pytest
import sse_starlette
from packaging import version

from relay_mcp.context import RequestContext
from relay_mcp.exceptions import APIRequestError
from relay_mcp.runner import RunningServer, ServerRunner
from relay_mcp.server import LowLevelServer
from relay_mcp.settings import TransportSettings
from relay_mcp.tools import ToolCallResponse, register_tool_handlers
from relay_mcp.transport.httphandler import StreamableHTTPHandler
from relay_mcp.transport.starlette import create_starlette_app
from relay_mcp.types.json_rpc import JSONRPCRequest
from relay_mcp.types.tools import JsonSchema, Tool

SSE_STARLETTE_VERSION = version.parse(sse_starlette.__version__)
NEEDS_RESET = SSE_STARLETTE_VERSION < version.parse("3.0.0")

# More than a per-request response channel holds.
CHATTY_NOTIFICATIONS = 20


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_sse_app_status():
    """Reset sse-starlette's global AppStatus singleton before each test.

    AppStatus.should_exit_event is a global event that gets bound to an event
    loop. Only needed for sse-starlette < 3.0.0.
    """
    if not NEEDS_RESET:
        yield
        return

    from sse_starlette.sse import AppStatus

    AppStatus.should_exit_event = None  # type: ignore[attr-defined]
    yield
    AppStatus.should_exit_event = None  # type: ignore[attr-defined]


class FakeToolProvider:
    """Stands in for the OpenAPI-backed catalog."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self._tools = [
            Tool(
                name="getPetById",
                description="Find pet by ID",
                input_schema=JsonSchema(properties={"petId": {"type": "integer"}}, required=["petId"]),
            ),
            Tool(
                name="deletePet",
                description="Deletes a pet",
                input_schema=JsonSchema(properties={"petId": {"type": "integer"}}, required=["petId"]),
            ),
        ]

    def list_tools(self) -> list[Tool]:
        return list(self._tools)

    def has_tool(self, name: str) -> bool:
        return any(tool.name == name for tool in self._tools)

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> ToolCallResponse:
        self.calls.append((name, arguments))
        if name == "deletePet":
            raise APIRequestError("Request failed with status 503", status_code=503, response_data={"detail": "down"})
        return ToolCallResponse(
            status=200,
            data={"id": arguments.get("petId"), "name": "Rex"},
            headers={"content-type": "application/json"},
        )


def make_server(provider: FakeToolProvider | None = None, gate: anyio.Event | None = None) -> LowLevelServer:
    """A server exposing the fake catalog plus two helpers for transport tests."""
    server = LowLevelServer(name="test-server", version="0.1.0")
    register_tool_handlers(server, provider or FakeToolProvider())

    @server.request_handler("test/progress")
    async def handle_progress(ctx: RequestContext, request: JSONRPCRequest) -> dict[str, Any]:
        await ctx.send_notification("notifications/progress", {"progress": 1, "total": 1})
        return {"done": True}

    @server.request_handler("test/blocking")
    async def handle_blocking(ctx: RequestContext, request: JSONRPCRequest) -> dict[str, Any]:
        assert gate is not None
        await gate.wait()
        return {"done": True}

    @server.request_handler("test/chatty")
    async def handle_chatty(ctx: RequestContext, request: JSONRPCRequest) -> dict[str, Any]:
        assert gate is not None
        await gate.wait()
        for n in range(CHATTY_NOTIFICATIONS):
            await ctx.send_notification("notifications/progress", {"progress": n, "total": CHATTY_NOTIFICATIONS})
        return {"done": True}

    return server


@pytest.fixture
def settings() -> TransportSettings:
    return TransportSettings(session_idle_timeout=None)


@pytest.fixture
def provider() -> FakeToolProvider:
    return FakeToolProvider()


@pytest.fixture
async def gate() -> anyio.Event:
    return anyio.Event()


@pytest.fixture
async def running(provider: FakeToolProvider, gate: anyio.Event) -> AsyncIterator[RunningServer]:
    runner = ServerRunner(make_server(provider, gate))
    async with runner.run() as running_server:
        yield running_server


@pytest.fixture
async def handler(running: RunningServer, settings: TransportSettings) -> AsyncIterator[StreamableHTTPHandler]:
    http_handler = StreamableHTTPHandler(running, settings=settings)
    async with http_handler.run():
        yield http_handler


@pytest.fixture
async def client(
    handler: StreamableHTTPHandler, settings: TransportSettings
) -> AsyncIterator[httpx.AsyncClient]:
    """An httpx client wired to the Starlette app.

    httpx's ASGITransport doesn't trigger lifespan, so the handler is started
    by its fixture and set on app.state by hand.
    """
    app = create_starlette_app(make_server(), settings=settings)
    app.state.handler = handler
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as http_client:
        yield http_client
