"""Tool catalog collaborator and the tools/list, tools/call handlers that adapt it.

The catalog itself (OpenAPI parsing, request building, auth) lives outside this
package; the transport only needs something that satisfies ToolProvider.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from relay_mcp.context import RequestContext
from relay_mcp.exceptions import RelayError
from relay_mcp.server import LowLevelServer
from relay_mcp.types.content import TextContent
from relay_mcp.types.json_rpc import JSONRPCRequest
from relay_mcp.types.tools import CallToolRequestParams, CallToolResult, ListToolsResult, Tool

logger = logging.getLogger(__name__)


@dataclass
class ToolCallResponse:
    """Outcome of a proxied HTTP call."""

    status: int
    data: Any = None
    headers: Mapping[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status, "data": self.data, "headers": dict(self.headers)}


@runtime_checkable
class ToolProvider(Protocol):
    """Supplies the tool catalog and executes calls against the underlying API."""

    def list_tools(self) -> list[Tool]:
        """Return every callable tool."""
        ...

    def has_tool(self, name: str) -> bool:
        """Return True when `name` is part of the catalog."""
        ...

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> ToolCallResponse:
        """Execute `name`. Raises APIRequestError when the API call fails."""
        ...


def _error_result(text: str) -> CallToolResult:
    return CallToolResult(content=[TextContent(text=text)], is_error=True)


def register_tool_handlers(server: LowLevelServer, provider: ToolProvider) -> None:
    """Expose `provider` through the tools/list and tools/call methods of `server`."""

    @server.request_handler("tools/list")
    async def handle_list_tools(ctx: RequestContext, request: JSONRPCRequest) -> ListToolsResult:
        tools = provider.list_tools()
        logger.debug("Returning %d tools", len(tools))
        return ListToolsResult(tools=tools)

    @server.request_handler("tools/call")
    async def handle_call_tool(ctx: RequestContext, request: JSONRPCRequest) -> CallToolResult:
        params = CallToolRequestParams.model_validate(request.params or {})
        logger.info("Tool called: %s", params.name)

        if not provider.has_tool(params.name):
            logger.error("Unknown tool: %s", params.name)
            return _error_result(f"Unknown tool: {params.name}")

        try:
            response = await provider.call_tool(params.name, params.arguments or {})
        except RelayError as exc:
            logger.error("Tool %s failed: %s", params.name, exc)
            return _error_result(f"Error: {exc}")

        logger.info("Tool %s completed successfully", params.name)
        text = json.dumps(response.to_dict(), indent=2, default=str)
        return CallToolResult(content=[TextContent(text=text)])
