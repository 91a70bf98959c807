"""MCP Initialize Types - Types for the initialize handshake."""

from typing import Annotated, Final

from pydantic import Field

from relay_mcp.types.base import Meta, RequestParams, Result
from relay_mcp.types.common import ClientCapabilities, Implementation, ServerCapabilities

INITIALIZE_METHOD: Final[str] = "initialize"
INITIALIZED_NOTIFICATION: Final[str] = "notifications/initialized"


class InitializeRequestParams(RequestParams):
    """Parameters for the initialize request."""

    protocol_version: Annotated[str, Field(alias="protocolVersion")]
    capabilities: ClientCapabilities
    client_info: Annotated[Implementation, Field(alias="clientInfo")]


class InitializeResult(Result[Meta]):
    """Server's response to an initialize request."""

    protocol_version: Annotated[str, Field(alias="protocolVersion")]
    capabilities: ServerCapabilities
    server_info: Annotated[Implementation, Field(alias="serverInfo")]
    instructions: str | None = None
