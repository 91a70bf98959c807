"""relay-mcp: serve the operations of an OpenAPI-described HTTP API as MCP tools.

The package carries MCP JSON-RPC traffic over the streamable HTTP transport,
with per-session resumable push streams.

## Example

```python
from relay_mcp import LowLevelServer, register_tool_handlers
from relay_mcp.transport import run_http

server = LowLevelServer(name="relay-mcp", version="1.1.0")
register_tool_handlers(server, provider)  # any ToolProvider

if __name__ == "__main__":
    run_http(server)
```
"""

from relay_mcp.exceptions import (
    APIRequestError,
    ConfigurationError,
    DuplicateSessionError,
    ProtocolError,
    RelayError,
    TransportError,
)
from relay_mcp.runner import RunningServer, ServerRunner
from relay_mcp.server import LowLevelServer
from relay_mcp.settings import TransportSettings, load_settings
from relay_mcp.tools import ToolCallResponse, ToolProvider, register_tool_handlers

__all__ = [
    "APIRequestError",
    "ConfigurationError",
    "DuplicateSessionError",
    "LowLevelServer",
    "ProtocolError",
    "RelayError",
    "RunningServer",
    "ServerRunner",
    "ToolCallResponse",
    "ToolProvider",
    "TransportError",
    "TransportSettings",
    "load_settings",
    "register_tool_handlers",
]
