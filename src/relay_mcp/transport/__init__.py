"""Streamable HTTP transport: event store, session registry, session state machine and router."""

from relay_mcp.transport.event_store import EventId, EventStore, InMemoryEventStore, StreamId
from relay_mcp.transport.httphandler import StreamableHTTPHandler
from relay_mcp.transport.listener import StreamableHTTPListener, run_http
from relay_mcp.transport.registry import SessionRegistry
from relay_mcp.transport.session import SessionState, StreamableHTTPSession
from relay_mcp.transport.starlette import (
    LAST_EVENT_ID_HEADER,
    MCP_SESSION_ID_HEADER,
    create_starlette_app,
)

__all__ = [
    "LAST_EVENT_ID_HEADER",
    "MCP_SESSION_ID_HEADER",
    "EventId",
    "EventStore",
    "InMemoryEventStore",
    "SessionRegistry",
    "SessionState",
    "StreamId",
    "StreamableHTTPHandler",
    "StreamableHTTPListener",
    "StreamableHTTPSession",
    "create_starlette_app",
    "run_http",
]
