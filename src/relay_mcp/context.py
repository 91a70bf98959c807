"""What a method handler gets to see of the exchange it is answering."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from relay_mcp.session import SessionInfo
from relay_mcp.types.json_rpc import (
    JSONRPCMessage,
    JSONRPCNotification,
    JSONRPCResponse,
    RequestId,
)


@runtime_checkable
class ResponseSink(Protocol):
    """Where the answer to a single client message is written.

    The HTTP transport backs each sink with a memory channel that the POST
    response reads from. Messages written after `send_result` are dropped.
    """

    async def send_intermediate(self, message: JSONRPCMessage) -> None: ...

    async def send_result(self, response: JSONRPCResponse) -> None: ...

    async def close(self) -> None: ...


@dataclass
class RequestContext:
    server_state: Any
    session: SessionInfo | None
    request_id: RequestId
    _sink: ResponseSink

    async def send_notification(self, method: str, params: dict[str, Any] | None = None) -> None:
        """Emit a notification ahead of the result, such as tool call progress.

        Over HTTP the first one switches the POST answer from JSON to SSE.
        """
        await self._sink.send_intermediate(JSONRPCNotification(method=method, params=params))
