"""Channel-backed ResponseSink used by the HTTP transport."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import anyio
from anyio.streams.memory import MemoryObjectSendStream

from relay_mcp.types.json_rpc import JSONRPCMessage, JSONRPCResponse

logger = logging.getLogger(__name__)


@dataclass
class SinkEvent:
    """A message on its way to an HTTP response.

    event_id is set only for messages recorded in the event store.
    """

    message: JSONRPCMessage
    event_id: str | None = None
    is_final: bool = False


class ChannelSink:
    """ResponseSink that writes events to a memory channel.

    The HTTP handler reads from the other end of the channel to decide
    between an SSE and a JSON answer. Once closed, further writes are dropped:
    this is how results of requests that outlive their session get discarded.
    """

    def __init__(self, send_stream: MemoryObjectSendStream[SinkEvent]) -> None:
        self._send = send_stream
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send_intermediate(self, message: JSONRPCMessage) -> None:
        """Send an intermediate message (notification or server→client request)."""
        await self._emit(SinkEvent(message=message))

    async def send_result(self, response: JSONRPCResponse) -> None:
        """Send the final result and close the channel."""
        await self._emit(SinkEvent(message=response, is_final=True))
        await self.close()

    async def close(self) -> None:
        """Close the channel without sending a result (e.g., on handler error)."""
        if self._closed:
            return
        self._closed = True
        with anyio.CancelScope(shield=True):
            await self._send.aclose()

    async def _emit(self, event: SinkEvent) -> None:
        if self._closed:
            logger.debug("Dropping message for closed sink")
            return
        try:
            await self._send.send(event)
        except (anyio.BrokenResourceError, anyio.ClosedResourceError):
            # The HTTP client went away before the answer was ready.
            logger.debug("Response channel is gone; dropping message")
            self._closed = True
