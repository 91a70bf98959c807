"""Per-session state machine of the streamable HTTP transport.

A session moves through AWAITING_INIT → ACTIVE → CLOSED. It owns one resumable
push stream (opened with GET) and any number of in-flight POST requests, each
answered through its own channel sink.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from uuid import uuid4

import anyio
from anyio.abc import TaskGroup
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

from relay_mcp.exceptions import ProtocolError
from relay_mcp.runner import RunningServer
from relay_mcp.session import SessionInfo
from relay_mcp.transport.event_store import EventStore
from relay_mcp.transport.sink import ChannelSink, SinkEvent
from relay_mcp.types.initialize import INITIALIZE_METHOD
from relay_mcp.types.json_rpc import (
    CONNECTION_CLOSED,
    INTERNAL_ERROR,
    INVALID_REQUEST,
    JSONRPCErrorResponse,
    JSONRPCMessage,
    JSONRPCRequest,
    JSONRPCResponse,
    error_response,
)

logger = logging.getLogger(__name__)

# Per-request channels only ever carry a handful of progress messages before the result.
_REQUEST_CHANNEL_SIZE = 16


class _NoOpSink:
    """A sink that does nothing. Used for notifications which don't produce responses."""

    async def send_intermediate(self, message: JSONRPCMessage) -> None:
        pass

    async def send_result(self, response: JSONRPCResponse) -> None:
        pass

    async def close(self) -> None:
        pass


class SessionState(Enum):
    AWAITING_INIT = "awaiting_init"
    ACTIVE = "active"
    CLOSED = "closed"


# --- Results handed to the HTTP framework adapter ---


@dataclass
class AcceptedResponse:
    """Notification or client response. Just ack with 202."""

    session_id: str


@dataclass
class JSONResult:
    """Handler completed without intermediate messages. Return as JSON."""

    body: JSONRPCResponse
    session_id: str | None
    status_code: int = 200


@dataclass
class SSEStream:
    """Handler is streaming. First event already available.

    Whoever consumes the result must close `event_stream` when done with it.
    """

    first_event: SinkEvent
    event_stream: MemoryObjectReceiveStream[SinkEvent]
    session_id: str


@dataclass
class PushStream:
    """The session's resumable push stream, replayed events already queued."""

    session: StreamableHTTPSession
    event_stream: MemoryObjectReceiveStream[SinkEvent]
    replayed: int = 0

    @property
    def session_id(self) -> str:
        return self.session.session_id


PostResult = AcceptedResponse | JSONResult | SSEStream


class StreamableHTTPSession:
    """Transport-level state for one MCP session.

    Args:
        running: Dispatches messages to the server handlers.
        task_group: Where request handlers run; owned by the router.
        event_store: Records push-stream events for replay.
        on_close: Called exactly once, synchronously, when the session closes.
        push_buffer_size: Live events buffered for a slow push-stream reader.
            When the buffer fills up the stream is detached; the client
            resumes from its last event id and loses nothing.
        close_on_disconnect: Close the session when its push stream disconnects.
    """

    def __init__(
        self,
        running: RunningServer,
        task_group: TaskGroup,
        event_store: EventStore,
        *,
        session_id: str | None = None,
        on_close: Callable[[StreamableHTTPSession], None] | None = None,
        push_buffer_size: int = 64,
        close_on_disconnect: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.session_id = session_id or uuid4().hex
        # One resumable stream per session, named after it.
        self.stream_id = self.session_id
        self.state = SessionState.AWAITING_INIT
        self.info: SessionInfo | None = None

        self._running = running
        self._task_group = task_group
        self._event_store = event_store
        self._on_close = on_close
        self._push_buffer_size = push_buffer_size
        self._close_on_disconnect = close_on_disconnect
        self._clock = clock

        self._push_send: MemoryObjectSendStream[SinkEvent] | None = None
        self._push_receive: MemoryObjectReceiveStream[SinkEvent] | None = None
        # Serializes "store + deliver" against "replay + attach" so a resuming
        # client sees every event exactly once, in store order.
        self._push_lock = anyio.Lock()
        self._open_sinks: set[ChannelSink] = set()
        self.last_activity = clock()

    def __repr__(self) -> str:
        return f"StreamableHTTPSession(session_id={self.session_id!r}, state={self.state.value})"

    @property
    def is_active(self) -> bool:
        return self.state is SessionState.ACTIVE

    @property
    def is_closed(self) -> bool:
        return self.state is SessionState.CLOSED

    @property
    def has_push_stream(self) -> bool:
        return self._push_send is not None

    def is_idle(self, now: float, timeout: float) -> bool:
        """True when nothing is attached or in flight and the session saw no traffic for `timeout` seconds."""
        if self.is_closed or self.has_push_stream or self._open_sinks:
            return False
        return now - self.last_activity > timeout

    # --- Lifecycle ---

    async def initialize(self, request: JSONRPCRequest) -> JSONResult:
        """Run the initialize handshake inline.

        The session is ACTIVE before the response is handed back, so a request
        that races the response with the new session id is never rejected.
        """
        if self.state is not SessionState.AWAITING_INIT:
            raise ProtocolError(INVALID_REQUEST, "Bad Request: Server already initialized")
        self._touch()

        send, receive = anyio.create_memory_object_stream[SinkEvent](1)
        sink = ChannelSink(send)
        with receive:
            try:
                info = await self._running.handle_message(sink, request)
            finally:
                await sink.close()
            try:
                event = receive.receive_nowait()
            except (anyio.WouldBlock, anyio.EndOfStream):
                event = None

        if event is None:
            logger.error("Initialize handshake for session %s produced no response", self.session_id)
            body = error_response(INTERNAL_ERROR, "Internal error", request_id=request.id)
            return JSONResult(body=body, session_id=None, status_code=500)

        if info is None:
            # The handshake answered with an error; the router discards this session.
            return JSONResult(body=event.message, session_id=None, status_code=400)  # type: ignore[arg-type]

        self.info = info
        self.state = SessionState.ACTIVE
        logger.info(
            "Session %s initialized by %s %s (protocol %s)",
            self.session_id,
            info.client_info.name,
            info.client_info.version,
            info.protocol_version,
        )
        return JSONResult(body=event.message, session_id=self.session_id)  # type: ignore[arg-type]

    async def close(self) -> None:
        """Close the session. Idempotent.

        Unregisters first, then tears down the push stream and in-flight
        request channels (late results are dropped), then purges stored events.
        """
        if self.is_closed:
            return
        self.state = SessionState.CLOSED
        if self._on_close is not None:
            self._on_close(self)

        self._detach_push()
        sinks = list(self._open_sinks)
        self._open_sinks.clear()
        with anyio.CancelScope(shield=True):
            for sink in sinks:
                await sink.close()
            await self._event_store.purge_stream(self.stream_id)
        logger.info("Session %s closed", self.session_id)

    # --- POST ---

    async def handle_message(self, message: JSONRPCMessage) -> PostResult:
        """Route one client message received over POST."""
        self._require_active()
        self._touch()

        if isinstance(message, JSONRPCRequest):
            if message.method == INITIALIZE_METHOD:
                raise ProtocolError(INVALID_REQUEST, "Bad Request: Server already initialized")
            return await self._handle_request(message)

        self._task_group.start_soon(self._run_message, message)
        return AcceptedResponse(session_id=self.session_id)

    async def _handle_request(self, request: JSONRPCRequest) -> PostResult:
        send, receive = anyio.create_memory_object_stream[SinkEvent](_REQUEST_CHANNEL_SIZE)
        sink = ChannelSink(send)
        self._open_sinks.add(sink)
        self._task_group.start_soon(self._run_request, sink, request)

        try:
            first = await receive.receive()
        except BaseException as exc:
            # The handler keeps running; with the reader gone its output is dropped.
            receive.close()
            if not isinstance(exc, anyio.EndOfStream):
                raise
            if self.is_closed:
                body = error_response(CONNECTION_CLOSED, "Session terminated", request_id=request.id)
                return JSONResult(body=body, session_id=self.session_id, status_code=400)
            body = error_response(INTERNAL_ERROR, "Internal error", request_id=request.id)
            return JSONResult(body=body, session_id=self.session_id, status_code=500)

        if first.is_final:
            receive.close()
            status_code = 200
            if isinstance(first.message, JSONRPCErrorResponse) and first.message.error.code == INTERNAL_ERROR:
                status_code = 500
            return JSONResult(body=first.message, session_id=self.session_id, status_code=status_code)  # type: ignore[arg-type]

        return SSEStream(first_event=first, event_stream=receive, session_id=self.session_id)

    async def _run_request(self, sink: ChannelSink, request: JSONRPCRequest) -> None:
        try:
            await self._running.handle_message(sink, request, session=self.info)
        except Exception:
            logger.exception("Request %r failed in session %s", request.id, self.session_id)
        finally:
            await sink.close()
            self._open_sinks.discard(sink)

    async def _run_message(self, message: JSONRPCMessage) -> None:
        try:
            await self._running.handle_message(_NoOpSink(), message, session=self.info)
        except Exception:
            logger.exception("Notification handling failed in session %s", self.session_id)

    # --- Push stream (GET) ---

    async def send(self, message: JSONRPCMessage) -> str | None:
        """Send a server-initiated message over the push stream.

        The message is stored before delivery. Without an attached stream it
        stays in the store until the client resumes. Returns the event id, or
        None when the session is already closed.
        """
        if self.is_closed:
            logger.debug("Dropping message for closed session %s", self.session_id)
            return None

        async with self._push_lock:
            event_id = await self._event_store.store_event(self.stream_id, message)
            if self.is_closed:
                # Closed while the store was busy; do not leave the event behind.
                await self._event_store.purge_stream(self.stream_id)
                return None
            self._deliver(SinkEvent(message=message, event_id=event_id))
        return event_id

    async def open_stream(self, last_event_id: str | None = None) -> PushStream:
        """Attach the push stream, replaying events after `last_event_id` first.

        An unknown `last_event_id` is not an error: the stream simply starts fresh.
        """
        self._require_active()
        self._touch()

        async with self._push_lock:
            if self.has_push_stream:
                raise ProtocolError(
                    CONNECTION_CLOSED,
                    "Conflict: Only one push stream is allowed per session",
                    status_code=409,
                )

            replayed: list[SinkEvent] = []
            if last_event_id:

                async def collect(event_id: str, message: JSONRPCMessage) -> None:
                    replayed.append(SinkEvent(message=message, event_id=event_id))

                stream_id = await self._event_store.replay_events_after(last_event_id, collect)
                if stream_id is None:
                    logger.debug("Session %s: last event id %s unknown, starting fresh", self.session_id, last_event_id)
                elif stream_id != self.stream_id:
                    logger.warning(
                        "Session %s asked to resume stream %s which it does not own", self.session_id, stream_id
                    )
                    replayed = []
                else:
                    logger.debug("Session %s: replaying %d events", self.session_id, len(replayed))

            self._require_active()
            send, receive = anyio.create_memory_object_stream[SinkEvent](self._push_buffer_size + len(replayed))
            for event in replayed:
                send.send_nowait(event)
            self._push_send = send
            self._push_receive = receive

        return PushStream(session=self, event_stream=receive, replayed=len(replayed))

    async def detach_stream(self, stream: MemoryObjectReceiveStream[SinkEvent]) -> None:
        """The push-stream reader went away (client disconnect or end of stream)."""
        stream.close()
        if stream is not self._push_receive:
            return
        self._detach_push()
        self._touch()
        if self._close_on_disconnect:
            logger.info("Push stream of session %s disconnected; closing session", self.session_id)
            await self.close()
        else:
            logger.debug("Push stream of session %s detached", self.session_id)

    def _deliver(self, event: SinkEvent) -> None:
        if self._push_send is None:
            return
        try:
            self._push_send.send_nowait(event)
        except anyio.WouldBlock:
            logger.warning("Push stream of session %s is not keeping up; detaching it", self.session_id)
            self._detach_push()
        except (anyio.BrokenResourceError, anyio.ClosedResourceError):
            self._detach_push()

    def _detach_push(self) -> None:
        if self._push_send is not None:
            self._push_send.close()
        self._push_send = None
        self._push_receive = None

    # --- Helpers ---

    def _require_active(self) -> None:
        if self.state is not SessionState.ACTIVE:
            raise ProtocolError(CONNECTION_CLOSED, "Bad Request: No valid session ID provided")

    def _touch(self) -> None:
        self.last_activity = self._clock()
