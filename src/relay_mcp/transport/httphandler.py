"""StreamableHTTPHandler - framework-agnostic endpoint routing.

Resolves or creates sessions, hands messages to them and turns protocol
faults into JSON-RPC error results. No Starlette dependency.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

import anyio
from anyio.abc import TaskGroup
from pydantic import ValidationError

from relay_mcp.exceptions import DuplicateSessionError, ProtocolError
from relay_mcp.runner import RunningServer
from relay_mcp.settings import TransportSettings
from relay_mcp.transport.event_store import EventStore, InMemoryEventStore
from relay_mcp.transport.registry import SessionRegistry
from relay_mcp.transport.session import (
    AcceptedResponse,
    JSONResult,
    PostResult,
    PushStream,
    SSEStream,
    StreamableHTTPSession,
)
from relay_mcp.types.initialize import INITIALIZE_METHOD
from relay_mcp.types.json_rpc import (
    CONNECTION_CLOSED,
    INTERNAL_ERROR,
    INVALID_REQUEST,
    PARSE_ERROR,
    JSONRPCErrorResponse,
    JSONRPCMessage,
    JSONRPCMessageAdapter,
    JSONRPCNotification,
    JSONRPCRequest,
)

logger = logging.getLogger(__name__)

__all__ = [
    "AcceptedResponse",
    "ClosedResponse",
    "ErrorResult",
    "JSONResult",
    "PushStream",
    "SSEStream",
    "StreamableHTTPHandler",
]


@dataclass
class ClosedResponse:
    """The session was closed on the client's request."""

    session_id: str


@dataclass
class ErrorResult:
    """The exchange failed before reaching a session handler. `body.id` is always null."""

    body: JSONRPCErrorResponse
    status_code: int = 400

    @classmethod
    def from_exception(cls, exc: ProtocolError) -> ErrorResult:
        return cls(body=JSONRPCErrorResponse(id=None, error=exc.error), status_code=exc.status_code)


def parse_message(body: bytes) -> JSONRPCMessage:
    """Decode one JSON-RPC message, raising ProtocolError for anything else."""
    try:
        raw = json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ProtocolError(PARSE_ERROR, "Parse error", data=str(exc)) from exc
    if isinstance(raw, list):
        raise ProtocolError(INVALID_REQUEST, "Invalid Request: batch messages are not supported")
    try:
        return JSONRPCMessageAdapter.validate_python(raw)
    except ValidationError as exc:
        raise ProtocolError(INVALID_REQUEST, "Invalid Request", data=str(exc)) from exc


class StreamableHTTPHandler:
    """Framework-agnostic streamable HTTP routing.

    Testable without any HTTP framework: call handle_post() with a session id
    and a raw body. The registry and event store are injected so that several
    independent handlers can coexist in one process.

    Usage:
        handler = StreamableHTTPHandler(running, settings=settings)
        async with handler.run():
            result = await handler.handle_post(None, body)
    """

    def __init__(
        self,
        running: RunningServer,
        *,
        event_store: EventStore | None = None,
        registry: SessionRegistry | None = None,
        settings: TransportSettings | None = None,
    ) -> None:
        self.settings = settings or TransportSettings()
        self.event_store = event_store or InMemoryEventStore(
            max_events_per_stream=self.settings.max_events_per_stream,
            event_ttl=self.settings.event_ttl,
        )
        self.registry = registry or SessionRegistry()
        self._running = running
        self._task_group: TaskGroup | None = None
        self._has_started = False

    @asynccontextmanager
    async def run(self) -> AsyncIterator[StreamableHTTPHandler]:
        """Own the task group for session work. Every session is closed on exit.

        Can only be entered once per instance.
        """
        if self._has_started:
            raise RuntimeError("StreamableHTTPHandler .run() can only be called once per instance.")
        self._has_started = True

        async with anyio.create_task_group() as tg:
            self._task_group = tg
            if self.settings.session_idle_timeout is not None or self.settings.event_ttl is not None:
                tg.start_soon(self._reap_forever)
            logger.info("Streamable HTTP handler started")
            try:
                yield self
            finally:
                logger.info("Streamable HTTP handler shutting down")
                await self.close_all()
                tg.cancel_scope.cancel()
                self._task_group = None

    # --- Verbs ---

    async def handle_post(self, session_id: str | None, body: bytes) -> PostResult | ErrorResult:
        """Handle a POST carrying one JSON-RPC message."""
        task_group = self._require_running()
        try:
            message = parse_message(body)
            if not session_id:
                if isinstance(message, JSONRPCRequest) and message.method == INITIALIZE_METHOD:
                    return await self._create_session(task_group, message)
                raise ProtocolError(INVALID_REQUEST, "Bad Request: Mcp-Session-Id header is required")
            session = self._require_session(session_id)
            return await session.handle_message(message)
        except ProtocolError as exc:
            logger.debug("Rejected POST (session %s): %s", session_id, exc)
            return ErrorResult.from_exception(exc)

    async def handle_get(self, session_id: str | None, last_event_id: str | None = None) -> PushStream | ErrorResult:
        """Open (or resume) the push stream of a session."""
        self._require_running()
        try:
            if not session_id:
                raise ProtocolError(INVALID_REQUEST, "Bad Request: Mcp-Session-Id header is required")
            session = self._require_session(session_id)
            return await session.open_stream(last_event_id)
        except ProtocolError as exc:
            logger.debug("Rejected GET (session %s): %s", session_id, exc)
            return ErrorResult.from_exception(exc)

    async def handle_delete(self, session_id: str | None) -> ClosedResponse | ErrorResult:
        """Close a session on the client's request."""
        self._require_running()
        try:
            if not session_id:
                raise ProtocolError(INVALID_REQUEST, "Bad Request: Mcp-Session-Id header is required")
            session = self._require_session(session_id)
        except ProtocolError as exc:
            return ErrorResult.from_exception(exc)
        logger.info("Session %s terminated by client request", session_id)
        await session.close()
        return ClosedResponse(session_id=session.session_id)

    # --- Server-initiated messages ---

    async def notify(self, session_id: str, method: str, params: dict[str, Any] | None = None) -> str | None:
        """Push a notification to one session. Returns the event id, or None if the session is unknown."""
        session = self.registry.lookup(session_id)
        if session is None or not session.is_active:
            return None
        return await session.send(JSONRPCNotification(method=method, params=params))

    async def broadcast(self, method: str, params: dict[str, Any] | None = None) -> int:
        """Push a notification to every active session. Returns how many sessions got it."""
        delivered = 0
        for session in self.registry.snapshot():
            if not session.is_active:
                continue
            if await session.send(JSONRPCNotification(method=method, params=params)) is not None:
                delivered += 1
        return delivered

    # --- Lifecycle ---

    async def close_all(self) -> None:
        """Close every registered session."""
        with anyio.CancelScope(shield=True):
            for session in self.registry.snapshot():
                try:
                    logger.info("Closing session %s", session.session_id)
                    await session.close()
                except Exception:
                    logger.exception("Error closing session %s", session.session_id)

    async def reap_idle_sessions(self, now: float | None = None) -> int:
        """Close sessions that have been idle longer than the configured timeout."""
        timeout = self.settings.session_idle_timeout
        if timeout is None:
            return 0
        now = time.monotonic() if now is None else now
        reaped = 0
        for session in self.registry.snapshot():
            if not session.is_idle(now, timeout):
                continue
            logger.info("Closing idle session %s", session.session_id)
            reaped += 1
            try:
                await session.close()
            except Exception:
                logger.exception("Error closing session %s", session.session_id)
        return reaped

    async def _reap_forever(self) -> None:
        while True:
            await anyio.sleep(self.settings.reap_interval)
            await self.reap_idle_sessions()
            dropped = await self.event_store.expire_events()
            if dropped:
                logger.debug("Dropped %d expired events", dropped)

    # --- Helpers ---

    async def _create_session(self, task_group: TaskGroup, request: JSONRPCRequest) -> JSONResult:
        session = StreamableHTTPSession(
            self._running,
            task_group,
            self.event_store,
            on_close=self._forget_session,
            push_buffer_size=self.settings.push_buffer_size,
            close_on_disconnect=self.settings.close_on_disconnect,
        )
        try:
            # Registered before the handshake runs: the session id must resolve
            # by the time the client can read it from the response.
            self.registry.register(session.session_id, session)
        except DuplicateSessionError as exc:
            logger.error("Session id collision: %s", exc)
            raise ProtocolError(INTERNAL_ERROR, "Internal error", status_code=500, data=str(exc)) from exc

        try:
            result = await session.initialize(request)
        except Exception:
            await session.close()
            raise
        if not session.is_active:
            await session.close()
        else:
            logger.info("Created session %s", session.session_id)
        return result

    def _forget_session(self, session: StreamableHTTPSession) -> None:
        self.registry.remove(session.session_id)

    def _require_session(self, session_id: str) -> StreamableHTTPSession:
        session = self.registry.lookup(session_id)
        if session is None or not session.is_active:
            raise ProtocolError(CONNECTION_CLOSED, "Bad Request: No valid session ID provided")
        return session

    def _require_running(self) -> TaskGroup:
        if self._task_group is None:
            raise RuntimeError("Task group is not initialized. Make sure to use run().")
        return self._task_group
