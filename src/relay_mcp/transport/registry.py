"""Session registry: session id → live transport session."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from relay_mcp.exceptions import DuplicateSessionError

if TYPE_CHECKING:
    from relay_mcp.transport.session import StreamableHTTPSession

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Mapping of session ids to sessions.

    Mutations are plain dict operations with no await in between, so under the
    single-threaded event loop lookups never observe a half-registered session.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, StreamableHTTPSession] = {}

    def register(self, session_id: str, session: StreamableHTTPSession) -> None:
        if session_id in self._sessions:
            raise DuplicateSessionError(session_id)
        self._sessions[session_id] = session
        logger.debug("Registered session %s (%d active)", session_id, len(self._sessions))

    def lookup(self, session_id: str) -> StreamableHTTPSession | None:
        return self._sessions.get(session_id)

    def remove(self, session_id: str) -> StreamableHTTPSession | None:
        session = self._sessions.pop(session_id, None)
        if session is not None:
            logger.debug("Removed session %s (%d active)", session_id, len(self._sessions))
        return session

    def snapshot(self) -> list[StreamableHTTPSession]:
        """Copy of the current sessions, safe to iterate while sessions close."""
        return list(self._sessions.values())

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
