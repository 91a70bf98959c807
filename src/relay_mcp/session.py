"""Protocol-level session state from the init handshake."""

from __future__ import annotations

from dataclasses import dataclass

from relay_mcp.types.common import ClientCapabilities, Implementation


@dataclass(frozen=True)
class SessionInfo:
    """Immutable protocol-level session state, created during the init handshake.

    Transport-level session state (push streams, event replay) lives in
    relay_mcp.transport.session.
    """

    client_info: Implementation
    client_capabilities: ClientCapabilities
    protocol_version: str
