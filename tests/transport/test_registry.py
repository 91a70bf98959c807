from typing import Any

import pytest

from relay_mcp.exceptions import DuplicateSessionError
from relay_mcp.transport.registry import SessionRegistry


class StubSession:
    def __init__(self, session_id: str) -> None:
        self.session_id = session_id


def _registry_with(*session_ids: str) -> tuple[SessionRegistry, list[Any]]:
    registry = SessionRegistry()
    sessions = [StubSession(sid) for sid in session_ids]
    for session in sessions:
        registry.register(session.session_id, session)  # type: ignore[arg-type]
    return registry, sessions


def test_lookup_returns_registered_session():
    registry, (session,) = _registry_with("a")

    assert registry.lookup("a") is session
    assert "a" in registry
    assert len(registry) == 1


def test_lookup_of_unknown_id_returns_none():
    registry, _ = _registry_with("a")
    assert registry.lookup("b") is None
    assert "b" not in registry


def test_duplicate_registration_raises():
    registry, (session,) = _registry_with("a")

    with pytest.raises(DuplicateSessionError) as exc_info:
        registry.register("a", StubSession("a"))  # type: ignore[arg-type]

    assert exc_info.value.session_id == "a"
    assert registry.lookup("a") is session


def test_remove_returns_session_once():
    registry, (session,) = _registry_with("a")

    assert registry.remove("a") is session
    assert registry.remove("a") is None
    assert len(registry) == 0


def test_snapshot_is_a_copy():
    registry, sessions = _registry_with("a", "b")

    snapshot = registry.snapshot()
    for session in snapshot:
        registry.remove(session.session_id)

    assert snapshot == sessions
    assert len(registry) == 0
