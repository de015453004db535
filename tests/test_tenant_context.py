from __future__ import annotations

from workspace_guard.storage import tenant
from workspace_guard.storage.tenant import (
    ACTOR_INFO_KEY,
    CAPABILITIES_INFO_KEY,
    encode_capabilities,
    reset_actor_context,
    set_actor_context,
)


class _RecordingConnection:
    def __init__(self) -> None:
        self.calls = []

    def execute(self, statement, params):
        self.calls.append((str(statement), params))


def test_encode_capabilities_is_sorted_and_deduplicated() -> None:
    assert encode_capabilities(["platform_admin", " billing ", "platform_admin", ""]) == "billing,platform_admin"
    assert encode_capabilities(frozenset()) == ""


def test_actor_context_is_kept_on_session_and_cleared(session) -> None:
    set_actor_context(session, "user-1", frozenset({"platform_admin"}))
    assert session.info[ACTOR_INFO_KEY] == "user-1"
    assert session.info[CAPABILITIES_INFO_KEY] == "platform_admin"

    reset_actor_context(session)
    assert ACTOR_INFO_KEY not in session.info
    assert CAPABILITIES_INFO_KEY not in session.info


def test_apply_sets_user_and_capability_settings() -> None:
    connection = _RecordingConnection()
    tenant._apply(connection, "user-1", "platform_admin")

    statement, params = connection.calls[0]
    assert "app.current_user_id" in statement
    assert "app.current_capabilities" in statement
    assert params == {"actor_id": "user-1", "capabilities": "platform_admin"}

    tenant._apply(connection, None, "")
    assert connection.calls[1][1] == {"actor_id": "", "capabilities": ""}
