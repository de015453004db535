from __future__ import annotations

from contextlib import contextmanager

import structlog
from starlette.requests import Request

import workspace_guard.core.observability as observability
from workspace_guard.auth.middleware import resolve_request_workspace_id
from workspace_guard.core.logger import bind_request_context, clear_request_context


def _request(path: str, query: str = "") -> Request:
    return Request(
        {
            "type": "http",
            "method": "GET",
            "path": path,
            "query_string": query.encode("utf-8"),
            "headers": [],
        }
    )


def test_workspace_id_is_resolved_from_path_or_query() -> None:
    assert resolve_request_workspace_id(_request("/workspaces/ws-1")) == "ws-1"
    assert resolve_request_workspace_id(_request("/workspaces/ws-1/members/u-2")) == "ws-1"
    assert resolve_request_workspace_id(_request("/audit-records", "workspace_id=ws-9")) == "ws-9"
    assert resolve_request_workspace_id(_request("/workspaces")) is None
    assert resolve_request_workspace_id(_request("/health")) is None


def test_request_context_binds_workspace_for_every_log_line() -> None:
    clear_request_context()
    bind_request_context(request_id="req-1", actor_id="user-1", workspace_id="ws-1")
    try:
        bound = structlog.contextvars.get_contextvars()
        assert bound == {"request_id": "req-1", "actor_id": "user-1", "workspace_id": "ws-1"}
    finally:
        clear_request_context()
    assert structlog.contextvars.get_contextvars() == {}


def test_sentry_scope_tags_workspace(monkeypatch) -> None:
    class _Scope:
        def __init__(self) -> None:
            self.tags = {}
            self.contexts = {}

        def set_tag(self, key, value):
            self.tags[key] = value

        def set_context(self, key, value):
            self.contexts[key] = value

    scope = _Scope()

    @contextmanager
    def new_scope():
        yield scope

    monkeypatch.setattr(observability, "_SENTRY_INITIALIZED", True)
    monkeypatch.setattr(observability.sentry_sdk, "new_scope", new_scope)

    with observability.sentry_scope(actor_id="user-1", request_id="req-1", workspace_id="ws-1"):
        pass

    assert scope.tags == {"actor_id": "user-1", "request_id": "req-1", "workspace_id": "ws-1"}
    assert scope.contexts["workspace_guard"]["workspace_id"] == "ws-1"
