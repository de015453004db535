"""Request context resolution: bearer token and the addressed workspace."""

from __future__ import annotations

import re
from typing import Optional

from fastapi import Request

from workspace_guard.auth.jwt import AuthContext, decode_access_token
from workspace_guard.core.errors import InvalidCredentials


AUTH_CONTEXT_KEY = "auth_context"
WORKSPACE_ID_KEY = "workspace_id"

_WORKSPACE_PATH = re.compile(r"^/workspaces/(?P<workspace_id>[^/]+)")


def _extract_bearer_token(request: Request) -> Optional[str]:
    authorization = request.headers.get("authorization")
    if not authorization:
        return None

    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1].strip() or None


def resolve_request_auth_context(request: Request) -> Optional[AuthContext]:
    token = _extract_bearer_token(request)
    if not token:
        return None

    try:
        return decode_access_token(token)
    except InvalidCredentials:
        return None


def resolve_request_workspace_id(request: Request) -> Optional[str]:
    """Workspace addressed by the path, or by the ``workspace_id`` query parameter."""

    match = _WORKSPACE_PATH.match(request.url.path)
    if match is not None:
        return match.group("workspace_id")
    return request.query_params.get(WORKSPACE_ID_KEY) or None
