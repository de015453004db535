"""FastAPI dependencies for the authenticated actor and its policy evaluator."""

from __future__ import annotations

from collections.abc import Generator
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from workspace_guard.auth.jwt import AuthContext
from workspace_guard.auth.middleware import AUTH_CONTEXT_KEY
from workspace_guard.policies.evaluator import PolicyEvaluator
from workspace_guard.storage.db import get_session
from workspace_guard.storage.tenant import reset_actor_context, set_actor_context


def get_optional_auth_context(request: Request) -> Optional[AuthContext]:
    return getattr(request.state, AUTH_CONTEXT_KEY, None)


def require_auth_context(auth: Optional[AuthContext] = Depends(get_optional_auth_context)) -> AuthContext:
    if auth is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return auth


def get_actor_session(
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> Generator[Session, None, None]:
    """The request session with the actor exposed to row-level security."""

    set_actor_context(session, auth.user_id, auth.capabilities)
    try:
        yield session
    finally:
        reset_actor_context(session)


def get_policy_evaluator(
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_actor_session),
) -> PolicyEvaluator:
    return PolicyEvaluator(session, auth.user_id, capabilities=auth.capabilities)
