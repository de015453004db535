"""Authentication API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from workspace_guard.auth.jwt import AuthContext, create_access_token
from workspace_guard.core.config import get_settings, parse_id_list
from workspace_guard.policies.evaluator import CAPABILITY_PLATFORM_ADMIN
from workspace_guard.schemas.auth import LoginRequest, SignupRequest, SignupResponse, TokenResponse
from workspace_guard.signup.service import authenticate_user, register_user
from workspace_guard.storage.db import get_session
from workspace_guard.storage.models import User


router = APIRouter(prefix="/auth", tags=["auth"])


def build_auth_context(user: User) -> AuthContext:
    capabilities = set()
    if user.id in parse_id_list(get_settings().platform_admin_user_ids):
        capabilities.add(CAPABILITY_PLATFORM_ADMIN)
    return AuthContext(
        user_id=user.id,
        email=user.email,
        email_verified=user.email_verified,
        capabilities=frozenset(capabilities),
    )


@router.post("/signup", response_model=SignupResponse, status_code=201)
def signup(payload: SignupRequest, session: Session = Depends(get_session)) -> SignupResponse:
    result = register_user(
        session,
        email=payload.email,
        password=payload.password,
        full_name=payload.full_name,
        email_verified=get_settings().trust_signup_email,
    )
    token, expires_in = create_access_token(build_auth_context(result.user))
    return SignupResponse(
        user_id=result.user.id,
        email=result.user.email,
        workspace_id=result.workspace.id if result.workspace is not None else None,
        pending_invitations=result.pending_invitations,
        access_token=token,
        expires_in=expires_in,
    )


@router.post("/login", response_model=TokenResponse)
def login(payload: LoginRequest, session: Session = Depends(get_session)) -> TokenResponse:
    user = authenticate_user(session, email=payload.email, password=payload.password)
    token, expires_in = create_access_token(build_auth_context(user))
    return TokenResponse(access_token=token, expires_in=expires_in, user_id=user.id)
