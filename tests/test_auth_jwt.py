from __future__ import annotations

import jwt
import pytest

from workspace_guard.auth.jwt import AuthContext, create_access_token, decode_access_token
from workspace_guard.auth.router import build_auth_context
from workspace_guard.core.config import get_settings
from workspace_guard.core.errors import InvalidCredentials
from workspace_guard.policies.evaluator import CAPABILITY_PLATFORM_ADMIN


def test_token_round_trips_identity_and_capabilities() -> None:
    context = AuthContext(
        user_id="user-1",
        email="dana@acme.io",
        email_verified=True,
        capabilities=frozenset({CAPABILITY_PLATFORM_ADMIN}),
    )
    token, expires_in = create_access_token(context)

    assert expires_in == get_settings().access_token_exp_minutes * 60
    assert decode_access_token(token) == context


def test_tampered_or_foreign_tokens_are_rejected() -> None:
    token, _ = create_access_token(AuthContext(user_id="user-1", email="dana@acme.io"))
    with pytest.raises(InvalidCredentials):
        decode_access_token(token[:-2] + "xx")

    foreign = jwt.encode({"sub": "user-1"}, "some-other-secret-key-of-decent-length", algorithm="HS256")
    with pytest.raises(InvalidCredentials):
        decode_access_token(foreign)


def test_string_caps_claim_grants_nothing() -> None:
    settings = get_settings()
    token = jwt.encode(
        {"sub": "user-1", "caps": "platform_admin"},
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )
    assert decode_access_token(token).capabilities == frozenset()


def test_platform_admin_capability_comes_from_configuration(session, make_user, monkeypatch) -> None:
    operator = make_user("operator@acme.io")
    regular = make_user("regular@acme.io")
    monkeypatch.setattr(get_settings(), "platform_admin_user_ids", f" {operator.id} , unrelated-id")

    assert build_auth_context(operator).capabilities == frozenset({CAPABILITY_PLATFORM_ADMIN})
    assert build_auth_context(regular).capabilities == frozenset()
