"""JWT issue/verify primitives for actor authentication."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import FrozenSet, Iterable

import jwt

from workspace_guard.core.config import get_settings
from workspace_guard.core.errors import InvalidCredentials


@dataclass(frozen=True)
class AuthContext:
    """Who is calling: identity plus explicitly granted capabilities.

    There is no global admin flag; elevated reads look for a named
    capability such as ``platform_admin``.
    """

    user_id: str
    email: str
    email_verified: bool = False
    capabilities: FrozenSet[str] = field(default_factory=frozenset)


def create_access_token(context: AuthContext) -> tuple[str, int]:
    settings = get_settings()
    expires_in = settings.access_token_exp_minutes * 60
    now = datetime.now(timezone.utc)
    payload = {
        "sub": context.user_id,
        "email": context.email,
        "email_verified": context.email_verified,
        "caps": sorted(context.capabilities),
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=expires_in)).timestamp()),
    }
    token = jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)
    return token, expires_in


def _parse_capabilities(raw: object) -> FrozenSet[str]:
    if not isinstance(raw, Iterable) or isinstance(raw, (str, bytes)):
        return frozenset()
    return frozenset(str(item) for item in raw if str(item).strip())


def decode_access_token(token: str) -> AuthContext:
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
        return AuthContext(
            user_id=str(payload["sub"]),
            email=str(payload.get("email", "")),
            email_verified=bool(payload.get("email_verified", False)),
            capabilities=_parse_capabilities(payload.get("caps", [])),
        )
    except (jwt.InvalidTokenError, KeyError) as exc:
        raise InvalidCredentials("Invalid or expired token") from exc
