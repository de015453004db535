"""Security helpers for password and invitation token handling."""

from __future__ import annotations

import base64
import hashlib
import hmac
import os
import secrets

from workspace_guard.core.config import get_settings


PBKDF2_ROUNDS = 260_000


def hash_password(password: str) -> str:
    """Hash password with PBKDF2-SHA256 and a random salt."""

    salt = os.urandom(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, PBKDF2_ROUNDS)
    salt_b64 = base64.b64encode(salt).decode("ascii")
    digest_b64 = base64.b64encode(digest).decode("ascii")
    return f"pbkdf2_sha256${PBKDF2_ROUNDS}${salt_b64}${digest_b64}"


def verify_password(password: str, encoded_hash: str) -> bool:
    """Verify password against a PBKDF2-SHA256 encoded hash."""

    try:
        algorithm, rounds_str, salt_b64, digest_b64 = encoded_hash.split("$", 3)
        if algorithm != "pbkdf2_sha256":
            return False
        rounds = int(rounds_str)
        salt = base64.b64decode(salt_b64.encode("ascii"))
        expected = base64.b64decode(digest_b64.encode("ascii"))
    except (ValueError, TypeError):
        return False

    observed = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, rounds)
    return hmac.compare_digest(observed, expected)


def hash_token(secret_value: str) -> str:
    return hashlib.sha256(secret_value.encode("utf-8")).hexdigest()


def generate_invitation_token() -> tuple[str, str]:
    """Generate an unguessable invitation token and return (token, token_hash).

    Only the hash is persisted; the raw token leaves the service once.
    """

    token = secrets.token_urlsafe(get_settings().invitation_token_bytes)
    return token, hash_token(token)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def emails_match(left: str | None, right: str | None) -> bool:
    if not left or not right:
        return False
    return hmac.compare_digest(
        normalize_email(left).encode("utf-8"),
        normalize_email(right).encode("utf-8"),
    )
