"""Redis client factory, key namespacing and health checks.

Redis only backs request-path counters (IP rate limiting); a slow or absent
server must fail fast so callers can fail open.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional, Tuple

from redis import Redis

from workspace_guard.core.config import get_settings


KEY_PREFIX = "workspace_guard"


def namespaced_key(*parts: object) -> str:
    """``workspace_guard:<part>:<part>...``; empty parts are rejected."""

    rendered = [str(part) for part in parts]
    if not rendered or any(not part for part in rendered):
        raise ValueError("Redis key parts must be non-empty")
    return ":".join([KEY_PREFIX, *rendered])


@lru_cache(maxsize=1)
def get_client() -> Redis:
    settings = get_settings()
    return Redis.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_connect_timeout=settings.redis_socket_timeout_seconds,
        socket_timeout=settings.redis_socket_timeout_seconds,
    )


def test_connection() -> Tuple[bool, Optional[str]]:
    try:
        get_client().ping()
        return True, None
    except Exception as exc:
        return False, str(exc)
