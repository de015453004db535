"""Actor-scoped DB context helpers for PostgreSQL row-level security."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Optional

from sqlalchemy import event, text
from sqlalchemy.orm import Session


ACTOR_INFO_KEY = "actor_id"
CAPABILITIES_INFO_KEY = "actor_capabilities"


def _is_postgresql(session: Session) -> bool:
    bind = session.get_bind()
    return bind is not None and bind.dialect.name == "postgresql"


def encode_capabilities(capabilities: Iterable[str]) -> str:
    """Comma-joined form read back by ``app_has_capability``."""

    return ",".join(sorted({capability.strip() for capability in capabilities if capability.strip()}))


def _apply(connection, actor_id: Optional[str], capabilities: str) -> None:
    connection.execute(
        text(
            "SELECT set_config('app.current_user_id', :actor_id, true), "
            "set_config('app.current_capabilities', :capabilities, true)"
        ),
        {"actor_id": actor_id or "", "capabilities": capabilities},
    )


@event.listens_for(Session, "after_begin")
def _reapply_actor_context(session: Session, transaction, connection) -> None:
    # set_config(..., true) is transaction-local; services commit mid-request.
    if ACTOR_INFO_KEY not in session.info or connection.dialect.name != "postgresql":
        return
    _apply(connection, session.info[ACTOR_INFO_KEY], session.info.get(CAPABILITIES_INFO_KEY, ""))


def set_actor_context(
    session: Session,
    actor_id: Optional[str],
    capabilities: Iterable[str] = (),
) -> None:
    """Expose the acting user to RLS policies as ``app.current_user_id``.

    Capabilities from the access token go to ``app.current_capabilities``.
    No-op on other dialects; the application layer enforces the same
    predicates through ``workspace_guard.policies``.
    """

    encoded = encode_capabilities(capabilities)
    session.info[ACTOR_INFO_KEY] = actor_id
    session.info[CAPABILITIES_INFO_KEY] = encoded
    if not _is_postgresql(session):
        return
    _apply(session.connection(), actor_id, encoded)


def reset_actor_context(session: Session) -> None:
    """Stop re-applying the actor; the transaction-local setting dies with the transaction."""

    session.info.pop(ACTOR_INFO_KEY, None)
    session.info.pop(CAPABILITIES_INFO_KEY, None)
