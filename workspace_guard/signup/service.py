"""User registration.

Runs as one explicit transaction in place of database signup triggers:
create the user, then either create a personal workspace or, when
invitations are waiting for the email, leave workspace creation to
invitation acceptance.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from workspace_guard.core.config import get_settings
from workspace_guard.core.errors import DuplicateUser, InvalidCredentials, InvalidState
from workspace_guard.core.logger import get_logger
from workspace_guard.invitations.service import pending_invitations_for_email
from workspace_guard.settings.service import create_default_subscription
from workspace_guard.storage.models import User, Workspace
from workspace_guard.storage.security import hash_password, normalize_email, verify_password
from workspace_guard.storage.tenant import set_actor_context
from workspace_guard.workspaces.service import create_workspace


logger = get_logger("workspace_guard.signup")


@dataclass(frozen=True)
class SignupResult:
    user: User
    workspace: Optional[Workspace]
    pending_invitations: int


def personal_workspace_name(full_name: str, email: str) -> str:
    display = full_name.strip() or email.split("@", 1)[0]
    return f"{display}'s Workspace"


def register_user(
    session: Session,
    *,
    email: str,
    password: str,
    full_name: str = "",
    email_verified: bool = False,
) -> SignupResult:
    normalized = normalize_email(email)
    if not normalized:
        raise InvalidState("Email must not be empty")
    if session.scalar(select(User.id).where(User.email == normalized)) is not None:
        raise DuplicateUser()

    user = User(
        email=normalized,
        email_verified=email_verified,
        password_hash=hash_password(password),
        full_name=full_name.strip(),
    )
    workspace = None
    try:
        session.add(user)
        session.flush()
        set_actor_context(session, user.id)

        pending = pending_invitations_for_email(session, normalized)
        if not pending:
            workspace = create_workspace(
                session,
                owner_id=user.id,
                name=personal_workspace_name(user.full_name, normalized),
                plan=get_settings().default_plan,
                commit=False,
            )
            create_default_subscription(session, workspace)
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise DuplicateUser() from exc
    except Exception:
        session.rollback()
        raise

    logger.info(
        "user_registered",
        user_id=user.id,
        workspace_id=workspace.id if workspace is not None else None,
        pending_invitations=len(pending),
    )
    return SignupResult(user=user, workspace=workspace, pending_invitations=len(pending))


def authenticate_user(session: Session, *, email: str, password: str) -> User:
    user = session.scalar(
        select(User).where(User.email == normalize_email(email), User.is_active.is_(True))
    )
    if user is None or not verify_password(password, user.password_hash):
        raise InvalidCredentials()
    return user
