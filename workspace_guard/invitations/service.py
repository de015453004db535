"""Invitation issue, redemption, revocation and expiry."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from workspace_guard.audit.recorder import AUDIT_INSERT, AUDIT_UPDATE, record_activity, record_audit, snapshot
from workspace_guard.core.config import get_settings
from workspace_guard.core.errors import (
    AlreadyUsed,
    DuplicateMembership,
    DuplicatePendingInvitation,
    EmailMismatch,
    Expired,
    InvalidState,
    InvalidToken,
    NotFound,
    RaceLost,
)
from workspace_guard.core.logger import get_logger
from workspace_guard.core.metrics import record_invitation_outcome, record_race_recovered
from workspace_guard.policies.evaluator import Operation, PolicyEvaluator, ResourceKind
from workspace_guard.storage.models import (
    INVITATION_ACCEPTED,
    INVITATION_EXPIRED,
    INVITATION_PENDING,
    INVITATION_PROCESSING,
    INVITATION_REVOKED,
    ROLE_MEMBER,
    ROLE_OWNER,
    WORKSPACE_ROLES,
    User,
    WorkspaceInvitation,
    WorkspaceMember,
    ensure_utc,
    utcnow,
)
from workspace_guard.storage.security import emails_match, generate_invitation_token, hash_token, normalize_email
from workspace_guard.workspaces.service import insert_membership


logger = get_logger("workspace_guard.invitations")

ACCEPT_JOINED = "joined"
ACCEPT_ALREADY_MEMBER = "already_member"


@dataclass(frozen=True)
class IssuedInvitation:
    invitation: WorkspaceInvitation
    token: str


@dataclass(frozen=True)
class AcceptResult:
    workspace_id: str
    role: str
    status: str


@dataclass(frozen=True)
class Invitee:
    """The identity provider's view of the caller accepting an invitation."""

    user_id: str
    email: str
    email_verified: bool


def _is_expired(invitation: WorkspaceInvitation, now: datetime) -> bool:
    return now > ensure_utc(invitation.expires_at)


def _transition(
    session: Session,
    invitation: WorkspaceInvitation,
    *,
    status: str,
    actor_id: Optional[str],
    accepted_by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> None:
    before = snapshot(invitation)
    invitation.status = status
    if status == INVITATION_ACCEPTED:
        invitation.accepted_at = now or utcnow()
        invitation.accepted_by = accepted_by
    session.flush()
    record_audit(
        session,
        entity="invitation",
        operation=AUDIT_UPDATE,
        actor_id=actor_id,
        entity_id=invitation.id,
        workspace_id=invitation.workspace_id,
        before=before,
        after=snapshot(invitation),
    )


def _expire_stale_pending(session: Session, workspace_id: str, email: str, now: datetime) -> None:
    stale = session.scalar(
        select(WorkspaceInvitation).where(
            WorkspaceInvitation.workspace_id == workspace_id,
            WorkspaceInvitation.email == email,
            WorkspaceInvitation.status == INVITATION_PENDING,
        )
    )
    if stale is not None and _is_expired(stale, now):
        _transition(session, stale, status=INVITATION_EXPIRED, actor_id=None)


def find_invitation_by_token(session: Session, token: str) -> Optional[WorkspaceInvitation]:
    """Look up an invitation by raw token regardless of who is asking.

    On PostgreSQL the row may be hidden from the caller by row-level security
    (wrong account), so the lookup goes through the SECURITY DEFINER function
    ``app_invitation_by_token_hash``; the email check happens afterwards.
    """

    token_hash = hash_token(token)
    bind = session.get_bind()
    if bind is not None and bind.dialect.name == "postgresql":
        statement = select(WorkspaceInvitation).from_statement(
            text("SELECT * FROM app_invitation_by_token_hash(:token_hash)")
        )
        return session.scalars(statement, {"token_hash": token_hash}).first()
    return session.scalar(select(WorkspaceInvitation).where(WorkspaceInvitation.token_hash == token_hash))


def _find_membership(session: Session, workspace_id: str, user_id: str) -> Optional[WorkspaceMember]:
    return session.scalar(
        select(WorkspaceMember).where(
            WorkspaceMember.workspace_id == workspace_id,
            WorkspaceMember.user_id == user_id,
        )
    )


def _is_member_by_email(session: Session, workspace_id: str, email: str) -> bool:
    statement = (
        select(WorkspaceMember.id)
        .join(User, User.id == WorkspaceMember.user_id)
        .where(WorkspaceMember.workspace_id == workspace_id, User.email == email)
    )
    return session.scalar(statement) is not None


def create_invitation(
    session: Session,
    evaluator: PolicyEvaluator,
    *,
    workspace_id: str,
    email: str,
    role: str = ROLE_MEMBER,
    now: Optional[datetime] = None,
) -> IssuedInvitation:
    """Issue an invitation; only the workspace owner may invite.

    The raw token is returned once and never stored.
    """

    evaluator.require(ResourceKind.OWNER_MANAGED, Operation.CREATE, workspace_id)
    if role not in WORKSPACE_ROLES:
        raise InvalidState(f"Unknown workspace role: {role}")
    if role == ROLE_OWNER:
        raise InvalidState("The owner role follows workspace ownership; use transfer-ownership")

    target_email = normalize_email(email)
    if not target_email:
        raise InvalidState("Invitation email must not be empty")
    if _is_member_by_email(session, workspace_id, target_email):
        raise DuplicateMembership()

    current_time = now or utcnow()
    token, token_hash = generate_invitation_token()
    invitation = WorkspaceInvitation(
        workspace_id=workspace_id,
        email=target_email,
        role=role,
        invited_by=evaluator.actor_id,
        token_hash=token_hash,
        status=INVITATION_PENDING,
        expires_at=current_time + timedelta(days=get_settings().invitation_ttl_days),
        created_at=current_time,
    )

    try:
        _expire_stale_pending(session, workspace_id, target_email, current_time)
        session.add(invitation)
        session.flush()
    except IntegrityError as exc:
        session.rollback()
        record_invitation_outcome(outcome="duplicate_pending")
        raise DuplicatePendingInvitation() from exc

    record_audit(
        session,
        entity="invitation",
        operation=AUDIT_INSERT,
        actor_id=evaluator.actor_id,
        entity_id=invitation.id,
        workspace_id=workspace_id,
        after=snapshot(invitation),
    )
    record_activity(
        session,
        action="invitation_created",
        entity_type="invitation",
        user_id=evaluator.actor_id,
        workspace_id=workspace_id,
        entity_id=invitation.id,
    )
    session.commit()

    record_invitation_outcome(outcome="created")
    logger.info(
        "invitation_created",
        invitation_id=invitation.id,
        workspace_id=workspace_id,
        role=role,
        expires_at=invitation.expires_at.isoformat(),
    )
    return IssuedInvitation(invitation=invitation, token=token)


def _fail(outcome: str, error: Exception, **fields: object) -> Exception:
    record_invitation_outcome(outcome=outcome)
    logger.info("invitation_accept_rejected", outcome=outcome, **fields)
    return error


def accept_invitation(
    session: Session,
    *,
    token: str,
    invitee: Invitee,
    now: Optional[datetime] = None,
) -> AcceptResult:
    """Redeem an invitation token for the calling user.

    Checks run in a fixed order: unknown token, email mismatch, expiry,
    already consumed, already a member. The membership insert and the status
    change commit together.
    """

    current_time = now or utcnow()
    invitation = find_invitation_by_token(session, token) if token else None
    if invitation is None:
        raise _fail("invalid_token", InvalidToken())

    log_fields = {"invitation_id": invitation.id, "workspace_id": invitation.workspace_id}

    # Before any state check, so a leaked token reveals nothing to the wrong account.
    if not invitee.email_verified or not emails_match(invitee.email, invitation.email):
        raise _fail("email_mismatch", EmailMismatch(), **log_fields)

    if invitation.status == INVITATION_EXPIRED or (
        invitation.status == INVITATION_PENDING and _is_expired(invitation, current_time)
    ):
        if invitation.status == INVITATION_PENDING:
            _transition(session, invitation, status=INVITATION_EXPIRED, actor_id=invitee.user_id)
            session.commit()
        raise _fail("expired", Expired(), **log_fields)

    if invitation.status != INVITATION_PENDING:
        raise _fail("already_used", AlreadyUsed(), **log_fields)

    workspace_id = invitation.workspace_id
    role = invitation.role
    existing = _find_membership(session, workspace_id, invitee.user_id)
    if existing is not None:
        _mark_accepted(session, invitation.id, invitee.user_id, current_time)
        session.commit()
        record_invitation_outcome(outcome=ACCEPT_ALREADY_MEMBER)
        logger.info("invitation_accepted", status=ACCEPT_ALREADY_MEMBER, **log_fields)
        return AcceptResult(workspace_id=workspace_id, role=existing.role, status=ACCEPT_ALREADY_MEMBER)

    try:
        if not _mark_accepted(session, invitation.id, invitee.user_id, current_time):
            # Another request consumed the token between our read and write.
            session.rollback()
            raise _fail("already_used", AlreadyUsed(), **log_fields)
        try:
            insert_membership(
                session,
                workspace_id=workspace_id,
                user_id=invitee.user_id,
                role=role,
                invited_by=invitation.invited_by,
                actor_id=invitee.user_id,
            )
        except (IntegrityError, DuplicateMembership) as exc:
            raise RaceLost() from exc
        session.commit()
    except RaceLost:
        session.rollback()
        return _recover_race(session, invitation_id=invitation.id, invitee=invitee, now=current_time)
    except Exception:
        session.rollback()
        raise

    record_activity(
        session,
        action="invitation_accepted",
        entity_type="invitation",
        user_id=invitee.user_id,
        workspace_id=workspace_id,
        entity_id=invitation.id,
    )
    session.commit()
    record_invitation_outcome(outcome=ACCEPT_JOINED)
    logger.info("invitation_accepted", status=ACCEPT_JOINED, role=role, **log_fields)
    return AcceptResult(workspace_id=workspace_id, role=role, status=ACCEPT_JOINED)


def _mark_accepted(session: Session, invitation_id: str, user_id: str, now: datetime) -> bool:
    """Compare-and-set pending -> accepted; False when someone else got there first."""

    invitation = session.get(WorkspaceInvitation, invitation_id)
    before = snapshot(invitation) if invitation is not None else None
    result = session.execute(
        update(WorkspaceInvitation)
        .where(
            WorkspaceInvitation.id == invitation_id,
            WorkspaceInvitation.status == INVITATION_PENDING,
        )
        .values(status=INVITATION_ACCEPTED, accepted_at=now, accepted_by=user_id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False

    if invitation is not None:
        session.refresh(invitation)
        record_audit(
            session,
            entity="invitation",
            operation=AUDIT_UPDATE,
            actor_id=user_id,
            entity_id=invitation_id,
            workspace_id=invitation.workspace_id,
            before=before,
            after=snapshot(invitation),
        )
    return True


def _recover_race(session: Session, *, invitation_id: str, invitee: Invitee, now: datetime) -> AcceptResult:
    """A concurrent insert created the membership first; settle as already_member."""

    invitation = session.get(WorkspaceInvitation, invitation_id)
    if invitation is None:
        raise InvalidToken()
    membership = _find_membership(session, invitation.workspace_id, invitee.user_id)
    if membership is None:
        raise AlreadyUsed()

    if invitation.status == INVITATION_PENDING:
        _mark_accepted(session, invitation_id, invitee.user_id, now)
        session.commit()

    record_race_recovered(kind="invitation_accept")
    record_invitation_outcome(outcome=ACCEPT_ALREADY_MEMBER)
    logger.info(
        "invitation_accept_race_recovered",
        invitation_id=invitation_id,
        workspace_id=invitation.workspace_id,
    )
    return AcceptResult(
        workspace_id=invitation.workspace_id,
        role=membership.role,
        status=ACCEPT_ALREADY_MEMBER,
    )


def revoke_invitation(session: Session, evaluator: PolicyEvaluator, *, invitation_id: str) -> WorkspaceInvitation:
    invitation = session.get(WorkspaceInvitation, invitation_id)
    if invitation is None:
        raise NotFound("Invitation not found")
    evaluator.require(ResourceKind.OWNER_MANAGED, Operation.READ, invitation.workspace_id)
    evaluator.require(ResourceKind.OWNER_MANAGED, Operation.UPDATE, invitation.workspace_id)
    if invitation.status != INVITATION_PENDING:
        raise InvalidState(f"Only pending invitations can be revoked (status: {invitation.status})")

    _transition(session, invitation, status=INVITATION_REVOKED, actor_id=evaluator.actor_id)
    session.commit()
    record_invitation_outcome(outcome="revoked")
    logger.info("invitation_revoked", invitation_id=invitation.id, workspace_id=invitation.workspace_id)
    return invitation


def list_invitations(
    session: Session,
    evaluator: PolicyEvaluator,
    *,
    workspace_id: str,
    status: Optional[str] = None,
) -> List[WorkspaceInvitation]:
    evaluator.require(ResourceKind.OWNER_MANAGED, Operation.READ, workspace_id)
    statement = select(WorkspaceInvitation).where(WorkspaceInvitation.workspace_id == workspace_id)
    if status is not None:
        statement = statement.where(WorkspaceInvitation.status == status)
    statement = statement.order_by(WorkspaceInvitation.created_at.desc(), WorkspaceInvitation.id.asc())
    return list(session.scalars(statement).all())


def pending_invitations_for_email(
    session: Session,
    email: str,
    *,
    now: Optional[datetime] = None,
) -> List[WorkspaceInvitation]:
    current_time = now or utcnow()
    rows = session.scalars(
        select(WorkspaceInvitation).where(
            WorkspaceInvitation.email == normalize_email(email),
            WorkspaceInvitation.status == INVITATION_PENDING,
        )
    ).all()
    return [row for row in rows if not _is_expired(row, current_time)]


def expire_stale_invitations(session: Session, *, now: Optional[datetime] = None) -> int:
    """Move every open (pending or processing) invitation past its expiry to ``expired``."""

    current_time = now or utcnow()
    rows = session.scalars(
        select(WorkspaceInvitation).where(
            WorkspaceInvitation.status.in_((INVITATION_PENDING, INVITATION_PROCESSING))
        )
    ).all()
    expired = 0
    for invitation in rows:
        if _is_expired(invitation, current_time):
            _transition(session, invitation, status=INVITATION_EXPIRED, actor_id=None)
            expired += 1
    session.commit()
    if expired:
        record_invitation_outcome(outcome="expired")
    logger.info("stale_invitations_expired", expired=expired)
    return expired
