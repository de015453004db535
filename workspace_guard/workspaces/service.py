"""Workspace and membership application services."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from workspace_guard.audit.recorder import (
    AUDIT_DELETE,
    AUDIT_INSERT,
    AUDIT_UPDATE,
    record_activity,
    record_audit,
    snapshot,
)
from workspace_guard.billing.plans import get_plan
from workspace_guard.core.config import get_settings
from workspace_guard.core.errors import CannotRemoveOwner, DuplicateMembership, InvalidState, NotFound
from workspace_guard.core.logger import get_logger
from workspace_guard.policies.evaluator import Operation, PolicyEvaluator, ResourceKind
from workspace_guard.policies.filters import membership_visibility_clause, workspace_visibility_clause
from workspace_guard.storage.models import (
    ROLE_MEMBER,
    ROLE_OWNER,
    WORKSPACE_ROLES,
    User,
    Workspace,
    WorkspaceMember,
    utcnow,
)


logger = get_logger("workspace_guard.workspaces")


@dataclass(frozen=True)
class WorkspaceView:
    workspace: Workspace
    my_role: Optional[str]


def _get_workspace_row(session: Session, workspace_id: str) -> Optional[Workspace]:
    return session.scalar(select(Workspace).where(Workspace.id == workspace_id))


def _get_membership_row(session: Session, workspace_id: str, user_id: str) -> Optional[WorkspaceMember]:
    return session.scalar(
        select(WorkspaceMember).where(
            WorkspaceMember.workspace_id == workspace_id,
            WorkspaceMember.user_id == user_id,
        )
    )


def insert_membership(
    session: Session,
    *,
    workspace_id: str,
    user_id: str,
    role: str,
    invited_by: Optional[str],
    actor_id: Optional[str],
) -> WorkspaceMember:
    """Insert one membership row and its audit record without committing.

    Raises ``DuplicateMembership`` when the row already exists and lets an
    ``IntegrityError`` from a concurrent insert propagate to the caller.
    """

    if role not in WORKSPACE_ROLES:
        raise InvalidState(f"Unknown workspace role: {role}")
    if _get_membership_row(session, workspace_id, user_id) is not None:
        raise DuplicateMembership()

    membership = WorkspaceMember(
        workspace_id=workspace_id,
        user_id=user_id,
        role=role,
        invited_by=invited_by,
        joined_at=utcnow(),
    )
    session.add(membership)
    session.flush()
    record_audit(
        session,
        entity="membership",
        operation=AUDIT_INSERT,
        actor_id=actor_id,
        entity_id=membership.id,
        workspace_id=workspace_id,
        after=snapshot(membership),
    )
    return membership


def create_workspace(
    session: Session,
    *,
    owner_id: str,
    name: str,
    plan: Optional[str] = None,
    commit: bool = True,
) -> Workspace:
    """Create a workspace and its owner membership in one transaction."""

    plan_name = plan or get_settings().default_plan
    plan_definition = get_plan(plan_name)

    now = utcnow()
    workspace = Workspace(
        name=name.strip(),
        owner_id=owner_id,
        plan=plan_name,
        seat_count=plan_definition.resolve_seats(None),
        created_at=now,
        updated_at=now,
    )
    try:
        session.add(workspace)
        session.flush()
        record_audit(
            session,
            entity="workspace",
            operation=AUDIT_INSERT,
            actor_id=owner_id,
            entity_id=workspace.id,
            workspace_id=workspace.id,
            after=snapshot(workspace),
        )
        insert_membership(
            session,
            workspace_id=workspace.id,
            user_id=owner_id,
            role=ROLE_OWNER,
            invited_by=None,
            actor_id=owner_id,
        )
        if commit:
            session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info("workspace_created", workspace_id=workspace.id, owner_id=owner_id, plan=plan_name)
    return workspace


def get_workspace(session: Session, evaluator: PolicyEvaluator, workspace_id: str) -> WorkspaceView:
    facts = evaluator.require(ResourceKind.WORKSPACE, Operation.READ, workspace_id)
    workspace = _get_workspace_row(session, workspace_id)
    if workspace is None:  # pragma: no cover
        raise NotFound()
    return WorkspaceView(workspace=workspace, my_role=facts.role)


def list_workspaces(session: Session, actor_id: str) -> List[Workspace]:
    statement = (
        select(Workspace)
        .where(workspace_visibility_clause(actor_id))
        .order_by(Workspace.created_at.asc(), Workspace.id.asc())
    )
    return list(session.scalars(statement).all())


def delete_workspace(session: Session, evaluator: PolicyEvaluator, workspace_id: str) -> None:
    evaluator.require(ResourceKind.WORKSPACE, Operation.DELETE, workspace_id)
    workspace = _get_workspace_row(session, workspace_id)
    if workspace is None:  # pragma: no cover
        raise NotFound()

    before = snapshot(workspace)
    try:
        # Memberships go with the workspace through the ORM cascade.
        for membership in list(workspace.members):
            record_audit(
                session,
                entity="membership",
                operation=AUDIT_DELETE,
                actor_id=evaluator.actor_id,
                entity_id=membership.id,
                workspace_id=workspace.id,
                before=snapshot(membership),
            )
        record_audit(
            session,
            entity="workspace",
            operation=AUDIT_DELETE,
            actor_id=evaluator.actor_id,
            entity_id=workspace.id,
            workspace_id=workspace.id,
            before=before,
        )
        session.delete(workspace)
        session.commit()
    except Exception:
        session.rollback()
        raise
    evaluator.forget(workspace_id)
    logger.info("workspace_deleted", workspace_id=workspace_id)


def list_members(session: Session, evaluator: PolicyEvaluator, workspace_id: str) -> List[WorkspaceMember]:
    """Members visible to the actor: every row for the owner, the actor's own row otherwise."""

    evaluator.require(ResourceKind.WORKSPACE, Operation.READ, workspace_id)
    statement = (
        select(WorkspaceMember)
        .where(
            WorkspaceMember.workspace_id == workspace_id,
            membership_visibility_clause(evaluator.actor_id),
        )
        .order_by(WorkspaceMember.joined_at.asc(), WorkspaceMember.id.asc())
    )
    return list(session.scalars(statement).all())


def add_member(
    session: Session,
    evaluator: PolicyEvaluator,
    *,
    workspace_id: str,
    user_id: str,
    role: str = ROLE_MEMBER,
) -> WorkspaceMember:
    evaluator.require(ResourceKind.MEMBERSHIP, Operation.CREATE, workspace_id)
    if role == ROLE_OWNER:
        raise InvalidState("The owner role follows workspace ownership; use transfer-ownership")
    if session.get(User, user_id) is None:
        raise NotFound("User not found")

    try:
        membership = insert_membership(
            session,
            workspace_id=workspace_id,
            user_id=user_id,
            role=role,
            invited_by=evaluator.actor_id,
            actor_id=evaluator.actor_id,
        )
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise DuplicateMembership() from exc
    except Exception:
        session.rollback()
        raise

    evaluator.forget(workspace_id)
    record_activity(
        session,
        action="member_added",
        entity_type="membership",
        user_id=evaluator.actor_id,
        workspace_id=workspace_id,
        entity_id=membership.id,
    )
    session.commit()
    logger.info("member_added", workspace_id=workspace_id, user_id=user_id, role=role)
    return membership


def remove_member(session: Session, evaluator: PolicyEvaluator, *, workspace_id: str, user_id: str) -> None:
    # Visibility first so outsiders learn nothing about the roster.
    facts = evaluator.require(ResourceKind.WORKSPACE, Operation.READ, workspace_id)
    if facts.owner_id == user_id:
        raise CannotRemoveOwner()

    evaluator.require(ResourceKind.MEMBERSHIP, Operation.DELETE, workspace_id, row_user_id=user_id)
    membership = _get_membership_row(session, workspace_id, user_id)
    if membership is None:
        raise NotFound("Membership not found")

    try:
        record_audit(
            session,
            entity="membership",
            operation=AUDIT_DELETE,
            actor_id=evaluator.actor_id,
            entity_id=membership.id,
            workspace_id=workspace_id,
            before=snapshot(membership),
        )
        session.delete(membership)
        session.commit()
    except Exception:
        session.rollback()
        raise

    evaluator.forget(workspace_id)
    logger.info("member_removed", workspace_id=workspace_id, user_id=user_id, removed_by=evaluator.actor_id)


def transfer_ownership(
    session: Session,
    evaluator: PolicyEvaluator,
    *,
    workspace_id: str,
    new_owner_id: str,
) -> Workspace:
    """Hand the workspace to an existing member; the old owner stays as a member."""

    evaluator.require(ResourceKind.WORKSPACE, Operation.UPDATE, workspace_id)
    workspace = _get_workspace_row(session, workspace_id)
    if workspace is None:  # pragma: no cover
        raise NotFound()
    if workspace.owner_id == new_owner_id:
        raise InvalidState("User already owns this workspace")

    incoming = _get_membership_row(session, workspace_id, new_owner_id)
    if incoming is None:
        raise InvalidState("New owner must already be a member of the workspace")
    outgoing = _get_membership_row(session, workspace_id, workspace.owner_id)

    try:
        workspace_before = snapshot(workspace)
        workspace.owner_id = new_owner_id
        workspace.updated_at = utcnow()

        incoming_before = snapshot(incoming)
        incoming.role = ROLE_OWNER
        changes = [(incoming, incoming_before)]
        if outgoing is not None:
            outgoing_before = snapshot(outgoing)
            outgoing.role = ROLE_MEMBER
            changes.append((outgoing, outgoing_before))
        session.flush()

        record_audit(
            session,
            entity="workspace",
            operation=AUDIT_UPDATE,
            actor_id=evaluator.actor_id,
            entity_id=workspace.id,
            workspace_id=workspace.id,
            before=workspace_before,
            after=snapshot(workspace),
        )
        for membership, before in changes:
            record_audit(
                session,
                entity="membership",
                operation=AUDIT_UPDATE,
                actor_id=evaluator.actor_id,
                entity_id=membership.id,
                workspace_id=workspace.id,
                before=before,
                after=snapshot(membership),
            )
        session.commit()
    except Exception:
        session.rollback()
        raise

    evaluator.forget(workspace_id)
    logger.info("workspace_ownership_transferred", workspace_id=workspace_id, new_owner_id=new_owner_id)
    return workspace


def sync_owner_membership(session: Session, workspace: Workspace) -> Optional[WorkspaceMember]:
    """Ensure the owner holds a role=owner membership; returns the repaired row.

    Returns ``None`` when nothing needed fixing. Does not commit.
    """

    membership = _get_membership_row(session, workspace.id, workspace.owner_id)
    if membership is None:
        return insert_membership(
            session,
            workspace_id=workspace.id,
            user_id=workspace.owner_id,
            role=ROLE_OWNER,
            invited_by=None,
            actor_id=None,
        )
    if membership.role != ROLE_OWNER:
        before = snapshot(membership)
        membership.role = ROLE_OWNER
        session.flush()
        record_audit(
            session,
            entity="membership",
            operation=AUDIT_UPDATE,
            actor_id=None,
            entity_id=membership.id,
            workspace_id=workspace.id,
            before=before,
            after=snapshot(membership),
        )
        return membership
    return None


def backfill_owner_memberships(session: Session) -> int:
    repaired = 0
    for workspace in session.scalars(select(Workspace).order_by(Workspace.created_at.asc())).all():
        if sync_owner_membership(session, workspace) is not None:
            repaired += 1
    session.commit()
    logger.info("owner_membership_backfill_completed", repaired=repaired)
    return repaired
