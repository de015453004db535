"""Base-table authorization facts.

These are the leaves of the policy graph. Each loader reads the
``workspaces`` and ``workspace_members`` tables directly and never consults
another policy, so no predicate built on top of them can recurse back into
itself.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from workspace_guard.storage.models import ROLE_OWNER, Workspace, WorkspaceMember


@dataclass(frozen=True)
class WorkspaceFacts:
    actor_id: str
    workspace_id: str
    exists: bool
    owner_id: Optional[str] = None
    member_role: Optional[str] = None

    @property
    def is_owner(self) -> bool:
        return self.exists and self.owner_id is not None and self.owner_id == self.actor_id

    @property
    def is_member(self) -> bool:
        return self.exists and self.member_role is not None

    @property
    def role(self) -> Optional[str]:
        if self.is_owner:
            return ROLE_OWNER
        return self.member_role


def missing_workspace(actor_id: str, workspace_id: str) -> WorkspaceFacts:
    return WorkspaceFacts(actor_id=actor_id, workspace_id=workspace_id, exists=False)


def load_workspace_facts(session: Session, actor_id: str, workspace_id: str) -> WorkspaceFacts:
    """Load ownership and membership for one (actor, workspace) pair in one query."""

    statement = (
        select(Workspace.owner_id, WorkspaceMember.role)
        .select_from(Workspace)
        .outerjoin(
            WorkspaceMember,
            and_(
                WorkspaceMember.workspace_id == Workspace.id,
                WorkspaceMember.user_id == actor_id,
            ),
        )
        .where(Workspace.id == workspace_id)
    )
    row = session.execute(statement).first()
    if row is None:
        return missing_workspace(actor_id, workspace_id)
    owner_id, member_role = row
    return WorkspaceFacts(
        actor_id=actor_id,
        workspace_id=workspace_id,
        exists=True,
        owner_id=owner_id,
        member_role=member_role,
    )


def owns_any_workspace(session: Session, actor_id: str) -> bool:
    """True when the actor holds an owner membership or owns a workspace row."""

    owner_row = select(WorkspaceMember.id).where(
        WorkspaceMember.user_id == actor_id,
        WorkspaceMember.role == ROLE_OWNER,
    )
    owned_workspace = select(Workspace.id).where(Workspace.owner_id == actor_id)
    return bool(session.scalar(select(or_(owner_row.exists(), owned_workspace.exists()))))
