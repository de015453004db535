"""SQL visibility clauses for list reads.

Each clause is the query-shaped twin of a predicate in
``policies.evaluator`` and reads only the base ``workspaces`` and
``workspace_members`` tables. A row the actor may not see is simply absent
from the result.
"""

from __future__ import annotations

from sqlalchemy import Select, or_, select
from sqlalchemy.sql.elements import ColumnElement

from workspace_guard.storage.models import Workspace, WorkspaceMember


def member_workspace_ids(actor_id: str) -> Select:
    return select(WorkspaceMember.workspace_id).where(WorkspaceMember.user_id == actor_id)


def owned_workspace_ids(actor_id: str) -> Select:
    return select(Workspace.id).where(Workspace.owner_id == actor_id)


def visible_workspace_ids(actor_id: str) -> Select:
    return member_workspace_ids(actor_id).union(owned_workspace_ids(actor_id))


def workspace_visibility_clause(actor_id: str) -> ColumnElement[bool]:
    return or_(
        Workspace.owner_id == actor_id,
        Workspace.id.in_(member_workspace_ids(actor_id)),
    )


def membership_visibility_clause(actor_id: str) -> ColumnElement[bool]:
    return or_(
        WorkspaceMember.user_id == actor_id,
        WorkspaceMember.workspace_id.in_(owned_workspace_ids(actor_id)),
    )


def resource_visibility_clause(model, actor_id: str) -> ColumnElement[bool]:
    """Clause for any model carrying a ``workspace_id`` column."""

    return or_(
        model.workspace_id.in_(member_workspace_ids(actor_id)),
        model.workspace_id.in_(owned_workspace_ids(actor_id)),
    )
