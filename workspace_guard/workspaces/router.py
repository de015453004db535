"""Workspace management API routes."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from workspace_guard.auth.dependencies import get_actor_session, get_policy_evaluator
from workspace_guard.policies.evaluator import PolicyEvaluator
from workspace_guard.schemas.workspace import (
    MemberAddRequest,
    MemberResponse,
    TransferOwnershipRequest,
    WorkspaceCreateRequest,
    WorkspaceResponse,
)
from workspace_guard.storage.models import Workspace, WorkspaceMember
from workspace_guard.workspaces.service import (
    add_member,
    create_workspace,
    delete_workspace,
    get_workspace,
    list_members,
    list_workspaces,
    remove_member,
    transfer_ownership,
)


router = APIRouter(prefix="/workspaces", tags=["workspaces"])


def iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if isinstance(value, datetime) else None


def _workspace_response(workspace: Workspace, my_role: Optional[str]) -> WorkspaceResponse:
    return WorkspaceResponse(
        id=workspace.id,
        name=workspace.name,
        owner_id=workspace.owner_id,
        plan=workspace.plan,
        seat_count=workspace.seat_count,
        created_at=iso(workspace.created_at) or "",
        my_role=my_role,
    )


def _member_response(membership: WorkspaceMember) -> MemberResponse:
    return MemberResponse(
        id=membership.id,
        workspace_id=membership.workspace_id,
        user_id=membership.user_id,
        role=membership.role,
        invited_by=membership.invited_by,
        joined_at=iso(membership.joined_at) or "",
    )


@router.post("", response_model=WorkspaceResponse, status_code=201)
def create_workspace_route(
    payload: WorkspaceCreateRequest,
    evaluator: PolicyEvaluator = Depends(get_policy_evaluator),
    session: Session = Depends(get_actor_session),
) -> WorkspaceResponse:
    workspace = create_workspace(session, owner_id=evaluator.actor_id, name=payload.name, plan=payload.plan)
    return _workspace_response(workspace, "owner")


@router.get("", response_model=List[WorkspaceResponse])
def list_workspaces_route(
    evaluator: PolicyEvaluator = Depends(get_policy_evaluator),
    session: Session = Depends(get_actor_session),
) -> List[WorkspaceResponse]:
    workspaces = list_workspaces(session, evaluator.actor_id)
    return [_workspace_response(workspace, evaluator.facts(workspace.id).role) for workspace in workspaces]


@router.get("/{workspace_id}", response_model=WorkspaceResponse)
def get_workspace_route(
    workspace_id: str,
    evaluator: PolicyEvaluator = Depends(get_policy_evaluator),
    session: Session = Depends(get_actor_session),
) -> WorkspaceResponse:
    view = get_workspace(session, evaluator, workspace_id)
    return _workspace_response(view.workspace, view.my_role)


@router.delete("/{workspace_id}", status_code=204)
def delete_workspace_route(
    workspace_id: str,
    evaluator: PolicyEvaluator = Depends(get_policy_evaluator),
    session: Session = Depends(get_actor_session),
) -> Response:
    delete_workspace(session, evaluator, workspace_id)
    return Response(status_code=204)


@router.get("/{workspace_id}/members", response_model=List[MemberResponse])
def list_members_route(
    workspace_id: str,
    evaluator: PolicyEvaluator = Depends(get_policy_evaluator),
    session: Session = Depends(get_actor_session),
) -> List[MemberResponse]:
    return [_member_response(row) for row in list_members(session, evaluator, workspace_id)]


@router.post("/{workspace_id}/members", response_model=MemberResponse, status_code=201)
def add_member_route(
    workspace_id: str,
    payload: MemberAddRequest,
    evaluator: PolicyEvaluator = Depends(get_policy_evaluator),
    session: Session = Depends(get_actor_session),
) -> MemberResponse:
    membership = add_member(
        session,
        evaluator,
        workspace_id=workspace_id,
        user_id=payload.user_id,
        role=payload.role,
    )
    return _member_response(membership)


@router.delete("/{workspace_id}/members/{user_id}", status_code=204)
def remove_member_route(
    workspace_id: str,
    user_id: str,
    evaluator: PolicyEvaluator = Depends(get_policy_evaluator),
    session: Session = Depends(get_actor_session),
) -> Response:
    remove_member(session, evaluator, workspace_id=workspace_id, user_id=user_id)
    return Response(status_code=204)


@router.post("/{workspace_id}/transfer-ownership", response_model=WorkspaceResponse)
def transfer_ownership_route(
    workspace_id: str,
    payload: TransferOwnershipRequest,
    evaluator: PolicyEvaluator = Depends(get_policy_evaluator),
    session: Session = Depends(get_actor_session),
) -> WorkspaceResponse:
    workspace = transfer_ownership(session, evaluator, workspace_id=workspace_id, new_owner_id=payload.new_owner_id)
    return _workspace_response(workspace, "member")
