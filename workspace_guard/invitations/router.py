"""Invitation API routes."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from workspace_guard.auth.dependencies import get_actor_session, get_policy_evaluator, require_auth_context
from workspace_guard.auth.jwt import AuthContext
from workspace_guard.invitations.mailer import InvitationMailer
from workspace_guard.invitations.service import (
    Invitee,
    accept_invitation,
    create_invitation,
    list_invitations,
    revoke_invitation,
)
from workspace_guard.policies.evaluator import PolicyEvaluator
from workspace_guard.schemas.invitation import (
    InvitationAcceptRequest,
    InvitationAcceptResponse,
    InvitationCreateRequest,
    InvitationCreateResponse,
    InvitationResponse,
)
from workspace_guard.storage.models import User, Workspace, WorkspaceInvitation
from workspace_guard.workspaces.router import iso


router = APIRouter(tags=["invitations"])


def get_invitation_mailer() -> InvitationMailer:
    return InvitationMailer()


def _invitation_response(invitation: WorkspaceInvitation) -> InvitationResponse:
    return InvitationResponse(
        id=invitation.id,
        workspace_id=invitation.workspace_id,
        email=invitation.email,
        role=invitation.role,
        status=invitation.status,
        invited_by=invitation.invited_by,
        expires_at=iso(invitation.expires_at) or "",
        accepted_at=iso(invitation.accepted_at),
        created_at=iso(invitation.created_at) or "",
    )


@router.post(
    "/workspaces/{workspace_id}/invitations",
    response_model=InvitationCreateResponse,
    status_code=201,
)
def create_invitation_route(
    workspace_id: str,
    payload: InvitationCreateRequest,
    evaluator: PolicyEvaluator = Depends(get_policy_evaluator),
    session: Session = Depends(get_actor_session),
    mailer: InvitationMailer = Depends(get_invitation_mailer),
) -> InvitationCreateResponse:
    issued = create_invitation(
        session,
        evaluator,
        workspace_id=workspace_id,
        email=payload.email,
        role=payload.role,
    )
    invitation = issued.invitation
    workspace = session.get(Workspace, workspace_id)
    inviter: Optional[User] = session.get(User, evaluator.actor_id)
    delivery = mailer.send(
        invitation_id=invitation.id,
        email=invitation.email,
        token=issued.token,
        workspace_name=workspace.name if workspace is not None else "your workspace",
        inviter_email=inviter.email if inviter is not None else "A teammate",
        role=invitation.role,
        expires_at=invitation.expires_at,
    )
    return InvitationCreateResponse(
        invitation_id=invitation.id,
        workspace_id=invitation.workspace_id,
        email=invitation.email,
        role=invitation.role,
        token=issued.token,
        expires_at=iso(invitation.expires_at) or "",
        email_sent=delivery.sent,
        invite_url=delivery.invite_url,
    )


@router.get("/workspaces/{workspace_id}/invitations", response_model=List[InvitationResponse])
def list_invitations_route(
    workspace_id: str,
    status: Optional[str] = None,
    evaluator: PolicyEvaluator = Depends(get_policy_evaluator),
    session: Session = Depends(get_actor_session),
) -> List[InvitationResponse]:
    rows = list_invitations(session, evaluator, workspace_id=workspace_id, status=status)
    return [_invitation_response(row) for row in rows]


@router.post("/invitations/{invitation_id}/revoke", response_model=InvitationResponse)
def revoke_invitation_route(
    invitation_id: str,
    evaluator: PolicyEvaluator = Depends(get_policy_evaluator),
    session: Session = Depends(get_actor_session),
) -> InvitationResponse:
    return _invitation_response(revoke_invitation(session, evaluator, invitation_id=invitation_id))


@router.post("/invitations/accept", response_model=InvitationAcceptResponse)
def accept_invitation_route(
    payload: InvitationAcceptRequest,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_actor_session),
) -> InvitationAcceptResponse:
    result = accept_invitation(
        session,
        token=payload.token,
        invitee=Invitee(user_id=auth.user_id, email=auth.email, email_verified=auth.email_verified),
    )
    return InvitationAcceptResponse(workspace_id=result.workspace_id, role=result.role, status=result.status)
