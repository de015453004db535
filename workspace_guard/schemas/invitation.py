"""Pydantic schemas for invitation API."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, EmailStr, Field


class InvitationCreateRequest(BaseModel):
    email: EmailStr
    role: str = Field(default="member", pattern="^(owner|member)$")


class InvitationCreateResponse(BaseModel):
    invitation_id: str
    workspace_id: str
    email: str
    role: str
    token: str
    expires_at: str
    email_sent: bool
    invite_url: str


class InvitationResponse(BaseModel):
    id: str
    workspace_id: str
    email: str
    role: str
    status: str
    invited_by: Optional[str] = None
    expires_at: str
    accepted_at: Optional[str] = None
    created_at: str


class InvitationAcceptRequest(BaseModel):
    token: str = Field(min_length=1, max_length=255)


class InvitationAcceptResponse(BaseModel):
    workspace_id: str
    role: str
    status: str
