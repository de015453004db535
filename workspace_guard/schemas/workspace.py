"""Pydantic schemas for workspace and membership API."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class WorkspaceCreateRequest(BaseModel):
    name: str = Field(min_length=3, max_length=120)
    plan: Optional[str] = Field(default=None, max_length=32)


class WorkspaceResponse(BaseModel):
    id: str
    name: str
    owner_id: str
    plan: str
    seat_count: int
    created_at: str
    my_role: Optional[str] = None


class MemberResponse(BaseModel):
    id: str
    workspace_id: str
    user_id: str
    role: str
    invited_by: Optional[str] = None
    joined_at: str


class MemberAddRequest(BaseModel):
    user_id: str = Field(min_length=36, max_length=36)
    role: str = Field(default="member", pattern="^(owner|member)$")


class TransferOwnershipRequest(BaseModel):
    new_owner_id: str = Field(min_length=36, max_length=36)
