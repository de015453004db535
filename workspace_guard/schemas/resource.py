"""Pydantic schemas for workspace resources and settings."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ResourceWriteRequest(BaseModel):
    title: Optional[str] = Field(default=None, max_length=255)
    name: Optional[str] = Field(default=None, max_length=255)
    status: Optional[str] = Field(default=None, max_length=32)
    stage: Optional[str] = Field(default=None, max_length=32)
    body: Optional[str] = None
    assigned_to: Optional[str] = Field(default=None, max_length=36)


class ResourceResponse(BaseModel):
    id: str
    workspace_id: str
    kind: str
    created_by: Optional[str] = None
    assigned_to: Optional[str] = None
    fields: Dict[str, Any]
    created_at: str
    updated_at: str


class SubscriptionUpdateRequest(BaseModel):
    plan: str = Field(min_length=1, max_length=32)
    seat_count: Optional[int] = Field(default=None, ge=1)
    status: Optional[str] = Field(default=None, max_length=32)
    current_period_end: Optional[datetime] = None


class SubscriptionResponse(BaseModel):
    workspace_id: str
    plan: str
    status: str
    seat_count: int
    current_period_end: Optional[str] = None


class BusinessProfileRequest(BaseModel):
    company_name: str = Field(min_length=1, max_length=200)
    industry: Optional[str] = Field(default=None, max_length=120)
    website: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = None


class BusinessProfileResponse(BaseModel):
    workspace_id: str
    company_name: str
    industry: Optional[str] = None
    website: Optional[str] = None
    description: Optional[str] = None
    updated_at: str


class DmRoomCreateRequest(BaseModel):
    user_ids: List[str] = Field(min_length=1)


class DmRoomResponse(BaseModel):
    id: str
    workspace_id: str
    member_key: str
    created: bool
    participants: List[str]
