"""Pydantic schemas for audit API."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class AuditRecordResponse(BaseModel):
    id: int
    entity: str
    entity_id: str
    workspace_id: Optional[str] = None
    operation: str
    actor_id: Optional[str] = None
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None
    changed_fields: List[str]
    created_at: Optional[str] = None
