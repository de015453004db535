"""Audit trail API routes."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from workspace_guard.audit.recorder import decode_record, list_audit_records
from workspace_guard.auth.dependencies import get_actor_session, get_policy_evaluator
from workspace_guard.policies.evaluator import PolicyEvaluator
from workspace_guard.schemas.audit import AuditRecordResponse


router = APIRouter(prefix="/audit-records", tags=["audit"])


@router.get("", response_model=List[AuditRecordResponse])
def list_audit_records_route(
    entity: Optional[str] = None,
    entity_id: Optional[str] = None,
    workspace_id: Optional[str] = None,
    limit: int = Query(default=100, ge=1, le=500),
    evaluator: PolicyEvaluator = Depends(get_policy_evaluator),
    session: Session = Depends(get_actor_session),
) -> List[AuditRecordResponse]:
    records = list_audit_records(
        session,
        evaluator=evaluator,
        entity=entity,
        entity_id=entity_id,
        workspace_id=workspace_id,
        limit=limit,
    )
    return [AuditRecordResponse(**decode_record(record)) for record in records]
