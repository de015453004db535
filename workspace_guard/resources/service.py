"""Workspace-scoped resources: tasks, CRM items and documents."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Type

from sqlalchemy import select
from sqlalchemy.orm import Session

from workspace_guard.audit.recorder import record_activity
from workspace_guard.core.errors import InvalidState, NotFound
from workspace_guard.core.logger import get_logger
from workspace_guard.policies.evaluator import Operation, PolicyEvaluator, ResourceKind
from workspace_guard.policies.facts import load_workspace_facts
from workspace_guard.policies.filters import resource_visibility_clause
from workspace_guard.storage.models import CrmItem, Document, Task, utcnow


logger = get_logger("workspace_guard.resources")


@dataclass(frozen=True)
class ResourceType:
    slug: str
    model: Type[Any]
    required_fields: Tuple[str, ...]
    editable_fields: Tuple[str, ...]


RESOURCE_TYPES: Dict[str, ResourceType] = {
    "tasks": ResourceType(
        slug="tasks",
        model=Task,
        required_fields=("title",),
        editable_fields=("title", "status", "assigned_to"),
    ),
    "crm-items": ResourceType(
        slug="crm-items",
        model=CrmItem,
        required_fields=("name",),
        editable_fields=("name", "stage", "assigned_to"),
    ),
    "documents": ResourceType(
        slug="documents",
        model=Document,
        required_fields=("title",),
        editable_fields=("title", "body", "assigned_to"),
    ),
}


def get_resource_type(slug: str) -> ResourceType:
    resource_type = RESOURCE_TYPES.get(slug)
    if resource_type is None:
        raise NotFound(f"Unknown resource type: {slug}")
    return resource_type


def _check_assignee(session: Session, workspace_id: str, assigned_to: Optional[str]) -> None:
    if assigned_to is None:
        return
    facts = load_workspace_facts(session, assigned_to, workspace_id)
    if not (facts.is_owner or facts.is_member):
        raise InvalidState("Assignee must be a member of the workspace")


def _clean_values(resource_type: ResourceType, values: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in values.items() if key in resource_type.editable_fields}


def _get_row(session: Session, resource_type: ResourceType, workspace_id: str, resource_id: str):
    model = resource_type.model
    return session.scalar(select(model).where(model.id == resource_id, model.workspace_id == workspace_id))


def list_resources(
    session: Session,
    evaluator: PolicyEvaluator,
    resource_type: ResourceType,
    workspace_id: str,
    *,
    limit: int = 100,
) -> List[Any]:
    """Rows of one workspace visible to the actor; an outsider gets an empty list."""

    model = resource_type.model
    statement = (
        select(model)
        .where(model.workspace_id == workspace_id, resource_visibility_clause(model, evaluator.actor_id))
        .order_by(model.created_at.desc(), model.id.asc())
        .limit(limit)
    )
    return list(session.scalars(statement).all())


def get_resource(
    session: Session,
    evaluator: PolicyEvaluator,
    resource_type: ResourceType,
    workspace_id: str,
    resource_id: str,
) -> Any:
    evaluator.require(ResourceKind.RESOURCE, Operation.READ, workspace_id)
    row = _get_row(session, resource_type, workspace_id, resource_id)
    if row is None:
        raise NotFound()
    return row


def create_resource(
    session: Session,
    evaluator: PolicyEvaluator,
    resource_type: ResourceType,
    workspace_id: str,
    values: Dict[str, Any],
) -> Any:
    evaluator.require(ResourceKind.RESOURCE, Operation.CREATE, workspace_id)
    cleaned = _clean_values(resource_type, values)
    missing = [field for field in resource_type.required_fields if not cleaned.get(field)]
    if missing:
        raise InvalidState(f"Missing required field(s): {', '.join(missing)}")
    _check_assignee(session, workspace_id, cleaned.get("assigned_to"))

    now = utcnow()
    row = resource_type.model(
        workspace_id=workspace_id,
        created_by=evaluator.actor_id,
        created_at=now,
        updated_at=now,
        **cleaned,
    )
    try:
        session.add(row)
        session.commit()
    except Exception:
        session.rollback()
        raise

    record_activity(
        session,
        action=f"{resource_type.slug}_created",
        entity_type=resource_type.slug,
        user_id=evaluator.actor_id,
        workspace_id=workspace_id,
        entity_id=row.id,
    )
    session.commit()
    logger.info("resource_created", kind=resource_type.slug, resource_id=row.id, workspace_id=workspace_id)
    return row


def update_resource(
    session: Session,
    evaluator: PolicyEvaluator,
    resource_type: ResourceType,
    workspace_id: str,
    resource_id: str,
    values: Dict[str, Any],
) -> Any:
    row = get_resource(session, evaluator, resource_type, workspace_id, resource_id)
    evaluator.require(
        ResourceKind.RESOURCE,
        Operation.UPDATE,
        workspace_id,
        created_by=row.created_by,
        assigned_to=row.assigned_to,
    )
    cleaned = _clean_values(resource_type, values)
    for field in resource_type.required_fields:
        if field in cleaned and not cleaned[field]:
            raise InvalidState(f"Field must not be empty: {field}")
    if "assigned_to" in cleaned:
        _check_assignee(session, workspace_id, cleaned["assigned_to"])

    try:
        for key, value in cleaned.items():
            setattr(row, key, value)
        row.updated_at = utcnow()
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info("resource_updated", kind=resource_type.slug, resource_id=row.id, fields=sorted(cleaned))
    return row


def delete_resource(
    session: Session,
    evaluator: PolicyEvaluator,
    resource_type: ResourceType,
    workspace_id: str,
    resource_id: str,
) -> None:
    row = get_resource(session, evaluator, resource_type, workspace_id, resource_id)
    evaluator.require(
        ResourceKind.RESOURCE,
        Operation.DELETE,
        workspace_id,
        created_by=row.created_by,
        assigned_to=row.assigned_to,
    )
    try:
        session.delete(row)
        session.commit()
    except Exception:
        session.rollback()
        raise

    record_activity(
        session,
        action=f"{resource_type.slug}_deleted",
        entity_type=resource_type.slug,
        user_id=evaluator.actor_id,
        workspace_id=workspace_id,
        entity_id=resource_id,
    )
    session.commit()
    logger.info("resource_deleted", kind=resource_type.slug, resource_id=resource_id, workspace_id=workspace_id)
