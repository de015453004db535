"""Append-only audit trail for tracked entities.

Every mutation of a tracked entity appends one ``AuditRecord`` with the
row's state before and after the change. Records are never updated or
deleted through this module; on PostgreSQL a trigger rejects both.
"""

from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import inspect, select
from sqlalchemy.orm import Session

from workspace_guard.core.errors import AuditWriteError
from workspace_guard.core.logger import get_logger
from workspace_guard.core.metrics import record_audit_write_failure, record_policy_denied
from workspace_guard.storage.models import ActivityLog, AuditRecord, ensure_utc


logger = get_logger("workspace_guard.audit")

AUDIT_INSERT = "insert"
AUDIT_UPDATE = "update"
AUDIT_DELETE = "delete"
AUDIT_OPERATIONS = (AUDIT_INSERT, AUDIT_UPDATE, AUDIT_DELETE)

# A lost record here must abort the mutation.
STRICT_ENTITIES = frozenset({"workspace", "membership"})

REDACTED = "[REDACTED]"
SENSITIVE_KEYS = frozenset({"password_hash", "token_hash"})


def _json_safe(value: Any) -> Any:
    if isinstance(value, datetime):
        return ensure_utc(value).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def snapshot(instance: Any) -> Dict[str, Any]:
    """Column values of a mapped instance, JSON-safe and redacted."""

    mapper = inspect(instance).mapper
    values: Dict[str, Any] = {}
    for column in mapper.column_attrs:
        key = column.key
        if key in SENSITIVE_KEYS:
            values[key] = REDACTED
            continue
        values[key] = _json_safe(getattr(instance, key))
    return values


def changed_fields(before: Optional[Dict[str, Any]], after: Optional[Dict[str, Any]]) -> List[str]:
    if before is None or after is None:
        return []
    keys = set(before) | set(after)
    return sorted(key for key in keys if before.get(key) != after.get(key))


def _build_record(
    *,
    entity: str,
    operation: str,
    actor_id: Optional[str],
    entity_id: str,
    workspace_id: Optional[str],
    before: Optional[Dict[str, Any]],
    after: Optional[Dict[str, Any]],
) -> AuditRecord:
    if operation not in AUDIT_OPERATIONS:
        raise ValueError(f"Unsupported audit operation: {operation}")
    if operation == AUDIT_INSERT and after is None:
        raise ValueError("Insert audit record requires an after snapshot")
    if operation == AUDIT_DELETE and before is None:
        raise ValueError("Delete audit record requires a before snapshot")

    fields = changed_fields(before, after) if operation == AUDIT_UPDATE else []
    return AuditRecord(
        entity=entity,
        entity_id=entity_id,
        workspace_id=workspace_id,
        operation=operation,
        actor_id=actor_id,
        before_json=json.dumps(before, sort_keys=True) if before is not None else None,
        after_json=json.dumps(after, sort_keys=True) if after is not None else None,
        changed_fields_json=json.dumps(fields),
    )


def record_audit(
    session: Session,
    *,
    entity: str,
    operation: str,
    actor_id: Optional[str],
    entity_id: str,
    workspace_id: Optional[str] = None,
    before: Optional[Dict[str, Any]] = None,
    after: Optional[Dict[str, Any]] = None,
) -> Optional[AuditRecord]:
    """Append an audit record to the caller's transaction.

    For strict entities a failure raises ``AuditWriteError`` so the caller
    rolls back the mutation. Other entities log and count the failure and
    return ``None``.
    """

    strict = entity in STRICT_ENTITIES
    try:
        record = _build_record(
            entity=entity,
            operation=operation,
            actor_id=actor_id,
            entity_id=entity_id,
            workspace_id=workspace_id,
            before=before,
            after=after,
        )
        if strict:
            session.add(record)
            session.flush()
        else:
            with session.begin_nested():
                session.add(record)
        return record
    except Exception as exc:
        record_audit_write_failure(entity=entity, mode="strict" if strict else "best_effort")
        logger.error(
            "audit_write_failed",
            entity=entity,
            entity_id=entity_id,
            operation=operation,
            strict=strict,
            error=str(exc),
        )
        if strict:
            raise AuditWriteError() from exc
        return None


def record_activity(
    session: Session,
    *,
    action: str,
    entity_type: str,
    user_id: Optional[str],
    workspace_id: Optional[str] = None,
    entity_id: Optional[str] = None,
) -> None:
    """Best-effort activity telemetry, isolated in a savepoint."""

    try:
        with session.begin_nested():
            session.add(
                ActivityLog(
                    workspace_id=workspace_id,
                    user_id=user_id,
                    action=action,
                    entity_type=entity_type,
                    entity_id=entity_id,
                )
            )
    except Exception as exc:
        logger.warning("activity_log_failed", action=action, entity_type=entity_type, error=str(exc))


def list_audit_records(
    session: Session,
    *,
    evaluator,
    entity: Optional[str] = None,
    entity_id: Optional[str] = None,
    workspace_id: Optional[str] = None,
    limit: int = 100,
) -> List[AuditRecord]:
    decision = evaluator.can_read_audit()
    if not decision.allowed:
        # Denied reads look like an empty log.
        record_policy_denied(kind="audit", operation="read")
        logger.info("policy_denied", kind="audit", operation="read", reason=decision.reason)
        return []

    statement = select(AuditRecord)
    if entity is not None:
        statement = statement.where(AuditRecord.entity == entity)
    if entity_id is not None:
        statement = statement.where(AuditRecord.entity_id == entity_id)
    if workspace_id is not None:
        statement = statement.where(AuditRecord.workspace_id == workspace_id)
    statement = statement.order_by(AuditRecord.id.desc()).limit(limit)
    return list(session.scalars(statement).all())


def decode_record(record: AuditRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "entity": record.entity,
        "entity_id": record.entity_id,
        "workspace_id": record.workspace_id,
        "operation": record.operation,
        "actor_id": record.actor_id,
        "before": json.loads(record.before_json) if record.before_json else None,
        "after": json.loads(record.after_json) if record.after_json else None,
        "changed_fields": json.loads(record.changed_fields_json or "[]"),
        "created_at": record.created_at.isoformat() if record.created_at else None,
    }
