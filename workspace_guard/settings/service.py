"""Owner-managed workspace settings: subscription and business profile.

Members read both; only the workspace owner writes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from workspace_guard.audit.recorder import AUDIT_INSERT, AUDIT_UPDATE, record_audit, snapshot
from workspace_guard.billing.plans import get_plan
from workspace_guard.core.errors import NotFound
from workspace_guard.core.logger import get_logger
from workspace_guard.policies.evaluator import Operation, PolicyEvaluator, ResourceKind
from workspace_guard.storage.models import BusinessProfile, Subscription, Workspace, utcnow


logger = get_logger("workspace_guard.settings")

SUBSCRIPTION_ACTIVE = "active"
BUSINESS_PROFILE_FIELDS = ("company_name", "industry", "website", "description")


def create_default_subscription(session: Session, workspace: Workspace) -> Subscription:
    """Attach the initial subscription to a new workspace; does not commit."""

    now = utcnow()
    subscription = Subscription(
        workspace_id=workspace.id,
        plan=workspace.plan,
        status=SUBSCRIPTION_ACTIVE,
        created_at=now,
        updated_at=now,
    )
    session.add(subscription)
    session.flush()
    record_audit(
        session,
        entity="subscription",
        operation=AUDIT_INSERT,
        actor_id=workspace.owner_id,
        entity_id=subscription.id,
        workspace_id=workspace.id,
        after=snapshot(subscription),
    )
    return subscription


def get_subscription(session: Session, evaluator: PolicyEvaluator, workspace_id: str) -> Subscription:
    evaluator.require(ResourceKind.OWNER_MANAGED, Operation.READ, workspace_id)
    subscription = session.scalar(select(Subscription).where(Subscription.workspace_id == workspace_id))
    if subscription is None:
        raise NotFound("Subscription not found")
    return subscription


def update_subscription(
    session: Session,
    evaluator: PolicyEvaluator,
    workspace_id: str,
    *,
    plan: str,
    seat_count: Optional[int] = None,
    status: Optional[str] = None,
    current_period_end: Optional[datetime] = None,
) -> Subscription:
    """Change plan and seats; the workspace row mirrors the result."""

    evaluator.require(ResourceKind.OWNER_MANAGED, Operation.READ, workspace_id)
    evaluator.require(ResourceKind.OWNER_MANAGED, Operation.UPDATE, workspace_id)

    plan_definition = get_plan(plan)
    workspace = session.get(Workspace, workspace_id)
    if workspace is None:  # pragma: no cover
        raise NotFound()
    if seat_count is None:
        seats = plan_definition.clamp_seats(workspace.seat_count)
    else:
        seats = plan_definition.resolve_seats(seat_count)

    now = utcnow()
    subscription = session.scalar(select(Subscription).where(Subscription.workspace_id == workspace_id))
    try:
        if subscription is None:
            subscription = Subscription(workspace_id=workspace_id, created_at=now)
            session.add(subscription)
            before = None
        else:
            before = snapshot(subscription)
        subscription.plan = plan
        subscription.status = status or subscription.status or SUBSCRIPTION_ACTIVE
        if current_period_end is not None:
            subscription.current_period_end = current_period_end
        subscription.updated_at = now

        workspace_before = snapshot(workspace)
        workspace.plan = plan
        workspace.seat_count = seats
        workspace.updated_at = now
        session.flush()

        record_audit(
            session,
            entity="workspace",
            operation=AUDIT_UPDATE,
            actor_id=evaluator.actor_id,
            entity_id=workspace.id,
            workspace_id=workspace.id,
            before=workspace_before,
            after=snapshot(workspace),
        )
        record_audit(
            session,
            entity="subscription",
            operation=AUDIT_INSERT if before is None else AUDIT_UPDATE,
            actor_id=evaluator.actor_id,
            entity_id=subscription.id,
            workspace_id=workspace_id,
            before=before,
            after=snapshot(subscription),
        )
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info("subscription_updated", workspace_id=workspace_id, plan=plan, seat_count=seats)
    return subscription


def get_business_profile(session: Session, evaluator: PolicyEvaluator, workspace_id: str) -> BusinessProfile:
    evaluator.require(ResourceKind.OWNER_MANAGED, Operation.READ, workspace_id)
    profile = session.scalar(select(BusinessProfile).where(BusinessProfile.workspace_id == workspace_id))
    if profile is None:
        raise NotFound("Business profile not found")
    return profile


def upsert_business_profile(
    session: Session,
    evaluator: PolicyEvaluator,
    workspace_id: str,
    values: Dict[str, Any],
) -> BusinessProfile:
    evaluator.require(ResourceKind.OWNER_MANAGED, Operation.READ, workspace_id)

    profile = session.scalar(select(BusinessProfile).where(BusinessProfile.workspace_id == workspace_id))
    operation = Operation.CREATE if profile is None else Operation.UPDATE
    evaluator.require(ResourceKind.OWNER_MANAGED, operation, workspace_id)

    now = utcnow()
    if profile is None:
        profile = BusinessProfile(workspace_id=workspace_id, created_at=now)
        session.add(profile)
        before = None
    else:
        before = snapshot(profile)

    for field_name in BUSINESS_PROFILE_FIELDS:
        if field_name in values:
            setattr(profile, field_name, values[field_name])
    profile.updated_at = now

    try:
        session.flush()
        record_audit(
            session,
            entity="business_profile",
            operation=AUDIT_INSERT if before is None else AUDIT_UPDATE,
            actor_id=evaluator.actor_id,
            entity_id=profile.id,
            workspace_id=workspace_id,
            before=before,
            after=snapshot(profile),
        )
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info("business_profile_saved", workspace_id=workspace_id, created=before is None)
    return profile
