"""Routes for workspace resources, owner-managed settings and DM rooms."""

from __future__ import annotations

from typing import Any, List

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from workspace_guard.auth.dependencies import get_actor_session, get_policy_evaluator
from workspace_guard.messaging.service import get_or_create_dm_room
from workspace_guard.policies.evaluator import PolicyEvaluator
from workspace_guard.resources.service import (
    RESOURCE_TYPES,
    ResourceType,
    create_resource,
    delete_resource,
    get_resource,
    list_resources,
    update_resource,
)
from workspace_guard.schemas.resource import (
    BusinessProfileRequest,
    BusinessProfileResponse,
    DmRoomCreateRequest,
    DmRoomResponse,
    ResourceResponse,
    ResourceWriteRequest,
    SubscriptionResponse,
    SubscriptionUpdateRequest,
)
from workspace_guard.settings.service import (
    get_business_profile,
    get_subscription,
    update_subscription,
    upsert_business_profile,
)
from workspace_guard.storage.models import BusinessProfile, Subscription, Workspace
from workspace_guard.workspaces.router import iso


router = APIRouter(prefix="/workspaces/{workspace_id}", tags=["resources"])


def _resource_response(resource_type: ResourceType, row: Any) -> ResourceResponse:
    return ResourceResponse(
        id=row.id,
        workspace_id=row.workspace_id,
        kind=resource_type.slug,
        created_by=row.created_by,
        assigned_to=row.assigned_to,
        fields={name: getattr(row, name) for name in resource_type.editable_fields if name != "assigned_to"},
        created_at=iso(row.created_at) or "",
        updated_at=iso(row.updated_at) or "",
    )


def _register_resource_routes(resource_type: ResourceType) -> None:
    collection = f"/{resource_type.slug}"
    item = f"/{resource_type.slug}/{{resource_id}}"

    @router.get(collection, response_model=List[ResourceResponse], name=f"list_{resource_type.slug}")
    def list_route(
        workspace_id: str,
        evaluator: PolicyEvaluator = Depends(get_policy_evaluator),
        session: Session = Depends(get_actor_session),
    ) -> List[ResourceResponse]:
        rows = list_resources(session, evaluator, resource_type, workspace_id)
        return [_resource_response(resource_type, row) for row in rows]

    @router.post(collection, response_model=ResourceResponse, status_code=201, name=f"create_{resource_type.slug}")
    def create_route(
        workspace_id: str,
        payload: ResourceWriteRequest,
        evaluator: PolicyEvaluator = Depends(get_policy_evaluator),
        session: Session = Depends(get_actor_session),
    ) -> ResourceResponse:
        values = payload.model_dump(exclude_unset=True)
        row = create_resource(session, evaluator, resource_type, workspace_id, values)
        return _resource_response(resource_type, row)

    @router.get(item, response_model=ResourceResponse, name=f"get_{resource_type.slug}")
    def get_route(
        workspace_id: str,
        resource_id: str,
        evaluator: PolicyEvaluator = Depends(get_policy_evaluator),
        session: Session = Depends(get_actor_session),
    ) -> ResourceResponse:
        row = get_resource(session, evaluator, resource_type, workspace_id, resource_id)
        return _resource_response(resource_type, row)

    @router.patch(item, response_model=ResourceResponse, name=f"update_{resource_type.slug}")
    def update_route(
        workspace_id: str,
        resource_id: str,
        payload: ResourceWriteRequest,
        evaluator: PolicyEvaluator = Depends(get_policy_evaluator),
        session: Session = Depends(get_actor_session),
    ) -> ResourceResponse:
        values = payload.model_dump(exclude_unset=True)
        row = update_resource(session, evaluator, resource_type, workspace_id, resource_id, values)
        return _resource_response(resource_type, row)

    @router.delete(item, status_code=204, name=f"delete_{resource_type.slug}")
    def delete_route(
        workspace_id: str,
        resource_id: str,
        evaluator: PolicyEvaluator = Depends(get_policy_evaluator),
        session: Session = Depends(get_actor_session),
    ) -> Response:
        delete_resource(session, evaluator, resource_type, workspace_id, resource_id)
        return Response(status_code=204)


for _resource_type in RESOURCE_TYPES.values():
    _register_resource_routes(_resource_type)


def _subscription_response(session: Session, subscription: Subscription) -> SubscriptionResponse:
    workspace = session.get(Workspace, subscription.workspace_id)
    return SubscriptionResponse(
        workspace_id=subscription.workspace_id,
        plan=subscription.plan,
        status=subscription.status,
        seat_count=workspace.seat_count if workspace is not None else 1,
        current_period_end=iso(subscription.current_period_end),
    )


def _profile_response(profile: BusinessProfile) -> BusinessProfileResponse:
    return BusinessProfileResponse(
        workspace_id=profile.workspace_id,
        company_name=profile.company_name,
        industry=profile.industry,
        website=profile.website,
        description=profile.description,
        updated_at=iso(profile.updated_at) or "",
    )


@router.get("/subscription", response_model=SubscriptionResponse)
def get_subscription_route(
    workspace_id: str,
    evaluator: PolicyEvaluator = Depends(get_policy_evaluator),
    session: Session = Depends(get_actor_session),
) -> SubscriptionResponse:
    return _subscription_response(session, get_subscription(session, evaluator, workspace_id))


@router.put("/subscription", response_model=SubscriptionResponse)
def update_subscription_route(
    workspace_id: str,
    payload: SubscriptionUpdateRequest,
    evaluator: PolicyEvaluator = Depends(get_policy_evaluator),
    session: Session = Depends(get_actor_session),
) -> SubscriptionResponse:
    subscription = update_subscription(
        session,
        evaluator,
        workspace_id,
        plan=payload.plan,
        seat_count=payload.seat_count,
        status=payload.status,
        current_period_end=payload.current_period_end,
    )
    return _subscription_response(session, subscription)


@router.get("/business-profile", response_model=BusinessProfileResponse)
def get_business_profile_route(
    workspace_id: str,
    evaluator: PolicyEvaluator = Depends(get_policy_evaluator),
    session: Session = Depends(get_actor_session),
) -> BusinessProfileResponse:
    return _profile_response(get_business_profile(session, evaluator, workspace_id))


@router.put("/business-profile", response_model=BusinessProfileResponse)
def upsert_business_profile_route(
    workspace_id: str,
    payload: BusinessProfileRequest,
    evaluator: PolicyEvaluator = Depends(get_policy_evaluator),
    session: Session = Depends(get_actor_session),
) -> BusinessProfileResponse:
    profile = upsert_business_profile(session, evaluator, workspace_id, payload.model_dump())
    return _profile_response(profile)


@router.post("/dm-rooms", response_model=DmRoomResponse)
def create_dm_room_route(
    workspace_id: str,
    payload: DmRoomCreateRequest,
    response: Response,
    evaluator: PolicyEvaluator = Depends(get_policy_evaluator),
    session: Session = Depends(get_actor_session),
) -> DmRoomResponse:
    room, created = get_or_create_dm_room(session, evaluator, workspace_id=workspace_id, user_ids=payload.user_ids)
    response.status_code = 201 if created else 200
    return DmRoomResponse(
        id=room.id,
        workspace_id=room.workspace_id,
        member_key=room.member_key,
        created=created,
        participants=room.member_key.split(","),
    )
