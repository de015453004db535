"""Direct-message rooms, one per distinct participant set in a workspace."""

from __future__ import annotations

from typing import Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from workspace_guard.core.errors import InvalidState, RaceLost, Unauthorized
from workspace_guard.core.logger import get_logger
from workspace_guard.core.metrics import record_race_recovered
from workspace_guard.policies.evaluator import Operation, PolicyEvaluator, ResourceKind
from workspace_guard.policies.filters import visible_workspace_ids
from workspace_guard.storage.models import DmRoom, DmRoomMember, Workspace, WorkspaceMember, utcnow


logger = get_logger("workspace_guard.messaging")

MEMBER_KEY_SEPARATOR = ","


def build_member_key(user_ids: Iterable[str]) -> str:
    return MEMBER_KEY_SEPARATOR.join(sorted({user_id for user_id in user_ids if user_id}))


def _workspace_participants(session: Session, workspace_id: str) -> set[str]:
    members = set(
        session.scalars(select(WorkspaceMember.user_id).where(WorkspaceMember.workspace_id == workspace_id)).all()
    )
    owner_id = session.scalar(select(Workspace.owner_id).where(Workspace.id == workspace_id))
    if owner_id is not None:
        members.add(owner_id)
    return members


def _find_room(session: Session, workspace_id: str, member_key: str) -> Optional[DmRoom]:
    return session.scalar(
        select(DmRoom).where(DmRoom.workspace_id == workspace_id, DmRoom.member_key == member_key)
    )


def get_or_create_dm_room(
    session: Session,
    evaluator: PolicyEvaluator,
    *,
    workspace_id: str,
    user_ids: Iterable[str],
) -> Tuple[DmRoom, bool]:
    """Return ``(room, created)`` for the actor plus ``user_ids``.

    Two concurrent callers with the same participants end up with the same
    room: the loser of the unique-key race reads the winner's row.
    """

    evaluator.require(ResourceKind.RESOURCE, Operation.CREATE, workspace_id)
    participants = {evaluator.actor_id, *user_ids}
    if len(participants) < 2:
        raise InvalidState("A direct message room needs at least one other participant")

    outsiders = participants - _workspace_participants(session, workspace_id)
    if outsiders:
        raise Unauthorized("Every participant must belong to the workspace")

    member_key = build_member_key(participants)
    existing = _find_room(session, workspace_id, member_key)
    if existing is not None:
        return existing, False

    now = utcnow()
    room = DmRoom(workspace_id=workspace_id, member_key=member_key, created_by=evaluator.actor_id, created_at=now)
    try:
        try:
            session.add(room)
            session.flush()
            session.add_all(
                DmRoomMember(room_id=room.id, user_id=user_id, workspace_id=workspace_id, joined_at=now)
                for user_id in sorted(participants)
            )
            session.commit()
        except IntegrityError as exc:
            raise RaceLost() from exc
    except RaceLost:
        session.rollback()
        winner = _find_room(session, workspace_id, member_key)
        if winner is None:
            raise
        record_race_recovered(kind="dm_room")
        logger.info("dm_room_race_recovered", workspace_id=workspace_id, room_id=winner.id)
        return winner, False

    logger.info("dm_room_created", workspace_id=workspace_id, room_id=room.id, participants=len(participants))
    return room, True


def list_dm_rooms(session: Session, actor_id: str, workspace_id: Optional[str] = None) -> List[DmRoom]:
    statement = (
        select(DmRoom)
        .join(DmRoomMember, DmRoomMember.room_id == DmRoom.id)
        .where(DmRoomMember.user_id == actor_id, DmRoom.workspace_id.in_(visible_workspace_ids(actor_id)))
    )
    if workspace_id is not None:
        statement = statement.where(DmRoom.workspace_id == workspace_id)
    statement = statement.order_by(DmRoom.created_at.desc(), DmRoom.id.asc())
    return list(session.scalars(statement).all())
