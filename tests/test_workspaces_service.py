from __future__ import annotations

import pytest
from sqlalchemy import select

from workspace_guard.core.errors import (
    AuditWriteError,
    CannotRemoveOwner,
    DuplicateMembership,
    InvalidState,
    NotFound,
    Unauthorized,
)
from workspace_guard.policies.evaluator import PolicyEvaluator
from workspace_guard.storage.models import AuditRecord, Workspace, WorkspaceMember
from workspace_guard.workspaces import service as workspace_service
from workspace_guard.workspaces.service import (
    add_member,
    backfill_owner_memberships,
    create_workspace,
    delete_workspace,
    get_workspace,
    list_members,
    list_workspaces,
    remove_member,
    transfer_ownership,
)


def _memberships(session, workspace_id: str) -> dict[str, str]:
    rows = session.scalars(select(WorkspaceMember).where(WorkspaceMember.workspace_id == workspace_id)).all()
    return {row.user_id: row.role for row in rows}


def test_create_workspace_inserts_owner_membership_in_same_transaction(session, make_user) -> None:
    owner = make_user("owner@acme.io")
    workspace = create_workspace(session, owner_id=owner.id, name="  Acme  ")

    assert workspace.name == "Acme"
    assert workspace.plan == "free"
    assert workspace.seat_count == 1
    assert _memberships(session, workspace.id) == {owner.id: "owner"}

    entities = session.scalars(
        select(AuditRecord.entity).where(AuditRecord.workspace_id == workspace.id).order_by(AuditRecord.id)
    ).all()
    assert entities == ["workspace", "membership"]


def test_create_workspace_rolls_back_when_owner_membership_audit_fails(session, make_user, monkeypatch) -> None:
    owner = make_user("owner@acme.io")
    original = workspace_service.record_audit

    def failing_record_audit(db_session, **kwargs):
        if kwargs["entity"] == "membership":
            raise AuditWriteError()
        return original(db_session, **kwargs)

    monkeypatch.setattr(workspace_service, "record_audit", failing_record_audit)

    with pytest.raises(AuditWriteError):
        create_workspace(session, owner_id=owner.id, name="Acme")

    assert session.scalars(select(Workspace)).all() == []
    assert session.scalars(select(WorkspaceMember)).all() == []


def test_create_workspace_rejects_unknown_plan(session, make_user) -> None:
    owner = make_user("owner@acme.io")
    with pytest.raises(InvalidState, match="not configured"):
        create_workspace(session, owner_id=owner.id, name="Acme", plan="enterprise-gold")


def test_add_member_rejects_duplicates_and_owner_role(session, make_user) -> None:
    owner = make_user("owner@acme.io")
    member = make_user("member@acme.io")
    workspace = create_workspace(session, owner_id=owner.id, name="Acme")
    evaluator = PolicyEvaluator(session, owner.id)

    membership = add_member(session, evaluator, workspace_id=workspace.id, user_id=member.id)
    assert membership.role == "member"
    assert membership.invited_by == owner.id

    with pytest.raises(DuplicateMembership):
        add_member(session, evaluator, workspace_id=workspace.id, user_id=member.id)
    with pytest.raises(DuplicateMembership):
        add_member(session, evaluator, workspace_id=workspace.id, user_id=owner.id)
    with pytest.raises(InvalidState):
        add_member(session, evaluator, workspace_id=workspace.id, user_id=member.id, role="owner")
    with pytest.raises(NotFound):
        add_member(session, evaluator, workspace_id=workspace.id, user_id="missing-user")


def test_member_cannot_add_members(session, make_user) -> None:
    owner = make_user("owner@acme.io")
    member = make_user("member@acme.io")
    newcomer = make_user("newcomer@acme.io")
    workspace = create_workspace(session, owner_id=owner.id, name="Acme")
    add_member(session, PolicyEvaluator(session, owner.id), workspace_id=workspace.id, user_id=member.id)

    with pytest.raises(Unauthorized):
        add_member(session, PolicyEvaluator(session, member.id), workspace_id=workspace.id, user_id=newcomer.id)


def test_remove_owner_always_fails(session, make_user) -> None:
    owner = make_user("owner@acme.io")
    member = make_user("member@acme.io")
    workspace = create_workspace(session, owner_id=owner.id, name="Acme")
    add_member(session, PolicyEvaluator(session, owner.id), workspace_id=workspace.id, user_id=member.id)

    with pytest.raises(CannotRemoveOwner):
        remove_member(session, PolicyEvaluator(session, owner.id), workspace_id=workspace.id, user_id=owner.id)
    with pytest.raises(CannotRemoveOwner):
        remove_member(session, PolicyEvaluator(session, member.id), workspace_id=workspace.id, user_id=owner.id)

    assert _memberships(session, workspace.id)[owner.id] == "owner"


def test_remove_member_by_owner_and_self_leave(session, make_user) -> None:
    owner = make_user("owner@acme.io")
    first = make_user("first@acme.io")
    second = make_user("second@acme.io")
    workspace = create_workspace(session, owner_id=owner.id, name="Acme")
    owner_evaluator = PolicyEvaluator(session, owner.id)
    add_member(session, owner_evaluator, workspace_id=workspace.id, user_id=first.id)
    add_member(session, owner_evaluator, workspace_id=workspace.id, user_id=second.id)

    with pytest.raises(Unauthorized):
        remove_member(session, PolicyEvaluator(session, first.id), workspace_id=workspace.id, user_id=second.id)

    remove_member(session, owner_evaluator, workspace_id=workspace.id, user_id=first.id)
    remove_member(session, PolicyEvaluator(session, second.id), workspace_id=workspace.id, user_id=second.id)

    assert _memberships(session, workspace.id) == {owner.id: "owner"}
    deletes = session.scalars(
        select(AuditRecord).where(AuditRecord.entity == "membership", AuditRecord.operation == "delete")
    ).all()
    assert len(deletes) == 2
    assert all(record.before_json for record in deletes)


def test_outsider_cannot_probe_roster(session, make_user) -> None:
    owner = make_user("owner@acme.io")
    outsider = make_user("outsider@acme.io")
    workspace = create_workspace(session, owner_id=owner.id, name="Acme")

    with pytest.raises(NotFound):
        remove_member(session, PolicyEvaluator(session, outsider.id), workspace_id=workspace.id, user_id=owner.id)
    with pytest.raises(NotFound):
        list_members(session, PolicyEvaluator(session, outsider.id), workspace.id)
    with pytest.raises(NotFound):
        get_workspace(session, PolicyEvaluator(session, outsider.id), workspace.id)


def test_members_see_only_their_own_membership_row(session, make_user) -> None:
    owner = make_user("owner@acme.io")
    member = make_user("member@acme.io")
    sibling = make_user("sibling@acme.io")
    workspace = create_workspace(session, owner_id=owner.id, name="Acme")
    owner_evaluator = PolicyEvaluator(session, owner.id)
    add_member(session, owner_evaluator, workspace_id=workspace.id, user_id=member.id)
    add_member(session, owner_evaluator, workspace_id=workspace.id, user_id=sibling.id)

    member_view = list_members(session, PolicyEvaluator(session, member.id), workspace.id)
    owner_view = list_members(session, owner_evaluator, workspace.id)

    assert [row.user_id for row in member_view] == [member.id]
    assert {row.user_id for row in owner_view} == {owner.id, member.id, sibling.id}


def test_list_workspaces_returns_owned_and_joined(session, make_user) -> None:
    alice = make_user("alice@acme.io")
    bob = make_user("bob@acme.io")
    alpha = create_workspace(session, owner_id=alice.id, name="Alpha")
    beta = create_workspace(session, owner_id=bob.id, name="Beta")
    add_member(session, PolicyEvaluator(session, bob.id), workspace_id=beta.id, user_id=alice.id)

    assert {row.id for row in list_workspaces(session, alice.id)} == {alpha.id, beta.id}
    assert [row.id for row in list_workspaces(session, bob.id)] == [beta.id]

    view = get_workspace(session, PolicyEvaluator(session, alice.id), beta.id)
    assert view.my_role == "member"


def test_transfer_ownership_swaps_roles(session, make_user) -> None:
    owner = make_user("owner@acme.io")
    member = make_user("member@acme.io")
    outsider = make_user("outsider@acme.io")
    workspace = create_workspace(session, owner_id=owner.id, name="Acme")
    evaluator = PolicyEvaluator(session, owner.id)
    add_member(session, evaluator, workspace_id=workspace.id, user_id=member.id)

    with pytest.raises(InvalidState):
        transfer_ownership(session, evaluator, workspace_id=workspace.id, new_owner_id=outsider.id)
    with pytest.raises(Unauthorized):
        transfer_ownership(
            session,
            PolicyEvaluator(session, member.id),
            workspace_id=workspace.id,
            new_owner_id=member.id,
        )

    updated = transfer_ownership(session, evaluator, workspace_id=workspace.id, new_owner_id=member.id)

    assert updated.owner_id == member.id
    assert _memberships(session, workspace.id) == {owner.id: "member", member.id: "owner"}
    with pytest.raises(CannotRemoveOwner):
        remove_member(session, PolicyEvaluator(session, owner.id), workspace_id=workspace.id, user_id=member.id)


def test_delete_workspace_is_owner_only_and_audited(session, make_user) -> None:
    owner = make_user("owner@acme.io")
    member = make_user("member@acme.io")
    workspace = create_workspace(session, owner_id=owner.id, name="Acme")
    add_member(session, PolicyEvaluator(session, owner.id), workspace_id=workspace.id, user_id=member.id)

    with pytest.raises(Unauthorized):
        delete_workspace(session, PolicyEvaluator(session, member.id), workspace.id)

    delete_workspace(session, PolicyEvaluator(session, owner.id), workspace.id)

    assert session.get(Workspace, workspace.id) is None
    record = session.scalar(
        select(AuditRecord).where(AuditRecord.entity == "workspace", AuditRecord.operation == "delete")
    )
    assert record is not None
    assert record.entity_id == workspace.id


def test_backfill_repairs_missing_and_demoted_owner_rows(session, make_user) -> None:
    first_owner = make_user("first@acme.io")
    second_owner = make_user("second@acme.io")
    missing = Workspace(name="Missing", owner_id=first_owner.id, plan="free", seat_count=1)
    demoted = Workspace(name="Demoted", owner_id=second_owner.id, plan="free", seat_count=1)
    session.add_all([missing, demoted])
    session.flush()
    session.add(WorkspaceMember(workspace_id=demoted.id, user_id=second_owner.id, role="member"))
    session.commit()

    assert backfill_owner_memberships(session) == 2
    assert _memberships(session, missing.id) == {first_owner.id: "owner"}
    assert _memberships(session, demoted.id) == {second_owner.id: "owner"}
    assert backfill_owner_memberships(session) == 0
