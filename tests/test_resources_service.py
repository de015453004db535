from __future__ import annotations

import pytest

from workspace_guard.core.errors import InvalidState, NotFound, Unauthorized
from workspace_guard.policies.evaluator import PolicyEvaluator
from workspace_guard.resources.service import (
    create_resource,
    delete_resource,
    get_resource,
    get_resource_type,
    list_resources,
    update_resource,
)
from workspace_guard.workspaces.service import add_member, create_workspace


TASKS = get_resource_type("tasks")


@pytest.fixture
def team(session, make_user):
    owner = make_user("owner@acme.io")
    author = make_user("author@acme.io")
    assignee = make_user("assignee@acme.io")
    bystander = make_user("bystander@acme.io")
    outsider = make_user("outsider@acme.io")
    workspace = create_workspace(session, owner_id=owner.id, name="Acme")
    evaluator = PolicyEvaluator(session, owner.id)
    for user in (author, assignee, bystander):
        add_member(session, evaluator, workspace_id=workspace.id, user_id=user.id)
    return {
        "owner": owner,
        "author": author,
        "assignee": assignee,
        "bystander": bystander,
        "outsider": outsider,
        "workspace": workspace,
    }


def _as(session, user) -> PolicyEvaluator:
    return PolicyEvaluator(session, user.id)


def test_unknown_resource_type() -> None:
    with pytest.raises(NotFound):
        get_resource_type("invoices")


def test_member_creates_and_every_member_reads(session, team) -> None:
    workspace = team["workspace"]
    task = create_resource(
        session,
        _as(session, team["author"]),
        TASKS,
        workspace.id,
        {"title": "Ship it", "assigned_to": team["assignee"].id, "created_by": team["owner"].id},
    )

    assert task.created_by == team["author"].id
    assert task.status == "todo"
    for reader in ("owner", "assignee", "bystander"):
        assert get_resource(session, _as(session, team[reader]), TASKS, workspace.id, task.id).id == task.id


def test_outsider_sees_nothing(session, team) -> None:
    workspace = team["workspace"]
    task = create_resource(session, _as(session, team["author"]), TASKS, workspace.id, {"title": "Secret"})

    assert list_resources(session, _as(session, team["outsider"]), TASKS, workspace.id) == []
    with pytest.raises(NotFound):
        get_resource(session, _as(session, team["outsider"]), TASKS, workspace.id, task.id)
    with pytest.raises(Unauthorized):
        create_resource(session, _as(session, team["outsider"]), TASKS, workspace.id, {"title": "Intrusion"})


def test_update_allowed_for_creator_assignee_and_owner_only(session, team) -> None:
    workspace = team["workspace"]
    task = create_resource(
        session,
        _as(session, team["author"]),
        TASKS,
        workspace.id,
        {"title": "Draft", "assigned_to": team["assignee"].id},
    )

    with pytest.raises(Unauthorized):
        update_resource(session, _as(session, team["bystander"]), TASKS, workspace.id, task.id, {"status": "done"})

    update_resource(session, _as(session, team["author"]), TASKS, workspace.id, task.id, {"title": "Final"})
    update_resource(session, _as(session, team["assignee"]), TASKS, workspace.id, task.id, {"status": "doing"})
    updated = update_resource(session, _as(session, team["owner"]), TASKS, workspace.id, task.id, {"status": "done"})

    assert updated.title == "Final"
    assert updated.status == "done"


def test_delete_by_bystander_is_rejected_and_by_owner_succeeds(session, team) -> None:
    workspace = team["workspace"]
    task = create_resource(session, _as(session, team["author"]), TASKS, workspace.id, {"title": "Cleanup"})

    with pytest.raises(Unauthorized):
        delete_resource(session, _as(session, team["bystander"]), TASKS, workspace.id, task.id)

    delete_resource(session, _as(session, team["owner"]), TASKS, workspace.id, task.id)
    with pytest.raises(NotFound):
        get_resource(session, _as(session, team["author"]), TASKS, workspace.id, task.id)


def test_validation_rules(session, team) -> None:
    workspace = team["workspace"]
    author = _as(session, team["author"])

    with pytest.raises(InvalidState, match="title"):
        create_resource(session, author, TASKS, workspace.id, {"status": "todo"})
    with pytest.raises(InvalidState, match="Assignee"):
        create_resource(session, author, TASKS, workspace.id, {"title": "x", "assigned_to": team["outsider"].id})

    task = create_resource(session, author, TASKS, workspace.id, {"title": "Keep"})
    with pytest.raises(InvalidState, match="must not be empty"):
        update_resource(session, author, TASKS, workspace.id, task.id, {"title": ""})


def test_resource_kinds_are_isolated(session, team) -> None:
    workspace = team["workspace"]
    author = _as(session, team["author"])
    documents = get_resource_type("documents")
    crm_items = get_resource_type("crm-items")

    document = create_resource(session, author, documents, workspace.id, {"title": "Plan", "body": "Notes"})
    lead = create_resource(session, author, crm_items, workspace.id, {"name": "Globex"})

    assert lead.stage == "lead"
    assert [row.id for row in list_resources(session, author, documents, workspace.id)] == [document.id]
    with pytest.raises(NotFound):
        get_resource(session, author, TASKS, workspace.id, document.id)
