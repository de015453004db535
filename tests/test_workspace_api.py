from __future__ import annotations

from workspace_guard.invitations.mailer import InvitationDelivery
from workspace_guard.invitations.router import get_invitation_mailer
import workspace_guard.api.main as api_main


def _signup(client, email: str, full_name: str = "") -> dict:
    response = client.post(
        "/auth/signup",
        json={"email": email, "password": "supersecret123", "full_name": full_name},
    )
    assert response.status_code == 201, response.text
    return response.json()


def _bearer(payload: dict) -> dict[str, str]:
    return {"Authorization": f"Bearer {payload['access_token']}"}


def test_invitation_flow_end_to_end(client) -> None:
    owner = _signup(client, "owner@acme.io", "Olive Owner")
    workspace_id = owner["workspace_id"]
    assert workspace_id

    invite = client.post(
        f"/workspaces/{workspace_id}/invitations",
        json={"email": "bob@x.com", "role": "member"},
        headers=_bearer(owner),
    )
    assert invite.status_code == 201
    token = invite.json()["token"]
    assert invite.json()["email_sent"] is False
    assert invite.json()["invite_url"].endswith(f"/app?token={token}")

    duplicate = client.post(
        f"/workspaces/{workspace_id}/invitations",
        json={"email": "bob@x.com"},
        headers=_bearer(owner),
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["code"] == "duplicate_pending_invitation"

    carol = _signup(client, "carol@x.com")
    mismatch = client.post("/invitations/accept", json={"token": token}, headers=_bearer(carol))
    assert mismatch.status_code == 403
    assert mismatch.json()["code"] == "email_mismatch"

    bob = _signup(client, "bob@x.com")
    assert bob["workspace_id"] is None
    assert bob["pending_invitations"] == 1

    accepted = client.post("/invitations/accept", json={"token": token}, headers=_bearer(bob))
    assert accepted.status_code == 200
    assert accepted.json() == {"workspace_id": workspace_id, "role": "member", "status": "joined"}

    again = client.post("/invitations/accept", json={"token": token}, headers=_bearer(bob))
    assert again.status_code == 409
    assert again.json()["code"] == "already_used"

    bogus = client.post("/invitations/accept", json={"token": "nope"}, headers=_bearer(bob))
    assert bogus.status_code == 404
    assert bogus.json()["code"] == "invalid_token"

    workspace = client.get(f"/workspaces/{workspace_id}", headers=_bearer(bob))
    assert workspace.status_code == 200
    assert workspace.json()["my_role"] == "member"

    bob_view = client.get(f"/workspaces/{workspace_id}/members", headers=_bearer(bob)).json()
    owner_view = client.get(f"/workspaces/{workspace_id}/members", headers=_bearer(owner)).json()
    assert [row["user_id"] for row in bob_view] == [bob["user_id"]]
    assert {row["user_id"] for row in owner_view} == {owner["user_id"], bob["user_id"]}

    invitations = client.get(f"/workspaces/{workspace_id}/invitations", headers=_bearer(owner)).json()
    assert [row["status"] for row in invitations] == ["accepted"]


def test_tenant_isolation_and_write_errors(client) -> None:
    owner = _signup(client, "owner@acme.io")
    outsider = _signup(client, "outsider@globex.io")
    workspace_id = owner["workspace_id"]

    assert client.get(f"/workspaces/{workspace_id}").status_code == 401

    hidden = client.get(f"/workspaces/{workspace_id}", headers=_bearer(outsider))
    assert hidden.status_code == 404
    assert hidden.json()["code"] == "not_found"

    listed = client.get("/workspaces", headers=_bearer(outsider)).json()
    assert [row["id"] for row in listed] == [outsider["workspace_id"]]

    forbidden = client.post(
        f"/workspaces/{workspace_id}/invitations",
        json={"email": "eve@x.com"},
        headers=_bearer(outsider),
    )
    assert forbidden.status_code == 403
    assert forbidden.json()["code"] == "unauthorized"

    remove_owner = client.delete(
        f"/workspaces/{workspace_id}/members/{owner['user_id']}",
        headers=_bearer(owner),
    )
    assert remove_owner.status_code == 409
    assert remove_owner.json()["code"] == "cannot_remove_owner"

    assert client.get(f"/workspaces/{workspace_id}/tasks", headers=_bearer(outsider)).json() == []


def test_members_resources_settings_and_dm_rooms(client) -> None:
    owner = _signup(client, "owner@acme.io")
    member = _signup(client, "member@acme.io")
    workspace_id = owner["workspace_id"]

    added = client.post(
        f"/workspaces/{workspace_id}/members",
        json={"user_id": member["user_id"]},
        headers=_bearer(owner),
    )
    assert added.status_code == 201
    assert added.json()["role"] == "member"

    created = client.post(
        f"/workspaces/{workspace_id}/tasks",
        json={"title": "Write launch notes", "assigned_to": member["user_id"]},
        headers=_bearer(owner),
    )
    assert created.status_code == 201
    task_id = created.json()["id"]
    assert created.json()["fields"]["title"] == "Write launch notes"

    patched = client.patch(
        f"/workspaces/{workspace_id}/tasks/{task_id}",
        json={"status": "done"},
        headers=_bearer(member),
    )
    assert patched.status_code == 200
    assert patched.json()["fields"]["status"] == "done"

    subscription = client.get(f"/workspaces/{workspace_id}/subscription", headers=_bearer(member))
    assert subscription.status_code == 200
    assert subscription.json()["plan"] == "free"

    upgrade = client.put(
        f"/workspaces/{workspace_id}/subscription",
        json={"plan": "team-pro", "seat_count": 3},
        headers=_bearer(member),
    )
    assert upgrade.status_code == 403

    upgrade = client.put(
        f"/workspaces/{workspace_id}/subscription",
        json={"plan": "team-pro", "seat_count": 3},
        headers=_bearer(owner),
    )
    assert upgrade.status_code == 200
    assert upgrade.json()["seat_count"] == 3

    profile = client.put(
        f"/workspaces/{workspace_id}/business-profile",
        json={"company_name": "Acme Corp"},
        headers=_bearer(owner),
    )
    assert profile.status_code == 200
    member_profile = client.get(f"/workspaces/{workspace_id}/business-profile", headers=_bearer(member))
    assert member_profile.json()["company_name"] == "Acme Corp"

    first = client.post(
        f"/workspaces/{workspace_id}/dm-rooms",
        json={"user_ids": [member["user_id"]]},
        headers=_bearer(owner),
    )
    second = client.post(
        f"/workspaces/{workspace_id}/dm-rooms",
        json={"user_ids": [owner["user_id"]]},
        headers=_bearer(member),
    )
    assert first.status_code == 201
    assert second.status_code == 200
    assert second.json()["id"] == first.json()["id"]

    transfer = client.post(
        f"/workspaces/{workspace_id}/transfer-ownership",
        json={"new_owner_id": member["user_id"]},
        headers=_bearer(owner),
    )
    assert transfer.status_code == 200
    assert transfer.json()["owner_id"] == member["user_id"]


def test_audit_records_endpoint_is_gated(client) -> None:
    owner = _signup(client, "owner@acme.io")
    workspace_id = owner["workspace_id"]
    invite = client.post(
        f"/workspaces/{workspace_id}/invitations",
        json={"email": "bob@x.com"},
        headers=_bearer(owner),
    )
    bob = _signup(client, "bob@x.com")
    client.post("/invitations/accept", json={"token": invite.json()["token"]}, headers=_bearer(bob))

    hidden = client.get("/audit-records", headers=_bearer(bob))
    assert hidden.status_code == 200
    assert hidden.json() == []

    records = client.get(
        "/audit-records",
        params={"workspace_id": workspace_id, "entity": "membership"},
        headers=_bearer(owner),
    )
    assert records.status_code == 200
    payload = records.json()
    assert {row["after"]["user_id"] for row in payload} == {owner["user_id"], bob["user_id"]}
    assert all(row["operation"] == "insert" for row in payload)


def test_invitation_route_uses_injected_mailer(client) -> None:
    sent = []

    class RecordingMailer:
        def send(self, **kwargs):
            sent.append(kwargs)
            return InvitationDelivery(sent=True, invite_url="https://app.acme.io/app?token=x", message_id="m-1")

    api_main.app.dependency_overrides[get_invitation_mailer] = lambda: RecordingMailer()
    owner = _signup(client, "owner@acme.io", "Olive")
    response = client.post(
        f"/workspaces/{owner['workspace_id']}/invitations",
        json={"email": "bob@x.com"},
        headers=_bearer(owner),
    )

    assert response.status_code == 201
    assert response.json()["email_sent"] is True
    assert sent[0]["email"] == "bob@x.com"
    assert sent[0]["workspace_name"] == "Olive's Workspace"
    assert sent[0]["inviter_email"] == "owner@acme.io"


def test_login_issues_token(client) -> None:
    _signup(client, "owner@acme.io")

    ok = client.post("/auth/login", json={"email": "owner@acme.io", "password": "supersecret123"})
    assert ok.status_code == 200
    assert ok.json()["access_token"]

    bad = client.post("/auth/login", json={"email": "owner@acme.io", "password": "wrong-password"})
    assert bad.status_code == 401
    assert bad.json()["code"] == "invalid_credentials"

    duplicate = client.post("/auth/signup", json={"email": "owner@acme.io", "password": "supersecret123"})
    assert duplicate.status_code == 409
    assert duplicate.json()["code"] == "duplicate_user"
