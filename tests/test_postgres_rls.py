"""Row-level security end to end against a real PostgreSQL.

Runs only when ``DATABASE_URL`` points at PostgreSQL. The URL's user applies
the migrations; requests run as a separate login role that does not own the
tables, so every policy applies.
"""

from __future__ import annotations

import os

import pytest
from alembic import command
from alembic.config import Config
from fastapi.testclient import TestClient
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import DBAPIError

import workspace_guard.api.main as api_main
from workspace_guard.storage.db import build_engine, build_session_factory, get_session


DATABASE_URL = os.environ.get("DATABASE_URL", "")
APP_ROLE = "workspace_guard_rls_app"
APP_PASSWORD = "workspace-guard-rls-app"

pytestmark = pytest.mark.skipif(
    not DATABASE_URL.startswith("postgresql"),
    reason="DATABASE_URL is not a PostgreSQL URL",
)


def _drop_app_role(connection) -> None:
    exists = connection.execute(text("SELECT 1 FROM pg_roles WHERE rolname = :name"), {"name": APP_ROLE}).scalar()
    if exists:
        connection.execute(text(f"DROP OWNED BY {APP_ROLE}"))
        connection.execute(text(f"DROP ROLE {APP_ROLE}"))


@pytest.fixture
def rls_client():
    alembic_config = Config("alembic.ini")
    command.downgrade(alembic_config, "base")
    command.upgrade(alembic_config, "head")

    admin_engine = build_engine(DATABASE_URL)
    try:
        with admin_engine.begin() as connection:
            _drop_app_role(connection)
            connection.execute(text(f"CREATE ROLE {APP_ROLE} LOGIN PASSWORD '{APP_PASSWORD}'"))
            connection.execute(text(f"GRANT USAGE ON SCHEMA public TO {APP_ROLE}"))
            connection.execute(
                text(f"GRANT SELECT, INSERT, UPDATE, DELETE ON ALL TABLES IN SCHEMA public TO {APP_ROLE}")
            )
            connection.execute(text(f"GRANT USAGE, SELECT ON ALL SEQUENCES IN SCHEMA public TO {APP_ROLE}"))
    except DBAPIError as exc:
        admin_engine.dispose()
        command.downgrade(alembic_config, "base")
        pytest.skip(f"cannot create an application role: {exc}")

    app_url = make_url(DATABASE_URL).set(username=APP_ROLE, password=APP_PASSWORD)
    app_engine = build_engine(app_url.render_as_string(hide_password=False))
    session_factory = build_session_factory(app_engine)

    def override_get_session():
        db_session = session_factory()
        try:
            yield db_session
        finally:
            db_session.close()

    api_main.app.dependency_overrides[get_session] = override_get_session
    try:
        yield TestClient(api_main.app)
    finally:
        api_main.app.dependency_overrides.clear()
        app_engine.dispose()
        command.downgrade(alembic_config, "base")
        with admin_engine.begin() as connection:
            _drop_app_role(connection)
        admin_engine.dispose()


def _signup(client, email: str) -> dict:
    response = client.post("/auth/signup", json={"email": email, "password": "supersecret123"})
    assert response.status_code == 201, response.text
    return response.json()


def _bearer(payload: dict) -> dict[str, str]:
    return {"Authorization": f"Bearer {payload['access_token']}"}


def test_invite_only_signup_accept_and_leave_under_rls(rls_client) -> None:
    client = rls_client
    owner = _signup(client, "owner@acme.io")
    workspace_id = owner["workspace_id"]

    invite = client.post(
        f"/workspaces/{workspace_id}/invitations",
        json={"email": "bob@x.com"},
        headers=_bearer(owner),
    )
    assert invite.status_code == 201, invite.text
    token = invite.json()["token"]

    # The row is hidden from carol by RLS, yet she must learn the email is wrong.
    carol = _signup(client, "carol@x.com")
    mismatch = client.post("/invitations/accept", json={"token": token}, headers=_bearer(carol))
    assert mismatch.status_code == 403, mismatch.text
    assert mismatch.json()["code"] == "email_mismatch"

    unknown = client.post("/invitations/accept", json={"token": "no-such-token"}, headers=_bearer(carol))
    assert unknown.json()["code"] == "invalid_token"

    # Bob owns no workspace, so his audit writes rely on seeing his own rows.
    bob = _signup(client, "bob@x.com")
    assert bob["workspace_id"] is None
    accepted = client.post("/invitations/accept", json={"token": token}, headers=_bearer(bob))
    assert accepted.status_code == 200, accepted.text
    assert accepted.json() == {"workspace_id": workspace_id, "role": "member", "status": "joined"}

    assert client.get(f"/workspaces/{workspace_id}", headers=_bearer(bob)).status_code == 200
    assert client.get(f"/workspaces/{workspace_id}", headers=_bearer(carol)).status_code == 404

    left = client.delete(f"/workspaces/{workspace_id}/members/{bob['user_id']}", headers=_bearer(bob))
    assert left.status_code == 204, left.text

    records = client.get(
        "/audit-records",
        params={"workspace_id": workspace_id, "entity": "membership"},
        headers=_bearer(owner),
    )
    assert records.status_code == 200
    bob_rows = [row for row in records.json() if (row["after"] or row["before"])["user_id"] == bob["user_id"]]
    assert sorted(row["operation"] for row in bob_rows) == ["delete", "insert"]
    assert client.get("/audit-records", headers=_bearer(bob)).json() == []
