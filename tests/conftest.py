from __future__ import annotations

import os

os.environ.setdefault("ENV", "development")
os.environ.setdefault("SECRET_KEY", "workspace-guard-test-secret-key-0123456789")
os.environ.setdefault("PLANS_FILE_PATH", "config/plans.yaml")
os.environ.setdefault("INVITATION_EMAIL_ENABLED", "false")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import workspace_guard.api.main as api_main  # noqa: E402
from workspace_guard.auth.jwt import AuthContext, create_access_token  # noqa: E402
from workspace_guard.storage.db import (  # noqa: E402
    Base,
    build_engine,
    build_session_factory,
    get_session,
    load_models,
)
from workspace_guard.storage.models import User  # noqa: E402
from workspace_guard.storage.security import hash_password  # noqa: E402


TEST_PASSWORD = "correct-horse-battery"


def _build_sqlite_session_factory() -> sessionmaker:
    load_models()
    engine = build_engine("sqlite+pysqlite://", poolclass=StaticPool)
    Base.metadata.create_all(engine)
    return build_session_factory(engine)


@pytest.fixture
def session_factory() -> sessionmaker:
    return _build_sqlite_session_factory()


@pytest.fixture
def session(session_factory) -> Session:
    db_session = session_factory()
    try:
        yield db_session
    finally:
        db_session.close()


@pytest.fixture
def make_user(session):
    def _make_user(email: str, *, verified: bool = True, full_name: str = "") -> User:
        user = User(
            email=email.lower(),
            email_verified=verified,
            password_hash=hash_password(TEST_PASSWORD),
            full_name=full_name,
        )
        session.add(user)
        session.commit()
        return user

    return _make_user


@pytest.fixture
def client(session_factory) -> TestClient:
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


def auth_headers(user_id: str, email: str, *, verified: bool = True, capabilities=frozenset()) -> dict[str, str]:
    token, _ = create_access_token(
        AuthContext(user_id=user_id, email=email, email_verified=verified, capabilities=frozenset(capabilities))
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers_for():
    return auth_headers
