"""Engine and session factories shared by the API, scripts and tests."""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Generator, Optional, Tuple

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from workspace_guard.core.config import get_settings


Base = declarative_base()


def build_engine(database_url: str, **overrides: Any) -> Engine:
    options: dict[str, Any] = {"pool_pre_ping": True, "future": True}
    if database_url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
    options.update(overrides)
    return create_engine(database_url, **options)


def build_session_factory(engine: Engine) -> sessionmaker:
    # Objects stay readable after commit; services return them to routers.
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return build_engine(get_settings().database_url)


@lru_cache(maxsize=1)
def get_session_factory() -> sessionmaker:
    return build_session_factory(get_engine())


def get_session() -> Generator[Session, None, None]:
    session = get_session_factory()()
    try:
        yield session
    finally:
        session.close()


def test_connection() -> Tuple[bool, Optional[str]]:
    try:
        with get_engine().connect() as connection:
            connection.execute(text("SELECT 1"))
        return True, None
    except Exception as exc:  # pragma: no cover
        return False, str(exc)


def load_models() -> None:
    """Import ORM models so Base metadata contains all mapped tables."""

    import workspace_guard.storage.models  # noqa: F401
