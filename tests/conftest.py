"""Shared pytest fixtures.

Fixture summary
---------------
engine         — In-memory SQLite engine shared across threads (StaticPool).
session_factory — sessionmaker bound to ``engine``.
db_session     — One session on the test database.
client         — FastAPI TestClient with ``database.get_db`` overridden.
nonce          — A valid anti-forgery nonce for the tracking action.
admin_headers  — Bearer-token Authorization headers for the admin user.
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Test environment bootstrap
# ---------------------------------------------------------------------------
# Required before any app module is imported: auth raises at import time
# without these, and database would otherwise open a file-backed SQLite DB.

_TEST_ENV_DEFAULTS: dict[str, str] = {
    "ENVIRONMENT": "dev",
    "DATABASE_URL": "sqlite://",
    "SECRET_KEY": "test-secret-key-for-tests-only",
    "ADMIN_USERNAME": "admin",
    "ADMIN_PASSWORD": "test-admin-password-123",
}

for _key, _value in _TEST_ENV_DEFAULTS.items():
    os.environ[_key] = _value

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import auth  # noqa: E402
import database  # noqa: E402
from main import TRACK_ACTION, app  # noqa: E402


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    database.create_tables(bind=engine)
    yield engine
    database.drop_tables(bind=engine)
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(session_factory):
    def _override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[database.get_db] = _override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def nonce() -> str:
    return auth.create_nonce(TRACK_ACTION)


@pytest.fixture()
def admin_headers() -> dict[str, str]:
    token = auth.create_access_token({"sub": "admin"})
    return {"Authorization": f"Bearer {token}"}
