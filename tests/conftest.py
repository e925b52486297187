import os
import sys

# Configuration is read at import time, so set it before the app loads
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret")
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["RUN_WORKER"] = "false"
os.environ.setdefault("OPENAI_API_KEY", "")

# Add project root to path
sys.path.insert(0, os.path.abspath(os.path.dirname(__file__) + '/..'))

import pytest
from fastapi.testclient import TestClient

from supportdesk.auth import create_access_token, get_current_user

REGULAR_USER = {
    "id": 1,
    "email": "user@example.com",
    "first_name": "Sample",
    "last_name": "User",
    "full_name": "Sample User",
    "role": "user",
    "avatar": None,
    "is_active": True,
    "is_verified": False,
    "last_login": None,
    "created_at": None,
    "updated_at": None,
}

ADMIN_USER = {**REGULAR_USER, "id": 2, "email": "admin@example.com", "first_name": "Admin", "role": "admin"}


class FakeCursor:
    """Minimal psycopg2 cursor stand-in.

    ``fetchone`` and ``fetchall`` return queued results in order; every
    executed statement is kept in ``queries`` as (sql, params).
    """

    def __init__(self, fetchone=None, fetchall=None):
        self.fetchone_results = list(fetchone or [])
        self.fetchall_results = list(fetchall or [])
        self.queries = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=None):
        self.queries.append((" ".join(sql.split()), params))

    def fetchone(self):
        return self.fetchone_results.pop(0) if self.fetchone_results else None

    def fetchall(self):
        return self.fetchall_results.pop(0) if self.fetchall_results else []


class FakeConnection:
    def __init__(self, cursor):
        self._cursor = cursor
        self.commits = 0

    def cursor(self, cursor_factory=None):
        return self._cursor

    def commit(self):
        self.commits += 1

    def rollback(self):
        pass


@pytest.fixture()
def fake_db(monkeypatch):
    """Point a module's ``get_db`` at a FakeConnection.

    Usage: ``cur = fake_db(chats, fetchone=[...], fetchall=[...])``
    """
    from contextlib import contextmanager

    def install(module, fetchone=None, fetchall=None):
        cursor = FakeCursor(fetchone, fetchall)
        conn = FakeConnection(cursor)

        @contextmanager
        def _get_db():
            yield conn

        monkeypatch.setattr(module, "get_db", _get_db)
        return cursor

    return install


@pytest.fixture()
def app():
    from app import app as fastapi_app
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture()
def client(app):
    """A test client for the FastAPI app (startup hooks are not run)."""
    return TestClient(app)


@pytest.fixture()
def as_user(app):
    app.dependency_overrides[get_current_user] = lambda: REGULAR_USER
    return REGULAR_USER


@pytest.fixture()
def as_admin(app):
    app.dependency_overrides[get_current_user] = lambda: ADMIN_USER
    return ADMIN_USER


@pytest.fixture()
def auth_headers():
    """Authentication headers with a valid access token for REGULAR_USER."""
    token = create_access_token({"user_id": REGULAR_USER["id"], "email": REGULAR_USER["email"]})
    return {"Authorization": f"Bearer {token}"}
