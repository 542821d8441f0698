"""Shared test fixtures for soilhealth-backend tests."""

import pytest

from app import create_app
from database.init_db import get_connection, init_db
from services.inflight_guard import InFlightGuard
from services.repository import SoilSampleRepository
from services.session_service import SessionContext, issue_token

SECRET = "test-secret"


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "soil_samples.db")
    init_db(path)
    return path


@pytest.fixture
def repo(db_path):
    conn = get_connection(db_path)
    yield SoilSampleRepository(conn)
    conn.close()


@pytest.fixture
def guard():
    return InFlightGuard()


@pytest.fixture
def session():
    """A signed-in session for user 'alice'."""
    from datetime import datetime, timezone

    ctx = SessionContext("session-alice")
    ctx.sign_in("alice", datetime(2026, 10, 1, 8, 0, tzinfo=timezone.utc))
    return ctx


@pytest.fixture
def app(db_path):
    return create_app({"DB_PATH": db_path, "SECRET_KEY": SECRET, "TESTING": True})


@pytest.fixture
def client(app):
    return app.test_client()


def auth_headers(user_id: str) -> dict:
    return {"Authorization": f"Bearer {issue_token(SECRET, user_id)}"}


@pytest.fixture
def alice():
    return auth_headers("alice")


@pytest.fixture
def bob():
    return auth_headers("bob")


@pytest.fixture
def sample_payload():
    """A valid new-sample submission (28.5 °C, derived values left to the server)."""
    return {
        "municipality": "bucay",
        "location": "Bucay Central",
        "coordinates": [120.73, 17.55],
        "temperature": 28.5,
        "nitrogen": 0.28,
        "phosphorus": 0.18,
        "potassium": 0.22,
    }
