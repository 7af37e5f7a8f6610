"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - The app is created once per session using create_app("testing").
    TestingConfig points at in-memory SQLite unless TEST_DATABASE_URL says
    otherwise (e.g. a PostgreSQL roadbook_test database).
  - All tables are created once via db.create_all() at session start.
  - Between tests, all rows are deleted in FK-safe order and the login
    throttle is cleared, so tests are isolated.

Helper functions (not fixtures):
  - register(client, ...)        → dict with user + tokens
  - login(client, ...)           → dict with user + tokens
  - auth_headers(token)          → {"Authorization": "Bearer <token>"}
  - refresh_rows(app, user_id)   → [(token, revoked), ...] for one user
  - reset_rows(app, user_id)     → [revoked, ...] for one user

Ledger helpers open their own app context and return plain values, so no ORM
object outlives the context it was loaded in.
"""

from __future__ import annotations

import pytest
from sqlalchemy import select, text

from roadbook.app import create_app
from roadbook.app.extensions import db as _db
from roadbook.app.extensions import login_throttle
from roadbook.app.models.password_reset import PasswordResetRequest
from roadbook.app.models.refresh_token import RefreshToken


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    """Creates the Flask application in 'testing' mode once per test session."""
    flask_app = create_app("testing")

    with flask_app.app_context():
        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def clean_tables(app):
    """
    Deletes all rows between tests in FK-safe order and clears the throttle.

    Reset rows and refresh tokens go before users (CASCADE would handle it on
    PostgreSQL, but SQLite does not enforce foreign keys by default).
    """
    login_throttle.reset()

    yield  # run the test

    with app.app_context():
        _db.session.rollback()  # discard any uncommitted state from a failed test

        with _db.engine.connect() as conn:
            conn.execute(text("DELETE FROM password_resets"))
            conn.execute(text("DELETE FROM refresh_tokens"))
            conn.execute(text("DELETE FROM users"))
            conn.commit()

    login_throttle.reset()


# ═══════════════════════════════════════════════════════════════════════════
# Client fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def client(app):
    """Flask test client. Each test gets a fresh client (and cookie jar)."""
    return app.test_client()


class FakeClock:
    """Monotonic clock stand-in for the login throttle."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def throttle_clock(monkeypatch):
    clock = FakeClock()
    monkeypatch.setattr(login_throttle, "_clock", clock)
    return clock


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

def register(
    client,
    email: str = "alice@test.com",
    password: str = "Password1",
    display_name: str = "Alice",
    role: str | None = None,
) -> dict:
    """
    Registers a new user and returns the full response data dict.
    Returns: {"user": {...}, "access_token": "...", "refresh_token": "..."}
    """
    payload = {"email": email, "password": password, "display_name": display_name}
    if role is not None:
        payload["role"] = role
    resp = client.post("/api/v1/auth/register", json=payload)
    assert resp.status_code == 201, f"register failed: {resp.get_json()}"
    return resp.get_json()["data"]


def login(client, email: str, password: str = "Password1") -> dict:
    """
    Logs in a user and returns the response data dict.
    Returns: {"user": {...}, "access_token": "...", "refresh_token": "..."}
    """
    resp = client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": password},
    )
    assert resp.status_code == 200, f"login failed: {resp.get_json()}"
    return resp.get_json()["data"]


def auth_headers(token: str) -> dict:
    """Returns the Authorization header dict for use in test requests."""
    return {"Authorization": f"Bearer {token}"}


def refresh_rows(app, user_id: int) -> list[tuple[str, bool]]:
    """Every refresh-token ledger row of a user as (token, revoked), oldest first."""
    with app.app_context():
        rows = _db.session.execute(
            select(RefreshToken)
            .where(RefreshToken.user_id == user_id)
            .order_by(RefreshToken.id)
        ).scalars().all()
        return [(row.token, row.revoked) for row in rows]


def reset_rows(app, user_id: int) -> list[bool]:
    """Revoked flags of a user's password-reset rows, oldest first."""
    with app.app_context():
        rows = _db.session.execute(
            select(PasswordResetRequest)
            .where(PasswordResetRequest.user_id == user_id)
            .order_by(PasswordResetRequest.id)
        ).scalars().all()
        return [row.revoked for row in rows]
