"""
Unit tests for auth_service branches not naturally hit in integration flow.

The session is a MagicMock and the ledger is patched, so each test pins one
decision of the service without a database.
"""

from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from roadbook.app.errors import AppError, ErrorCode
from roadbook.app.models.user import UserRole
from roadbook.app.services import auth_service
from roadbook.app.services.login_throttle import LoginThrottle


def _ledger_row(**overrides):
    values = dict(
        id=1,
        user_id=7,
        token="raw-refresh",
        revoked=False,
        expires_at=datetime.now(timezone.utc) + timedelta(days=1),
    )
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.fixture
def ledger(monkeypatch):
    fake = MagicMock()
    fake.as_utc.side_effect = lambda value: value
    fake.utcnow.side_effect = lambda: datetime.now(timezone.utc)
    monkeypatch.setattr(auth_service, "token_ledger", fake)
    monkeypatch.setattr(auth_service, "decode_refresh_token", MagicMock())
    return fake


# ── get_current_user ───────────────────────────────────────────────────────

def test_get_current_user_returns_serialized_user():
    session = MagicMock()
    created_at = datetime(2026, 1, 1, tzinfo=timezone.utc)
    session.get.return_value = SimpleNamespace(
        id=7,
        email="alice@example.com",
        display_name="Alice",
        role=UserRole.INSTRUCTOR,
        created_at=created_at,
        password_hash="$2b$04$secret",
    )

    result = auth_service.get_current_user(user_id=7, session=session)

    assert result == {
        "id": 7,
        "email": "alice@example.com",
        "display_name": "Alice",
        "role": "INSTRUCTOR",
        "created_at": created_at.isoformat(),
    }


def test_get_current_user_raises_user_not_found():
    session = MagicMock()
    session.get.return_value = None

    with pytest.raises(AppError) as exc_info:
        auth_service.get_current_user(user_id=99999, session=session)

    err = exc_info.value
    assert err.code == ErrorCode.USER_NOT_FOUND
    assert err.http_status == 404


# ── revoke_refresh_tokens ──────────────────────────────────────────────────

def test_revoke_requires_token_or_user(ledger):
    with pytest.raises(AppError) as exc_info:
        auth_service.revoke_refresh_tokens(MagicMock())

    assert exc_info.value.code == ErrorCode.INVALID_ARGUMENT
    assert exc_info.value.http_status == 400
    ledger.revoke_refresh_token.assert_not_called()
    ledger.revoke_user_refresh_tokens.assert_not_called()


def test_revoke_with_both_revokes_both(ledger):
    session = MagicMock()

    assert auth_service.revoke_refresh_tokens(session, token="t", user_id=7) is True

    ledger.revoke_refresh_token.assert_called_once_with("t", session, user_id=None)
    ledger.revoke_user_refresh_tokens.assert_called_once_with(7, session)


# ── refresh_session ────────────────────────────────────────────────────────

def test_refresh_of_unknown_token_is_invalid(ledger):
    ledger.find_refresh_token.return_value = None

    with pytest.raises(AppError) as exc_info:
        auth_service.refresh_session("raw-refresh", MagicMock())

    assert exc_info.value.code == ErrorCode.TOKEN_INVALID


def test_refresh_of_revoked_token_revokes_all_and_commits(ledger):
    session = MagicMock()
    ledger.find_refresh_token.return_value = _ledger_row(revoked=True)
    ledger.revoke_user_refresh_tokens.return_value = 2

    with pytest.raises(AppError) as exc_info:
        auth_service.refresh_session("raw-refresh", session)

    assert exc_info.value.code == ErrorCode.TOKEN_REUSE_DETECTED
    assert exc_info.value.http_status == 401
    ledger.revoke_user_refresh_tokens.assert_called_once_with(7, session)
    session.commit.assert_called_once()
    ledger.claim_refresh_token.assert_not_called()


def test_refresh_of_expired_row_is_expired_not_reuse(ledger):
    session = MagicMock()
    ledger.find_refresh_token.return_value = _ledger_row(
        expires_at=datetime.now(timezone.utc) - timedelta(seconds=1),
    )

    with pytest.raises(AppError) as exc_info:
        auth_service.refresh_session("raw-refresh", session)

    assert exc_info.value.code == ErrorCode.TOKEN_EXPIRED
    ledger.claim_refresh_token.assert_not_called()
    ledger.revoke_user_refresh_tokens.assert_not_called()
    session.commit.assert_not_called()


def test_losing_a_concurrent_rotation_is_reuse(ledger):
    session = MagicMock()
    ledger.find_refresh_token.return_value = _ledger_row()
    ledger.claim_refresh_token.return_value = False
    ledger.revoke_user_refresh_tokens.return_value = 1

    with pytest.raises(AppError) as exc_info:
        auth_service.refresh_session("raw-refresh", session)

    assert exc_info.value.code == ErrorCode.TOKEN_REUSE_DETECTED
    ledger.revoke_user_refresh_tokens.assert_called_once_with(7, session)
    session.commit.assert_called_once()


def test_refresh_for_deleted_user_is_invalid(ledger):
    session = MagicMock()
    session.get.return_value = None
    ledger.find_refresh_token.return_value = _ledger_row()
    ledger.claim_refresh_token.return_value = True

    with pytest.raises(AppError) as exc_info:
        auth_service.refresh_session("raw-refresh", session)

    assert exc_info.value.code == ErrorCode.TOKEN_INVALID


def test_refresh_decodes_before_touching_the_ledger(ledger, monkeypatch):
    monkeypatch.setattr(
        auth_service,
        "decode_refresh_token",
        MagicMock(side_effect=AppError(ErrorCode.TOKEN_EXPIRED, "expired", 401)),
    )

    with pytest.raises(AppError) as exc_info:
        auth_service.refresh_session("raw-refresh", MagicMock())

    assert exc_info.value.code == ErrorCode.TOKEN_EXPIRED
    ledger.find_refresh_token.assert_not_called()


# ── password reset ─────────────────────────────────────────────────────────

@pytest.fixture
def hasher(monkeypatch):
    fake = MagicMock(side_effect=lambda plaintext: f"hashed:{plaintext}")
    monkeypatch.setattr(auth_service, "hash_password", fake)
    return fake


def _no_user_session():
    session = MagicMock()
    session.execute.return_value.scalar_one_or_none.return_value = None
    return session


def test_reset_for_unknown_email_records_nothing(ledger, hasher, caplog):
    secret = auth_service.initiate_password_reset("Nobody@Test.com ", _no_user_session())

    assert len(secret) == 64
    ledger.record_password_reset.assert_not_called()
    ledger.revoke_password_resets.assert_not_called()
    assert "nobody@test.com" in caplog.text


def test_reset_for_unknown_email_still_hashes_the_secret(ledger, hasher):
    secret = auth_service.initiate_password_reset("nobody@test.com", _no_user_session())

    hasher.assert_called_once_with(secret)


def test_reset_for_known_email_stores_the_hash(ledger, hasher):
    session = MagicMock()
    session.execute.return_value.scalar_one_or_none.return_value = SimpleNamespace(id=7)

    secret = auth_service.initiate_password_reset("alice@test.com", session)

    hasher.assert_called_once_with(secret)
    ledger.revoke_password_resets.assert_called_once_with(7, session, live_only=True)
    ledger.record_password_reset.assert_called_once_with(7, f"hashed:{secret}", session)


def test_reset_secrets_are_unique(ledger, hasher):
    session = _no_user_session()

    first = auth_service.initiate_password_reset("a@test.com", session)
    second = auth_service.initiate_password_reset("a@test.com", session)

    assert first != second


def test_complete_reset_without_live_requests_is_invalid(ledger):
    ledger.live_password_resets.return_value = []

    with pytest.raises(AppError) as exc_info:
        auth_service.complete_password_reset("secret", "NewPassword1", MagicMock())

    assert exc_info.value.code == ErrorCode.TOKEN_INVALID
    ledger.revoke_user_refresh_tokens.assert_not_called()


# ── change_password ────────────────────────────────────────────────────────

def _user_session(**overrides):
    values = dict(id=7, password_hash="stored-hash")
    values.update(overrides)
    session = MagicMock()
    session.get.return_value = SimpleNamespace(**values)
    return session


def test_change_password_wrong_current_password(ledger, hasher, monkeypatch):
    monkeypatch.setattr(auth_service, "verify_password", MagicMock(return_value=False))

    with pytest.raises(AppError) as exc_info:
        auth_service.change_password(7, "Wrong1234", "NewPassword1", _user_session())

    assert exc_info.value.code == ErrorCode.INVALID_CREDENTIALS
    assert exc_info.value.http_status == 401
    hasher.assert_not_called()
    ledger.revoke_user_refresh_tokens.assert_not_called()


def test_change_password_to_same_password(ledger, hasher, monkeypatch):
    monkeypatch.setattr(auth_service, "verify_password", MagicMock(return_value=True))

    with pytest.raises(AppError) as exc_info:
        auth_service.change_password(7, "Password1", "Password1", _user_session())

    assert exc_info.value.code == ErrorCode.INVALID_FIELD
    assert exc_info.value.field == "new_password"
    ledger.revoke_user_refresh_tokens.assert_not_called()


def test_change_password_rehashes_and_revokes_sessions(ledger, hasher, monkeypatch):
    monkeypatch.setattr(auth_service, "verify_password", MagicMock(return_value=True))
    ledger.revoke_user_refresh_tokens.return_value = 3
    session = _user_session()

    assert auth_service.change_password(7, "Password1", "NewPassword1", session) is True

    assert session.get.return_value.password_hash == "hashed:NewPassword1"
    ledger.revoke_user_refresh_tokens.assert_called_once_with(7, session)


def test_change_password_for_missing_user(ledger):
    session = MagicMock()
    session.get.return_value = None

    with pytest.raises(AppError) as exc_info:
        auth_service.change_password(99, "Password1", "NewPassword1", session)

    assert exc_info.value.code == ErrorCode.USER_NOT_FOUND


# ── login throttling ───────────────────────────────────────────────────────

def test_parallel_wrong_passwords_cannot_exceed_the_attempt_limit(monkeypatch):
    throttle = LoginThrottle(max_attempts=5, lockout=timedelta(minutes=15))
    monkeypatch.setattr(auth_service, "login_throttle", throttle)
    for _ in range(4):
        throttle.record_failure("alice@test.com")

    checked = []
    checked_lock = threading.Lock()

    def slow_wrong_password(plaintext, hashed):
        with checked_lock:
            checked.append(plaintext)
        time.sleep(0.05)
        return False

    monkeypatch.setattr(auth_service, "verify_password", slow_wrong_password)

    session = MagicMock()
    session.execute.return_value.scalar_one_or_none.return_value = SimpleNamespace(
        id=7, password_hash="stored-hash",
    )
    codes = []
    start = threading.Barrier(8)

    def attempt():
        start.wait()
        try:
            auth_service.login_user("alice@test.com", "Guess1234", session)
        except AppError as err:
            with checked_lock:
                codes.append(err.code)

    threads = [threading.Thread(target=attempt) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(checked) == 1
    assert codes.count(ErrorCode.INVALID_CREDENTIALS) == 1
    assert codes.count(ErrorCode.ACCOUNT_LOCKED) == 7
    assert throttle.attempts("alice@test.com") == 5


def test_normalize_email():
    assert auth_service.normalize_email("  Alice@Example.COM ") == "alice@example.com"
