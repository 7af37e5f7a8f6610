"""
services/auth_service.py — Authentication and session-lifecycle logic.

Responsibilities:
  - Login with throttling and generic credential errors
  - Refresh-token rotation with reuse detection
  - Refresh-token revocation (logout, admin revoke)
  - Stateless access-token verification
  - Password reset: request and completion
  - Password change for a logged-in user
  - Registration and profile lookup

Layer rules:
  - No imports from routes or schemas
  - No use of flask.request, flask.g, or response objects
  - current_app.config is read (through token_issuer / token_ledger /
    password_hasher) for secrets, TTLs and bcrypt cost only
  - Writes are flushed; the route commits. The reuse-detection path commits
    its mass revocation itself because the request ends in an error.

Token lifecycle:
  login / register ─▶ new pair, ledger row (live)
  refresh(T)       ─▶ T claimed (revoked), new pair, new ledger row
  refresh(T) again ─▶ T already revoked ⇒ every token of the user revoked,
                      TOKEN_REUSE_DETECTED
  password reset   ─▶ every refresh token and reset row of the user revoked
  password change  ─▶ every refresh token of the user revoked

Access tokens are never checked against the ledger. They stay valid until
their own 15-minute expiry even after logout or reset.
"""

from __future__ import annotations

import functools
import logging
import secrets

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from roadbook.app.errors import AppError, ErrorCode
from roadbook.app.extensions import login_throttle
from roadbook.app.models.user import User, UserRole
from roadbook.app.services import token_ledger
from roadbook.app.services.password_hasher import hash_password, verify_password
from roadbook.app.services.token_issuer import (
    TokenClaims,
    decode_access_token,
    decode_refresh_token,
    issue_token_pair,
)

logger = logging.getLogger(__name__)

_RESET_SECRET_BYTES = 32


# ── Private helpers ────────────────────────────────────────────────────────

@functools.lru_cache(maxsize=None)
def _dummy_password_hash(rounds: int) -> str:
    """Hash checked when the email is unknown, so both failure paths cost one bcrypt verify."""
    return hash_password(secrets.token_hex(16), rounds=rounds)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _invalid_credentials() -> AppError:
    # Same code and message for "no such user" and "wrong password".
    return AppError(
        ErrorCode.INVALID_CREDENTIALS,
        "The email or password is incorrect.",
        401,
    )


def _find_user_by_email(email: str, session: Session) -> User | None:
    return session.execute(
        select(User).where(User.email == email)
    ).scalar_one_or_none()


def _build_user_dict(user: User) -> dict:
    """Serialises a User to a plain dict. Never includes the password hash."""
    return {
        "id": user.id,
        "email": user.email,
        "display_name": user.display_name,
        "role": getattr(user.role, "value", user.role),
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


def _start_session(user: User, session: Session) -> dict:
    """Issues a pair for `user` and records its refresh half in the ledger."""
    pair = issue_token_pair(user)
    token_ledger.record_refresh_token(user.id, pair.refresh_token, session)
    return pair.to_dict()


# ── Login / registration ───────────────────────────────────────────────────

def login_user(
        email: str,
        password: str,
        session: Session,
) -> dict:
    """
    Validates credentials and issues a new access + refresh token pair.

    A successful login revokes the user's most recent live refresh token, so
    a new login supersedes the previous refresh chain.

    Raises:
      AppError(ACCOUNT_LOCKED, 429)      — too many recent failures for this email
      AppError(INVALID_CREDENTIALS, 401) — email not found or password wrong

    Returns: {"user": {...}, "access_token": "...", "refresh_token": "..."}
    """
    email = normalize_email(email)
    # Counts this attempt as a failure up front; record_success() undoes it.
    login_throttle.acquire(email)

    user = _find_user_by_email(email, session)
    if user is None:
        verify_password(
            password,
            _dummy_password_hash(current_app.config.get("BCRYPT_LOG_ROUNDS", 12)),
        )
        raise _invalid_credentials()

    if not verify_password(password, user.password_hash):
        raise _invalid_credentials()

    login_throttle.record_success(email)

    previous = token_ledger.latest_live_refresh_token(user.id, session)
    if previous is not None:
        token_ledger.revoke_refresh_token(previous.token, session)

    return {
        "user": _build_user_dict(user),
        **_start_session(user, session),
    }


def register_user(
        email: str,
        password: str,
        display_name: str,
        session: Session,
        role: UserRole = UserRole.APPRENTICE,
) -> dict:
    """
    Creates a new account and starts a session for it.

    Raises:
      AppError(DUPLICATE_EMAIL, 409) — email already registered (case-insensitive)

    Returns: {"user": {...}, "access_token": "...", "refresh_token": "..."}
    """
    email = normalize_email(email)

    if _find_user_by_email(email, session) is not None:
        raise AppError(
            ErrorCode.DUPLICATE_EMAIL,
            f"The email address '{email}' is already registered.",
            409,
            field="email",
        )

    user = User(
        email=email,
        password_hash=hash_password(password),
        display_name=display_name.strip(),
        role=role,
    )
    session.add(user)
    try:
        session.flush()  # populate user.id before creating the refresh token
    except IntegrityError:
        # Lost a race with a concurrent registration of the same email.
        session.rollback()
        raise AppError(
            ErrorCode.DUPLICATE_EMAIL,
            f"The email address '{email}' is already registered.",
            409,
            field="email",
        )
    session.refresh(user)

    logger.info("Registered user %s with role %s", user.id, user.role.value)

    return {
        "user": _build_user_dict(user),
        **_start_session(user, session),
    }


# ── Refresh / revoke / verify ──────────────────────────────────────────────

def _handle_refresh_reuse(user_id: int, session: Session) -> AppError:
    revoked = token_ledger.revoke_user_refresh_tokens(user_id, session)
    # The revocation has to outlive the error response.
    session.commit()
    logger.warning(
        "Refresh token reuse detected for user %s; revoked %d live token(s)",
        user_id,
        revoked,
    )
    return AppError(
        ErrorCode.TOKEN_REUSE_DETECTED,
        "This refresh token was already used. All sessions have been revoked "
        "as a security precaution; please log in again.",
        401,
    )


def refresh_session(
        raw_refresh_token: str,
        session: Session,
) -> dict:
    """
    Rotates a refresh token: the presented token is consumed and a new pair
    is issued. A refresh token is therefore single-use.

    Raises:
      AppError(TOKEN_INVALID, 401)        — bad signature, malformed, or not in the ledger
      AppError(TOKEN_EXPIRED, 401)        — JWT exp or ledger expires_at in the past
      AppError(TOKEN_REUSE_DETECTED, 401) — token was already revoked; every
                                            refresh token of the user is revoked

    Returns: {"access_token": "...", "refresh_token": "..."}
    """
    decode_refresh_token(raw_refresh_token)

    record = token_ledger.find_refresh_token(raw_refresh_token, session)
    if record is None:
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The refresh token is not recognised.",
            401,
        )

    if record.revoked:
        raise _handle_refresh_reuse(record.user_id, session)

    if token_ledger.as_utc(record.expires_at) < token_ledger.utcnow():
        raise AppError(
            ErrorCode.TOKEN_EXPIRED,
            "The refresh token has expired. Please log in again.",
            401,
        )

    if not token_ledger.claim_refresh_token(record.id, session):
        # A concurrent request rotated this token between our read and write.
        raise _handle_refresh_reuse(record.user_id, session)

    user = session.get(User, record.user_id)
    if user is None:
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The refresh token belongs to an account that no longer exists.",
            401,
        )

    return _start_session(user, session)


def revoke_refresh_tokens(
        session: Session,
        token: str | None = None,
        user_id: int | None = None,
        owner_id: int | None = None,
) -> bool:
    """
    Marks refresh tokens revoked: one token, all of a user's tokens, or both.

    owner_id restricts the single-token revoke to a token of that user, so a
    caller can only log out their own sessions.

    Idempotent — revoking an unknown or already-revoked token is not an error.

    Raises:
      AppError(INVALID_ARGUMENT, 400) — neither token nor user_id given
    """
    if token is None and user_id is None:
        raise AppError(
            ErrorCode.INVALID_ARGUMENT,
            "Either a refresh token or a user id is required.",
            400,
        )

    if token is not None:
        token_ledger.revoke_refresh_token(token, session, user_id=owner_id)
    if user_id is not None:
        token_ledger.revoke_user_refresh_tokens(user_id, session)
    return True


def verify_access_token(token: str) -> TokenClaims:
    """
    Signature and expiry check only; the ledger is not consulted.

    Raises:
      AppError(TOKEN_INVALID, 401)
      AppError(TOKEN_EXPIRED, 401)
    """
    return decode_access_token(token)


# ── Password reset ─────────────────────────────────────────────────────────

def initiate_password_reset(email: str, session: Session) -> str:
    """
    Opens a password-reset flow and returns the raw secret for out-of-band
    delivery. Only the bcrypt hash of the secret is stored; it expires after
    PASSWORD_RESET_TOKEN_EXPIRES (1 hour).

    Any earlier live request of the same user is revoked first, so at most one
    reset flow per user is open.

    An unknown email is logged and answered with a decoy secret that is never
    stored: callers cannot tell existing and unknown addresses apart.
    """
    email = normalize_email(email)
    raw_secret = secrets.token_hex(_RESET_SECRET_BYTES)

    # Hashed on both paths so an unknown email costs the same bcrypt round.
    secret_hash = hash_password(raw_secret)

    user = _find_user_by_email(email, session)
    if user is None:
        logger.warning("Password reset requested for unknown email %s", email)
        return raw_secret

    token_ledger.revoke_password_resets(user.id, session, live_only=True)
    token_ledger.record_password_reset(user.id, secret_hash, session)

    logger.info("Password reset opened for user %s", user.id)
    return raw_secret


def complete_password_reset(
        raw_secret: str,
        new_password: str,
        session: Session,
) -> bool:
    """
    Sets a new password for the user owning `raw_secret`.

    Only hashes are stored, so every live request is checked in turn; the
    first match wins. On success the user's refresh tokens and reset
    requests are all revoked, forcing a fresh login everywhere.

    Raises:
      AppError(TOKEN_INVALID, 401) — no live reset request matches the secret
    """
    match = None
    for candidate in token_ledger.live_password_resets(session):
        if verify_password(raw_secret, candidate.token):
            match = candidate
            break

    if match is None:
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The password reset token is invalid or has expired.",
            401,
        )

    user = session.get(User, match.user_id)
    if user is None:
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The password reset token is invalid or has expired.",
            401,
        )

    user.password_hash = hash_password(new_password)
    session.flush()

    token_ledger.revoke_user_refresh_tokens(user.id, session)
    token_ledger.revoke_password_resets(user.id, session)

    logger.info("Password reset completed for user %s", user.id)
    return True


def change_password(
        user_id: int,
        current_password: str,
        new_password: str,
        session: Session,
) -> bool:
    """
    Replaces the password of an authenticated user who knows the current one.

    Every refresh token of the user is revoked, forcing a fresh login on all
    devices. Outstanding access tokens run until their own expiry.

    Raises:
      AppError(USER_NOT_FOUND, 404)      — user_id from the JWT no longer exists
      AppError(INVALID_CREDENTIALS, 401) — current_password is wrong
      AppError(INVALID_FIELD, 400)       — new_password equals current_password
    """
    user = session.get(User, user_id)
    if user is None:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} not found.",
            404,
        )

    if not verify_password(current_password, user.password_hash):
        raise AppError(
            ErrorCode.INVALID_CREDENTIALS,
            "The current password is incorrect.",
            401,
            field="current_password",
        )

    if new_password == current_password:
        raise AppError(
            ErrorCode.INVALID_FIELD,
            "The new password must be different from the current password.",
            400,
            field="new_password",
        )

    user.password_hash = hash_password(new_password)
    session.flush()

    revoked = token_ledger.revoke_user_refresh_tokens(user.id, session)

    logger.info("Password changed for user %s; revoked %d refresh token(s)", user.id, revoked)
    return True


# ── Profile ────────────────────────────────────────────────────────────────

def get_current_user(user_id: int, session: Session) -> dict:
    """
    Returns the profile of the currently authenticated user.

    Raises:
      AppError(USER_NOT_FOUND, 404) — user_id from the JWT no longer exists.
    """
    user = session.get(User, user_id)
    if user is None:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} not found.",
            404,
        )
    return _build_user_dict(user)
