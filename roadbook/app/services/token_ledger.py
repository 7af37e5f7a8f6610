"""
services/token_ledger.py — Persistence of refresh tokens and reset requests.

All writes are flushed, never committed: commit is the route's job (the one
exception is the reuse-detection path in auth_service, which must survive the
error response).

Revocation is always a bulk UPDATE ("mark where token = X", "mark where
user_id = X"), so revoking a row that is already revoked or does not exist is
a no-op rather than an error.

Rotation uses claim_refresh_token(): a single conditional UPDATE on
revoked = false. Of two concurrent rotations of the same row exactly one sees
rowcount == 1; the other is treated as reuse by the caller.
"""

from __future__ import annotations

from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from roadbook.app.models.password_reset import PasswordResetRequest
from roadbook.app.models.refresh_token import RefreshToken


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; every stored value is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ── Refresh tokens ─────────────────────────────────────────────────────────

def record_refresh_token(user_id: int, token: str, session: Session) -> RefreshToken:
    """Persists a freshly issued refresh token with a full refresh-TTL expiry."""
    row = RefreshToken(
        user_id=user_id,
        token=token,
        expires_at=utcnow() + current_app.config["JWT_REFRESH_TOKEN_EXPIRES"],
        revoked=False,
    )
    session.add(row)
    session.flush()
    return row


def find_refresh_token(token: str, session: Session) -> RefreshToken | None:
    return session.execute(
        select(RefreshToken).where(RefreshToken.token == token)
    ).scalar_one_or_none()


def latest_live_refresh_token(user_id: int, session: Session) -> RefreshToken | None:
    """Most recently issued non-revoked refresh token of a user, if any."""
    return session.execute(
        select(RefreshToken)
        .where(
            RefreshToken.user_id == user_id,
            RefreshToken.revoked.is_(False),
        )
        .order_by(RefreshToken.created_at.desc(), RefreshToken.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def claim_refresh_token(row_id: int, session: Session) -> bool:
    """
    Atomically flips one row from live to revoked.

    Returns True only for the caller whose UPDATE actually changed the row.
    """
    result = session.execute(
        update(RefreshToken)
        .where(
            RefreshToken.id == row_id,
            RefreshToken.revoked.is_(False),
        )
        .values(revoked=True)
    )
    return result.rowcount == 1


def revoke_refresh_token(token: str, session: Session, user_id: int | None = None) -> int:
    """Revokes one token; with user_id, only if that user owns it."""
    criteria = [RefreshToken.token == token, RefreshToken.revoked.is_(False)]
    if user_id is not None:
        criteria.append(RefreshToken.user_id == user_id)

    result = session.execute(
        update(RefreshToken).where(*criteria).values(revoked=True)
    )
    session.flush()
    return result.rowcount


def revoke_user_refresh_tokens(user_id: int, session: Session) -> int:
    result = session.execute(
        update(RefreshToken)
        .where(RefreshToken.user_id == user_id, RefreshToken.revoked.is_(False))
        .values(revoked=True)
    )
    session.flush()
    return result.rowcount


# ── Password reset requests ────────────────────────────────────────────────

def record_password_reset(user_id: int, token_hash: str, session: Session) -> PasswordResetRequest:
    row = PasswordResetRequest(
        user_id=user_id,
        token=token_hash,
        expires_at=utcnow() + current_app.config["PASSWORD_RESET_TOKEN_EXPIRES"],
        revoked=False,
    )
    session.add(row)
    session.flush()
    return row


def live_password_resets(session: Session) -> list[PasswordResetRequest]:
    """Every non-revoked, non-expired reset request, oldest first."""
    return list(
        session.execute(
            select(PasswordResetRequest)
            .where(
                PasswordResetRequest.revoked.is_(False),
                PasswordResetRequest.expires_at > utcnow(),
            )
            .order_by(PasswordResetRequest.id)
        ).scalars().all()
    )


def revoke_password_resets(user_id: int, session: Session, live_only: bool = False) -> int:
    """
    Revokes a user's reset requests.

    live_only=True restricts the update to rows that have not expired yet,
    which is all that matters when a new request supersedes older ones.
    """
    criteria = [
        PasswordResetRequest.user_id == user_id,
        PasswordResetRequest.revoked.is_(False),
    ]
    if live_only:
        criteria.append(PasswordResetRequest.expires_at > utcnow())

    result = session.execute(
        update(PasswordResetRequest).where(*criteria).values(revoked=True)
    )
    session.flush()
    return result.rowcount
