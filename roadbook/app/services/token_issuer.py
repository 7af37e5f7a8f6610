"""
services/token_issuer.py — Signs and verifies access/refresh JWT pairs.

Token design:
  - One fresh token_id (uuid4 hex) per pair, sent as the `jti` claim in both
    halves. It ties an access token to the refresh token issued with it.
  - Access token:  HS256, JWT_ACCESS_SECRET_KEY,  JWT_ACCESS_TOKEN_EXPIRES  (15 min)
  - Refresh token: HS256, JWT_REFRESH_SECRET_KEY, JWT_REFRESH_TOKEN_EXPIRES (7 days)
  - Payload: sub (user id as str), role, email, display_name, jti, iat, exp.

Issuing is pure: persisting the refresh half is the caller's job
(see token_ledger.record_refresh_token).

Verification failures map onto exactly two codes:
  TOKEN_EXPIRED (401) — signature fine, exp in the past
  TOKEN_INVALID (401) — anything else (bad signature, malformed, missing claims)
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

import jwt
from flask import current_app

from roadbook.app.errors import AppError, ErrorCode

_REQUIRED_CLAIMS = ["exp", "iat", "sub", "jti"]


@dataclass(frozen=True)
class TokenClaims:
    """Decoded, fixed-shape claims shared by both halves of a token pair."""

    user_id: int
    role: str
    email: str
    display_name: str
    token_id: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str

    def to_dict(self) -> dict:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
        }


def claims_for_user(user) -> TokenClaims:
    """Builds the claims of a new pair for `user`, minting a fresh token_id."""
    return TokenClaims(
        user_id=user.id,
        role=getattr(user.role, "value", user.role),
        email=user.email,
        display_name=user.display_name,
        token_id=uuid.uuid4().hex,
    )


def _encode(claims: TokenClaims, secret: str, ttl) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(claims.user_id),
        "role": claims.role,
        "email": claims.email,
        "display_name": claims.display_name,
        "jti": claims.token_id,
        "iat": now,
        "exp": now + ttl,
    }
    return jwt.encode(
        payload,
        secret,
        algorithm=current_app.config.get("JWT_ALGORITHM", "HS256"),
    )


def issue_token_pair(user) -> TokenPair:
    """
    Signs a matched access/refresh pair for a persisted user.

    `user` needs id, role, email and display_name attributes.
    """
    claims = claims_for_user(user)
    config = current_app.config
    return TokenPair(
        access_token=_encode(
            claims,
            config["JWT_ACCESS_SECRET_KEY"],
            config["JWT_ACCESS_TOKEN_EXPIRES"],
        ),
        refresh_token=_encode(
            claims,
            config["JWT_REFRESH_SECRET_KEY"],
            config["JWT_REFRESH_TOKEN_EXPIRES"],
        ),
    )


def _decode(token: str, secret: str, kind: str) -> TokenClaims:
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[current_app.config.get("JWT_ALGORITHM", "HS256")],
            options={"require": _REQUIRED_CLAIMS},
        )
    except jwt.ExpiredSignatureError:
        raise AppError(
            ErrorCode.TOKEN_EXPIRED,
            f"The {kind} token has expired.",
            401,
        )
    except jwt.InvalidTokenError:
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            f"The {kind} token is invalid or has been tampered with.",
            401,
        )

    try:
        return TokenClaims(
            user_id=int(payload["sub"]),
            role=str(payload["role"]),
            email=str(payload["email"]),
            display_name=str(payload["display_name"]),
            token_id=str(payload["jti"]),
        )
    except (KeyError, TypeError, ValueError):
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            f"The {kind} token is missing required claims.",
            401,
        )


def decode_access_token(token: str) -> TokenClaims:
    return _decode(token, current_app.config["JWT_ACCESS_SECRET_KEY"], "access")


def decode_refresh_token(token: str) -> TokenClaims:
    return _decode(token, current_app.config["JWT_REFRESH_SECRET_KEY"], "refresh")
