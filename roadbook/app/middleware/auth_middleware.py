"""
middleware/auth_middleware.py — JWT authentication and role decorators.

The @require_auth decorator:
  1. Reads the Authorization header (expected: "Bearer <token>")
  2. Verifies the access token through auth_service.verify_access_token
  3. Attaches the decoded TokenClaims to flask.g.user and the id to g.user_id
  4. Lets the AppError propagate to the global handler if any step fails

The @require_roles(*roles) decorator runs after @require_auth and rejects
callers whose role is not listed (403 FORBIDDEN).

Strict responsibility boundary:
  - Middleware = authentication (401) and coarse role checks (403).
  - Services receive user_id as a plain integer argument, with no knowledge
    of JWT or HTTP headers.

Error codes:
  TOKEN_MISSING  (401) — no Authorization header
  TOKEN_INVALID  (401) — malformed header, invalid signature, or bad payload
  TOKEN_EXPIRED  (401) — valid token but exp claim is in the past
  FORBIDDEN      (403) — authenticated, but role not allowed
"""

from __future__ import annotations

import functools
from typing import Callable

from flask import g, request

from roadbook.app.errors import AppError, ErrorCode
from roadbook.app.services import auth_service
from roadbook.app.services.token_issuer import TokenClaims


def require_auth(f: Callable) -> Callable:
    """
    Route decorator that enforces JWT authentication.

    Usage:
        @auth_bp.route("/me")
        @require_auth
        def me():
            user_id = g.user_id  # always an int when this runs
            ...
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        _authenticate_request()
        return f(*args, **kwargs)

    return decorated


def require_roles(*roles: str) -> Callable:
    """
    Route decorator that restricts an authenticated route to some roles.

    Must be applied below @require_auth:

        @require_auth
        @require_roles("ADMIN")
        def admin_only(): ...
    """
    allowed = {getattr(role, "value", role) for role in roles}

    def decorator(f: Callable) -> Callable:
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            claims: TokenClaims | None = getattr(g, "user", None)
            if claims is None:
                raise AppError(
                    ErrorCode.TOKEN_MISSING,
                    "Authentication required. Provide a Bearer token in the Authorization header.",
                    401,
                )
            if claims.role not in allowed:
                raise AppError(
                    ErrorCode.FORBIDDEN,
                    "You do not have permission to perform this action.",
                    403,
                )
            return f(*args, **kwargs)

        return decorated

    return decorator


def bearer_token() -> str:
    """
    Extracts the raw token from "Authorization: Bearer <token>".

    Raises AppError(TOKEN_MISSING / TOKEN_INVALID, 401).
    """
    auth_header = request.headers.get("Authorization", "")

    if not auth_header:
        raise AppError(
            ErrorCode.TOKEN_MISSING,
            "Authentication required. Provide a Bearer token in the Authorization header.",
            401,
        )

    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "Authorization header must be in the format: Bearer <token>.",
            401,
        )

    return parts[1]


def _authenticate_request() -> None:
    """
    Performs the full JWT authentication sequence and sets flask.g.user.

    Separated from the decorator wrapper for testability — can be called
    directly in tests inside a request context.
    """
    claims = auth_service.verify_access_token(bearer_token())
    g.user = claims
    g.user_id = claims.user_id
