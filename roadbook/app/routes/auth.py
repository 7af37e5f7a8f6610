"""
routes/auth.py — Authentication route handlers.

Layer rules:
  - Parse request body
  - Validate with the appropriate schema (raises ValidationError on bad input)
  - Call exactly ONE service function
  - Commit the DB session
  - Return the standard response envelope: {"data": {...}, "warnings": []}

No business logic here. No DB queries.
AppError propagates to the error handlers — the only local handler is the
blueprint one below, which clears the refresh cookie when a refresh fails for
a token reason.

Endpoints (url_prefix=/api/v1/auth):
  POST   /register                        → 201
  POST   /login                           → 200
  POST   /refresh                         → 200
  POST   /logout                          → 200  (auth required)
  GET    /verify                          → 200
  GET    /me                              → 200  (auth required)
  POST   /password-reset                  → 200
  POST   /password-reset/complete         → 200
  POST   /password                        → 200  (auth required)
  POST   /users/<id>/revoke-sessions      → 200  (ADMIN only)
"""

from __future__ import annotations

import logging

from flask import Blueprint, current_app, g, jsonify, request

from roadbook.app.errors import AppError, ErrorCode
from roadbook.app.extensions import db
from roadbook.app.middleware.auth_middleware import bearer_token, require_auth, require_roles
from roadbook.app.models.user import UserRole
from roadbook.app.schemas.auth_schema import (
    ChangePasswordSchema,
    LoginSchema,
    PasswordResetCompleteSchema,
    PasswordResetRequestSchema,
    RefreshTokenSchema,
    RegisterSchema,
)
from roadbook.app.services import auth_service

logger = logging.getLogger(__name__)

AUTH_URL_PREFIX = "/api/v1/auth"

auth_bp = Blueprint("auth", __name__)

_COOKIE_CLEARING_CODES = frozenset({
    ErrorCode.TOKEN_INVALID,
    ErrorCode.TOKEN_EXPIRED,
    ErrorCode.TOKEN_REUSE_DETECTED,
})

_RESET_REQUESTED_MESSAGE = (
    "If an account exists for this email, password reset instructions have been sent."
)


# ── Refresh cookie helpers ─────────────────────────────────────────────────

def _set_refresh_cookie(response, refresh_token: str):
    config = current_app.config
    response.set_cookie(
        config["REFRESH_COOKIE_NAME"],
        refresh_token,
        max_age=int(config["JWT_REFRESH_TOKEN_EXPIRES"].total_seconds()),
        httponly=True,
        secure=config["REFRESH_COOKIE_SECURE"],
        samesite="Lax",
        path=AUTH_URL_PREFIX,
    )
    return response


def _clear_refresh_cookie(response):
    response.delete_cookie(
        current_app.config["REFRESH_COOKIE_NAME"],
        httponly=True,
        secure=current_app.config["REFRESH_COOKIE_SECURE"],
        samesite="Lax",
        path=AUTH_URL_PREFIX,
    )
    return response


def _presented_refresh_token() -> str | None:
    """Refresh token from the JSON body, falling back to the cookie."""
    data = RefreshTokenSchema().load(request.get_json(silent=True) or {})
    return data["refresh_token"] or request.cookies.get(
        current_app.config["REFRESH_COOKIE_NAME"]
    )


def _session_response(result: dict, status: int):
    response = jsonify({"data": result, "warnings": []})
    response.status_code = status
    return _set_refresh_cookie(response, result["refresh_token"])


@auth_bp.errorhandler(AppError)
def handle_auth_error(error: AppError):
    response = jsonify(error.to_dict())
    response.status_code = error.http_status
    if request.endpoint == "auth.refresh" and error.code in _COOKIE_CLEARING_CODES:
        _clear_refresh_cookie(response)
    return response


# ── Endpoints ──────────────────────────────────────────────────────────────

@auth_bp.route("/register", methods=["POST"])
def register():
    """POST /auth/register — Create account; return tokens. (No auth required.)"""
    data = RegisterSchema().load(request.get_json(force=True) or {})
    result = auth_service.register_user(
        email=data["email"],
        password=data["password"],
        display_name=data["display_name"],
        role=UserRole(data["role"]),
        session=db.session,
    )
    db.session.commit()
    return _session_response(result, 201)


@auth_bp.route("/login", methods=["POST"])
def login():
    """POST /auth/login — Authenticate; return tokens. (No auth required.)"""
    data = LoginSchema().load(request.get_json(force=True) or {})
    result = auth_service.login_user(
        email=data["email"],
        password=data["password"],
        session=db.session,
    )
    db.session.commit()
    return _session_response(result, 200)


@auth_bp.route("/refresh", methods=["POST"])
def refresh():
    """POST /auth/refresh — Rotate a refresh token into a new token pair."""
    raw_token = _presented_refresh_token()
    if not raw_token:
        raise AppError(
            ErrorCode.TOKEN_MISSING,
            "A refresh token is required, in the body or the refresh cookie.",
            401,
        )
    result = auth_service.refresh_session(
        raw_refresh_token=raw_token,
        session=db.session,
    )
    db.session.commit()
    return _session_response(result, 200)


@auth_bp.route("/logout", methods=["POST"])
@require_auth
def logout():
    """
    POST /auth/logout — Revoke the presented refresh token, or every refresh
    token of the caller when none is presented. (Auth required.)
    """
    raw_token = _presented_refresh_token()
    if raw_token:
        auth_service.revoke_refresh_tokens(db.session, token=raw_token, owner_id=g.user_id)
    else:
        auth_service.revoke_refresh_tokens(db.session, user_id=g.user_id)
    db.session.commit()
    response = jsonify({"data": {"message": "Logged out successfully."}, "warnings": []})
    return _clear_refresh_cookie(response)


@auth_bp.route("/verify", methods=["GET"])
def verify():
    """GET /auth/verify — Check an access token and return its claims."""
    claims = auth_service.verify_access_token(bearer_token())
    return jsonify({"data": {"valid": True, "user": claims.to_dict()}, "warnings": []}), 200


@auth_bp.route("/me", methods=["GET"])
@require_auth
def me():
    """GET /auth/me — Return current user profile. (Auth required.)"""
    result = auth_service.get_current_user(
        user_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@auth_bp.route("/password-reset", methods=["POST"])
def request_password_reset():
    """
    POST /auth/password-reset — Open a reset flow. The response is the same
    whether or not the email belongs to an account.
    """
    data = PasswordResetRequestSchema().load(request.get_json(force=True) or {})
    raw_secret = auth_service.initiate_password_reset(
        email=data["email"],
        session=db.session,
    )
    db.session.commit()

    result = {"message": _RESET_REQUESTED_MESSAGE}
    if current_app.config.get("EXPOSE_RESET_TOKEN"):
        result["reset_token"] = raw_secret
    return jsonify({"data": result, "warnings": []}), 200


@auth_bp.route("/password-reset/complete", methods=["POST"])
def complete_password_reset():
    """POST /auth/password-reset/complete — Set a new password from a reset token."""
    data = PasswordResetCompleteSchema().load(request.get_json(force=True) or {})
    auth_service.complete_password_reset(
        raw_secret=data["token"],
        new_password=data["new_password"],
        session=db.session,
    )
    db.session.commit()
    return jsonify({
        "data": {"message": "Password updated. Please log in again."},
        "warnings": [],
    }), 200


@auth_bp.route("/password", methods=["POST"])
@require_auth
def change_password():
    """
    POST /auth/password — Change the caller's password. Every refresh token
    of the caller is revoked, so the refresh cookie is cleared. (Auth required.)
    """
    data = ChangePasswordSchema().load(request.get_json(force=True) or {})
    auth_service.change_password(
        user_id=g.user_id,
        current_password=data["current_password"],
        new_password=data["new_password"],
        session=db.session,
    )
    db.session.commit()
    response = jsonify({
        "data": {"message": "Password updated. Please log in again."},
        "warnings": [],
    })
    return _clear_refresh_cookie(response)


@auth_bp.route("/users/<int:user_id>/revoke-sessions", methods=["POST"])
@require_auth
@require_roles(UserRole.ADMIN)
def revoke_user_sessions(user_id: int):
    """POST /auth/users/<id>/revoke-sessions — Revoke all refresh tokens of a user. (ADMIN.)"""
    auth_service.revoke_refresh_tokens(db.session, user_id=user_id)
    db.session.commit()
    logger.info("User %s revoked all sessions of user %s", g.user_id, user_id)
    return jsonify({"data": {"revoked": True}, "warnings": []}), 200
