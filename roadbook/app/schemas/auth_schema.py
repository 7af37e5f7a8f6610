"""
schemas/auth_schema.py — Marshmallow schemas for authentication endpoints.

Validation responsibility:
  - This file: field types, lengths, formats.
  - services/auth_service.py: email normalisation, DUPLICATE_EMAIL checks and
    every credential/token decision.

IMPORTANT: All schemas inherit from marshmallow.Schema directly so they can be
           instantiated in unit tests without a Flask app context.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, pre_load, validate, validates

from roadbook.app.models.user import UserRole

# Roles a user may pick at sign-up. ADMIN accounts are provisioned out of band.
SELF_SERVICE_ROLES = (
    UserRole.APPRENTICE.value,
    UserRole.GUIDE.value,
    UserRole.INSTRUCTOR.value,
)


def _check_password_strength(value: str) -> None:
    """min 8 chars, at least one letter and one digit."""
    if len(value) < 8:
        raise ValidationError("Password must be at least 8 characters long.")
    if not any(c.isalpha() for c in value):
        raise ValidationError("Password must contain at least one letter.")
    if not any(c.isdigit() for c in value):
        raise ValidationError("Password must contain at least one digit.")


class _EmailSchema(Schema):
    """Trims `email` before field validation, matching normalize_email()."""

    @pre_load
    def strip_email(self, data, **kwargs):
        if isinstance(data, dict) and isinstance(data.get("email"), str):
            data = {**data, "email": data["email"].strip()}
        return data


class RegisterSchema(_EmailSchema):
    """
    POST /auth/register

    Field rules:
      email        : valid email format, max 255
      password     : min 8 chars, at least one letter and one digit
      display_name : 1–100 chars
      role         : APPRENTICE (default), GUIDE or INSTRUCTOR
    """

    email = fields.Email(
        required=True,
        validate=validate.Length(max=255),
    )

    password = fields.Str(required=True, load_only=True)

    display_name = fields.Str(
        required=True,
        validate=validate.Length(
            min=1,
            max=100,
            error="Display name must be between 1 and 100 characters.",
        ),
    )

    role = fields.Str(
        load_default=UserRole.APPRENTICE.value,
        validate=validate.OneOf(SELF_SERVICE_ROLES),
    )

    @validates("password")
    def validate_password_strength(self, value: str, **kwargs) -> None:
        _check_password_strength(value)

    @validates("display_name")
    def validate_display_name(self, value: str, **kwargs) -> None:
        if not value.strip():
            raise ValidationError("Display name must not be blank.")


class LoginSchema(_EmailSchema):
    """
    POST /auth/login

    Credential correctness is checked in auth_service.py
    (INVALID_CREDENTIALS 401, ACCOUNT_LOCKED 429).
    """

    email = fields.Str(required=True)
    password = fields.Str(required=True, load_only=True)


class RefreshTokenSchema(Schema):
    """
    POST /auth/refresh and POST /auth/logout

    The token may also come from the refresh cookie, so it is optional here;
    the route decides what a missing token means.
    """

    refresh_token = fields.Str(load_default=None)


class PasswordResetRequestSchema(_EmailSchema):
    """POST /auth/password-reset"""

    email = fields.Email(required=True)


class PasswordResetCompleteSchema(Schema):
    """POST /auth/password-reset/complete"""

    token = fields.Str(required=True, validate=validate.Length(min=1))
    new_password = fields.Str(required=True, load_only=True)

    @validates("new_password")
    def validate_password_strength(self, value: str, **kwargs) -> None:
        _check_password_strength(value)


class ChangePasswordSchema(Schema):
    """
    POST /auth/password

    Whether current_password is right, and whether new_password differs from
    it, is checked in auth_service.change_password().
    """

    current_password = fields.Str(required=True, load_only=True)
    new_password = fields.Str(required=True, load_only=True)

    @validates("new_password")
    def validate_password_strength(self, value: str, **kwargs) -> None:
        _check_password_strength(value)
