"""
models/user.py — User table definition.

The credential store from the auth core's point of view: read by email or id,
written only when a password changes (or on registration).
No business logic. No imports from services or routes.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Enum, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from roadbook.app.extensions import db


class UserRole(str, enum.Enum):
    APPRENTICE = "APPRENTICE"
    GUIDE      = "GUIDE"
    INSTRUCTOR = "INSTRUCTOR"
    ADMIN      = "ADMIN"


class User(db.Model):
    __tablename__ = "users"

    __table_args__ = (
        CheckConstraint(
            "LENGTH(TRIM(display_name)) > 0",
            name="ck_users_display_name_nonempty",
        ),
        CheckConstraint(
            "email LIKE '%@%'",
            name="ck_users_email_format",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    # Always stored trimmed and lowercased; auth_service.normalize_email()
    # runs before every lookup and insert, so the UNIQUE constraint is
    # effectively case-insensitive.
    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
    )

    password_hash: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    # Stored as VARCHAR + CHECK rather than a native PostgreSQL enum so the
    # same model runs on SQLite in the test suite.
    role: Mapped[UserRole] = mapped_column(
        Enum(
            UserRole,
            name="user_role_enum",
            native_enum=False,
            create_constraint=True,
            length=20,
        ),
        nullable=False,
        default=UserRole.APPRENTICE,
        server_default=UserRole.APPRENTICE.value,
    )

    display_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    refresh_tokens: Mapped[list["RefreshToken"]] = relationship(  # noqa: F821
        "RefreshToken",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    password_resets: Mapped[list["PasswordResetRequest"]] = relationship(  # noqa: F821
        "PasswordResetRequest",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<User id={self.id} email={self.email!r} role={self.role.value}>"
