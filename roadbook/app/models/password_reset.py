"""
models/password_reset.py — PasswordResetRequest table definition.

`token` holds the bcrypt hash of the reset secret. The raw secret is returned
to the caller once and is never stored, so rows cannot be looked up by it.
No business logic. No imports from services or routes.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from roadbook.app.extensions import db


class PasswordResetRequest(db.Model):
    __tablename__ = "password_resets"

    id: Mapped[int] = mapped_column(primary_key=True)

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    token: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    revoked: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default="false",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    user: Mapped["User"] = relationship(  # noqa: F821
        "User",
        back_populates="password_resets",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<PasswordResetRequest id={self.id} "
            f"user_id={self.user_id} "
            f"revoked={self.revoked}>"
        )
