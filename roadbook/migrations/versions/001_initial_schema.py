"""Initial schema — users, refresh tokens, password reset requests.

Revision: 001_initial_schema
Created:  2026-10-18

Creates the tables the auth core depends on.

Append-only:
  This file must NEVER be edited after it has been applied to any database.
  If a schema change is required, create a NEW migration file.

Creation order:
  1. users
  2. refresh_tokens, password_resets (both FK → users ON DELETE CASCADE)
  3. Indexes

Roles are stored as VARCHAR + CHECK (not a PostgreSQL enum type) so the same
definition works on SQLite for the test suite.
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# ── Alembic revision identifiers ──────────────────────────────────────────
revision: str = "001_initial_schema"
down_revision: str | None = None      # first migration — no parent
branch_labels: tuple | None = None
depends_on: tuple | None = None


def upgrade() -> None:

    # ── Step 1: users ──────────────────────────────────────────────────────
    # email is stored lowercased and trimmed by the service layer, so the
    # plain UNIQUE constraint behaves case-insensitively.

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column(
            "role",
            sa.String(20),
            nullable=False,
            server_default="APPRENTICE",
        ),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.CheckConstraint(
            "email LIKE '%@%'",
            name="ck_users_email_format",
        ),
        sa.CheckConstraint(
            "LENGTH(TRIM(display_name)) > 0",
            name="ck_users_display_name_nonempty",
        ),
        sa.CheckConstraint(
            "role IN ('APPRENTICE', 'GUIDE', 'INSTRUCTOR', 'ADMIN')",
            name="user_role_enum",
        ),
    )

    # ── Step 2: refresh_tokens ─────────────────────────────────────────────
    # Rows are revoked, never deleted, by the application.

    op.create_table(
        "refresh_tokens",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_refresh_tokens_user"),
            nullable=False,
        ),
        sa.Column("token", sa.String(1024), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "revoked",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("FALSE"),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_refresh_tokens"),
        sa.UniqueConstraint("token", name="uq_refresh_tokens_token"),
    )

    # ── Step 3: password_resets ────────────────────────────────────────────
    # token holds the bcrypt hash of the reset secret, never the secret.

    op.create_table(
        "password_resets",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_password_resets_user"),
            nullable=False,
        ),
        sa.Column("token", sa.String(255), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "revoked",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("FALSE"),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_password_resets"),
    )

    # ── Step 4: Indexes ────────────────────────────────────────────────────

    # Revocation by user ("revoke where user_id = X").
    op.create_index(
        "ix_refresh_tokens_user_id",
        "refresh_tokens",
        ["user_id"],
    )
    op.create_index(
        "ix_password_resets_user_id",
        "password_resets",
        ["user_id"],
    )
    # Reset completion scans every live row; keep that scan narrow.
    op.create_index(
        "idx_password_resets_live",
        "password_resets",
        ["expires_at"],
        postgresql_where=sa.text("revoked = FALSE"),
    )


def downgrade() -> None:
    """
    Drop all objects created in upgrade(), in reverse dependency order.

    Provided for local development reset; production prefers corrective
    migrations over rollbacks.
    """
    op.drop_index("idx_password_resets_live",   table_name="password_resets")
    op.drop_index("ix_password_resets_user_id", table_name="password_resets")
    op.drop_index("ix_refresh_tokens_user_id",  table_name="refresh_tokens")

    op.drop_table("password_resets")
    op.drop_table("refresh_tokens")
    op.drop_table("users")
