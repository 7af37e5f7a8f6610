"""
services/password_hasher.py — bcrypt wrapper.

Used for account passwords and for password-reset secrets alike. Cost factor
comes from current_app.config["BCRYPT_LOG_ROUNDS"] (default 12) unless the
caller passes `rounds`. Raw values are never stored and never logged.
"""

from __future__ import annotations

import bcrypt
from flask import current_app


def hash_password(plaintext: str, rounds: int | None = None) -> str:
    if rounds is None:
        rounds = current_app.config.get("BCRYPT_LOG_ROUNDS", 12)
    return bcrypt.hashpw(
        plaintext.encode("utf-8"),
        bcrypt.gensalt(rounds=rounds),
    ).decode("utf-8")


def verify_password(plaintext: str, hashed: str) -> bool:
    """Constant-time check of `plaintext` against a bcrypt hash."""
    try:
        return bcrypt.checkpw(plaintext.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash (bcrypt raises "Invalid salt").
        return False
