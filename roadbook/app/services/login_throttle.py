"""
services/login_throttle.py — Failed-login counter with time-windowed lockout.

State machine per identifier (normalised email):

    Clear ──fail──▶ Counting (1..max-1) ──fail──▶ Locked (count >= max)
      ▲                                             │
      └──────── lockout window elapsed ◀────────────┘

  - check_locked()   raises ACCOUNT_LOCKED while Locked; drops the counter once
                     the window since the last failure has elapsed.
  - acquire()        check_locked() and record_failure() under one lock. Login
                     counts the attempt before verifying the password and
                     clears it on success, so concurrent guesses cannot slip
                     between the check and the count.
  - record_failure() increments and stamps the counter. A warning is logged
                     when the count reaches max - 1, one step before lockout.
  - record_success() drops the counter.

The table lives in process memory and is cleared on restart. Every read and
write happens under one lock, so parallel failures for the same identifier
are never undercounted.

Layer rules:
  - No Flask request/response objects. Limits come from init_app(app) or the
    constructor; the clock is injectable for tests.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable

from roadbook.app.errors import AppError, ErrorCode

logger = logging.getLogger(__name__)


@dataclass
class LoginAttemptCounter:
    count: int
    last_attempt_at: float


class LoginThrottle:

    def __init__(
            self,
            max_attempts: int = 5,
            lockout: timedelta = timedelta(minutes=15),
            clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_attempts = max_attempts
        self.lockout_seconds = lockout.total_seconds()
        self._clock = clock
        self._attempts: dict[str, LoginAttemptCounter] = {}
        self._lock = threading.Lock()

    def init_app(self, app) -> None:
        """Reads LOGIN_MAX_ATTEMPTS / LOGIN_LOCKOUT from the app config."""
        self.max_attempts = app.config.get("LOGIN_MAX_ATTEMPTS", self.max_attempts)
        lockout = app.config.get("LOGIN_LOCKOUT")
        if lockout is not None:
            self.lockout_seconds = lockout.total_seconds()
        app.extensions["login_throttle"] = self

    def _remaining_minutes(self, identifier: str, now: float) -> int | None:
        """
        Minutes left on the lock, or None when the identifier may try again.

        Caller holds self._lock. A counter whose window has elapsed is dropped.
        """
        counter = self._attempts.get(identifier)
        if counter is None:
            return None

        elapsed = now - counter.last_attempt_at
        if elapsed >= self.lockout_seconds:
            del self._attempts[identifier]
            return None

        if counter.count < self.max_attempts:
            return None

        return max(1, math.ceil((self.lockout_seconds - elapsed) / 60))

    def _locked_error(self, remaining_minutes: int) -> AppError:
        return AppError(
            ErrorCode.ACCOUNT_LOCKED,
            "Too many failed login attempts. "
            f"Try again in {remaining_minutes} minute(s).",
            429,
            details={"remaining_minutes": remaining_minutes},
        )

    def check_locked(self, identifier: str) -> None:
        """
        Raises AppError(ACCOUNT_LOCKED, 429) while the identifier is locked.

        details.remaining_minutes is the time left, rounded up to a whole minute.
        """
        with self._lock:
            remaining_minutes = self._remaining_minutes(identifier, self._clock())

        if remaining_minutes is not None:
            raise self._locked_error(remaining_minutes)

    def acquire(self, identifier: str) -> int:
        """
        Checks the lock and counts one attempt in a single critical section.

        The attempt is counted before the password is checked, so parallel
        requests can never get more than max_attempts guesses through. A
        successful login hands the slot back with record_success().

        Raises AppError(ACCOUNT_LOCKED, 429) like check_locked().
        Returns the attempt count including this one.
        """
        with self._lock:
            now = self._clock()
            remaining_minutes = self._remaining_minutes(identifier, now)
            if remaining_minutes is None:
                count = self._count(identifier, now)

        if remaining_minutes is not None:
            raise self._locked_error(remaining_minutes)

        self._warn_if_last_attempt(identifier, count)
        return count

    def record_failure(self, identifier: str) -> int:
        """Counts one failed attempt and returns the new count."""
        with self._lock:
            count = self._count(identifier, self._clock())

        self._warn_if_last_attempt(identifier, count)
        return count

    def _count(self, identifier: str, now: float) -> int:
        # Caller holds self._lock.
        counter = self._attempts.get(identifier)
        if counter is None:
            counter = LoginAttemptCounter(count=0, last_attempt_at=now)
            self._attempts[identifier] = counter
        counter.count += 1
        counter.last_attempt_at = now
        return counter.count

    def _warn_if_last_attempt(self, identifier: str, count: int) -> None:
        if count == self.max_attempts - 1:
            logger.warning(
                "Login attempts for %s at %d of %d; next failure locks the account",
                identifier,
                count,
                self.max_attempts,
            )

    def record_success(self, identifier: str) -> None:
        with self._lock:
            self._attempts.pop(identifier, None)

    def attempts(self, identifier: str) -> int:
        with self._lock:
            counter = self._attempts.get(identifier)
            return counter.count if counter is not None else 0

    def reset(self) -> None:
        """Drops every counter."""
        with self._lock:
            self._attempts.clear()
