"""Credential verifier — password policy, hashing and the lockout state machine.

Lockout, per user:

    Unlocked ──(5th failure inside a rolling 15 min window)──▶ Locked(now + 30 min)
    Locked(until) ──(now >= until)──▶ Unlocked

* While locked, attempts are rejected up front and do not count.
* A failure more than 15 minutes after the previous one restarts the count at 1.
* Any successful verification resets every lockout field.

The functions only mutate the in-memory User; persisting is the caller's job.
"""

from __future__ import annotations

import math
import re
from datetime import datetime, timedelta

from accountkit.core.auth import hash_password, verify_password
from accountkit.core.clock import as_utc
from accountkit.core.config import Settings, get_settings
from accountkit.core.exceptions import AccountError, AccountLocked, InvalidCredentials, ValidationError
from accountkit.models import User

PASSWORD_SPECIALS = "!@#$%^&*"

_PASSWORD_RE = re.compile(
    r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[!@#$%^&*])[A-Za-z\d!@#$%^&*]{8,}$"
)
_PASSWORD_RULES = (
    "Password must be at least 8 characters with an uppercase, lowercase, "
    f"number, and special character ({PASSWORD_SPECIALS})"
)


def is_strong_password(password: str) -> bool:
    return bool(_PASSWORD_RE.match(password))


def check_password_strength(password: str, field: str = "password") -> None:
    if not is_strong_password(password):
        raise ValidationError(_PASSWORD_RULES, field=field)


class CredentialVerifier:
    """Hashes and checks passwords and keeps the per-user lockout counters."""

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        self.rounds = settings.bcrypt_rounds
        self.reset_rounds = settings.bcrypt_reset_rounds
        self.max_attempts = settings.max_failed_logins
        self.window = timedelta(minutes=settings.failed_login_window_minutes)
        self.lockout = timedelta(minutes=settings.lockout_minutes)

    # ── Hashing ───────────────────────────────────────────────────────────────

    def hash(self, plain: str) -> str:
        return hash_password(plain, self.rounds)

    def hash_for_reset(self, plain: str) -> str:
        return hash_password(plain, self.reset_rounds)

    def verify(self, plain: str, hashed: str | None) -> bool:
        if not hashed:
            return False
        return verify_password(plain, hashed)

    # ── Lockout ───────────────────────────────────────────────────────────────

    def minutes_locked(self, user: User, now: datetime) -> int | None:
        """Minutes left on an active lock (rounded up), or None when unlocked."""
        until = as_utc(user.lockout_until)
        if until is None or now >= until:
            return None
        return max(1, math.ceil((until - now).total_seconds() / 60))

    def ensure_not_locked(self, user: User, now: datetime) -> None:
        minutes = self.minutes_locked(user, now)
        if minutes is not None:
            raise AccountLocked(minutes)

    def record_failure(self, user: User, now: datetime) -> AccountError:
        """Count a failed verification and return the error to report."""
        last = as_utc(user.last_failed_login)
        if last is not None and last > now - self.window:
            user.failed_login_attempts = (user.failed_login_attempts or 0) + 1
        else:
            user.failed_login_attempts = 1
        user.last_failed_login = now

        if user.failed_login_attempts >= self.max_attempts:
            user.lockout_until = now + self.lockout
            minutes = int(self.lockout.total_seconds() // 60)
            return AccountLocked(
                minutes,
                message=(
                    "Account locked due to too many failed attempts. "
                    f"Try again in {minutes} minutes"
                ),
            )
        user.lockout_until = None
        return InvalidCredentials()

    def record_success(self, user: User, now: datetime) -> None:
        user.failed_login_attempts = 0
        user.last_failed_login = None
        user.lockout_until = None
        user.last_login_at = now
