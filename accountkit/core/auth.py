"""Authentication helpers: password hashing and JWT management.

Session flow:
    1. POST /api/v1/auth/login (or an OAuth callback) → use case succeeds → issue JWT
    2. Every protected endpoint validates Authorization: Bearer <jwt>

The OAuth ``state`` parameter is a second, short-lived JWT with its own
audience so a state value can never be replayed as a session token.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import bcrypt
import jwt

from accountkit.core.config import get_settings
from accountkit.core.exceptions import Unauthorized, ValidationError

_ISSUER = "accountkit"
_STATE_AUDIENCE = "accountkit:oauth-state"


# ── Password helpers ─────────────────────────────────────────────────────────

def hash_password(plain: str, rounds: int | None = None) -> str:
    if rounds is None:
        rounds = get_settings().bcrypt_rounds
    return bcrypt.hashpw(plain.encode(), bcrypt.gensalt(rounds=rounds)).decode()


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(plain.encode(), hashed.encode())
    except ValueError:
        # Malformed stored hash
        return False


# ── JWT helpers ───────────────────────────────────────────────────────────────

def create_access_token(user_id: int, provider: str = "credentials") -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=settings.jwt_access_token_expire_minutes)
    payload = {
        "sub": str(user_id),
        "provider": provider,   # login method used for this session
        "iat": now,
        "exp": expire,
        "iss": _ISSUER,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict:
    settings = get_settings()
    try:
        return jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub", "exp", "iss"]},
            issuer=_ISSUER,
        )
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Token expired")
    except jwt.InvalidTokenError:
        raise Unauthorized("Invalid token")


def create_oauth_state(
    mode: str, user_id: int | None = None, confirm_restore: bool = False
) -> str:
    """Sign the OAuth ``state`` for a login or link round-trip."""
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "mode": mode,
        "restore": confirm_restore,
        "iat": now,
        "exp": now + timedelta(minutes=settings.oauth_state_expire_minutes),
        "iss": _ISSUER,
        "aud": _STATE_AUDIENCE,
    }
    if user_id is not None:
        payload["sub"] = str(user_id)
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_oauth_state(state: str) -> dict:
    settings = get_settings()
    try:
        return jwt.decode(
            state,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["mode", "exp", "iss", "aud"]},
            issuer=_ISSUER,
            audience=_STATE_AUDIENCE,
        )
    except jwt.InvalidTokenError:
        raise ValidationError("Invalid or expired OAuth state", field="state")
