"""At-rest encryption of the provider tokens kept on Account rows.

Fernet keyed by SHA-256 of ``SECRET_KEY``. Rotating the secret makes stored
tokens unreadable; decrypt() then returns None so callers treat the token as
absent and the next OAuth sign-in stores a fresh one.
"""

from __future__ import annotations

import base64
import hashlib
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken

from accountkit.core.config import get_settings
from accountkit.core.logging import get_logger

logger = get_logger(__name__)


@lru_cache(maxsize=4)
def _fernet(secret: str) -> Fernet:
    return Fernet(base64.urlsafe_b64encode(hashlib.sha256(secret.encode()).digest()))


def encrypt(value: str | None) -> str | None:
    if value is None:
        return None
    return _fernet(get_settings().secret_key).encrypt(value.encode()).decode()


def decrypt(ciphertext: str | None) -> str | None:
    if ciphertext is None:
        return None
    try:
        return _fernet(get_settings().secret_key).decrypt(ciphertext.encode()).decode()
    except InvalidToken:
        logger.warning("Stored provider token could not be decrypted")
        return None
