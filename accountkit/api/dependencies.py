"""FastAPI dependency providers."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from functools import lru_cache
from typing import Annotated

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from accountkit.core.auth import decode_access_token
from accountkit.core.database import get_session_factory
from accountkit.core.exceptions import NotFound, Unauthorized
from accountkit.models.user import User
from accountkit.services.oauth import OAuthClient
from accountkit.services.orchestrator import AuthService

bearer_scheme = HTTPBearer(auto_error=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a database session for the duration of a request."""
    factory = get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@lru_cache
def get_oauth_client() -> OAuthClient:
    """Return the process-wide OAuth client (providers read from settings)."""
    return OAuthClient()


def get_auth_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    oauth: Annotated[OAuthClient, Depends(get_oauth_client)],
) -> AuthService:
    return AuthService(db, oauth=oauth)


def get_current_user_id(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> int:
    """Decode the bearer JWT and return the user id it was issued for."""
    if credentials is None:
        raise Unauthorized("Not authenticated")
    payload = decode_access_token(credentials.credentials)
    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise Unauthorized("Invalid token")


async def get_current_user(
    user_id: Annotated[int, Depends(get_current_user_id)],
    service: Annotated[AuthService, Depends(get_auth_service)],
) -> User:
    """Resolve the session to a User row, re-read from the store."""
    try:
        return await service.get_user(user_id)
    except NotFound:
        raise Unauthorized("User not found")
