"""Account router — link / unlink methods, profile, password, deletion (authenticated)."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from accountkit.api.dependencies import get_auth_service, get_current_user, get_oauth_client
from accountkit.api.routers.auth import oauth_redirect_uri
from accountkit.core.auth import create_oauth_state
from accountkit.models.user import User
from accountkit.schemas.account import (
    DeletionScheduledOut,
    LinkCredentialsIn,
    PasswordResetIn,
    ProfileUpdate,
    UnlinkIn,
)
from accountkit.schemas.user import AuthorizationUrlOut, MessageOut, UserOut
from accountkit.services.oauth import OAuthClient
from accountkit.services.orchestrator import AuthService

router = APIRouter(prefix="/account", tags=["account"])

ServiceDep = Annotated[AuthService, Depends(get_auth_service)]
OAuthDep = Annotated[OAuthClient, Depends(get_oauth_client)]
CurrentUserDep = Annotated[User, Depends(get_current_user)]


@router.get("/link-oauth/{provider}/authorize", response_model=AuthorizationUrlOut)
async def link_oauth_authorize(
    provider: str, current_user: CurrentUserDep, oauth: OAuthDep
) -> AuthorizationUrlOut:
    """Start linking an OAuth provider; the callback finishes it."""
    state = create_oauth_state("link", user_id=current_user.id)
    return AuthorizationUrlOut(
        authorization_url=oauth.authorization_url(provider, oauth_redirect_uri(provider), state)
    )


@router.post("/link-credentials", response_model=UserOut)
async def link_credentials(
    payload: LinkCredentialsIn, current_user: CurrentUserDep, service: ServiceDep
) -> User:
    return await service.link_credentials(current_user.id, payload.email, payload.password)


@router.delete("/methods", response_model=UserOut)
async def unlink_method(
    payload: UnlinkIn, current_user: CurrentUserDep, service: ServiceDep
) -> User:
    return await service.unlink(current_user.id, payload.email, payload.provider)


@router.patch("/profile", response_model=UserOut)
async def update_profile(
    payload: ProfileUpdate, current_user: CurrentUserDep, service: ServiceDep
) -> User:
    return await service.update_profile(
        current_user.id,
        username=payload.username,
        email=payload.email,
        name=payload.name,
        current_password=payload.current_password,
    )


@router.post("/reset-password", response_model=MessageOut)
async def reset_password(
    payload: PasswordResetIn, current_user: CurrentUserDep, service: ServiceDep
) -> MessageOut:
    await service.reset_password(
        current_user.id,
        payload.current_password,
        payload.new_password,
        payload.confirm_password,
    )
    return MessageOut(message="Password reset successfully")


@router.delete("", response_model=DeletionScheduledOut)
async def schedule_deletion(current_user: CurrentUserDep, service: ServiceDep) -> DeletionScheduledOut:
    """Schedule the account for deletion after the grace period."""
    scheduled_at = await service.schedule_deletion(current_user.id)
    return DeletionScheduledOut(deletion_scheduled_at=scheduled_at)
