"""Auth router — register, credentials login, OAuth sign-in, current user."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request, status

from accountkit.api.dependencies import get_auth_service, get_current_user, get_oauth_client
from accountkit.core.auth import create_access_token, create_oauth_state, decode_oauth_state
from accountkit.core.config import get_settings
from accountkit.core.exceptions import ValidationError
from accountkit.core.limiter import limiter
from accountkit.models.user import CREDENTIALS, User
from accountkit.schemas.user import AuthorizationUrlOut, LoginIn, RegisterIn, TokenOut, UserOut
from accountkit.services.oauth import OAuthClient
from accountkit.services.orchestrator import AuthService

router = APIRouter(prefix="/auth", tags=["auth"])

ServiceDep = Annotated[AuthService, Depends(get_auth_service)]
OAuthDep = Annotated[OAuthClient, Depends(get_oauth_client)]
CurrentUserDep = Annotated[User, Depends(get_current_user)]


def oauth_redirect_uri(provider: str) -> str:
    base = get_settings().public_base_url.rstrip("/")
    return f"{base}/api/v1/auth/oauth/{provider}/callback"


def _login_limit() -> str:
    return get_settings().login_rate_limit


@router.post("/register", response_model=UserOut, status_code=status.HTTP_201_CREATED)
async def register(payload: RegisterIn, service: ServiceDep) -> User:
    return await service.register(
        email=payload.email,
        password=payload.password,
        username=payload.username,
        name=payload.name,
    )


@router.post("/login", response_model=TokenOut)
@limiter.limit(_login_limit)
async def login(request: Request, payload: LoginIn, service: ServiceDep) -> TokenOut:
    """Authenticate with email + password. Returns a JWT."""
    user = await service.sign_in(payload.email, payload.password, payload.confirm_restore)
    token = create_access_token(user.id, CREDENTIALS)
    return TokenOut(access_token=token, user=UserOut.model_validate(user))


@router.get("/me", response_model=UserOut)
async def get_me(current_user: CurrentUserDep) -> User:
    """Return the authenticated user's profile and linked methods."""
    return current_user


@router.get("/oauth/{provider}/authorize", response_model=AuthorizationUrlOut)
async def oauth_authorize(
    provider: str, oauth: OAuthDep, confirm_restore: bool = False
) -> AuthorizationUrlOut:
    """Return the provider URL the browser should be sent to for sign-in."""
    state = create_oauth_state("login", confirm_restore=confirm_restore)
    return AuthorizationUrlOut(
        authorization_url=oauth.authorization_url(provider, oauth_redirect_uri(provider), state)
    )


@router.get("/oauth/{provider}/callback", response_model=TokenOut | UserOut)
async def oauth_callback(
    provider: str, code: str, state: str, service: ServiceDep
) -> TokenOut | UserOut:
    """Finish a sign-in (returns a JWT) or a link (returns the updated user)."""
    claims = decode_oauth_state(state)
    redirect_uri = oauth_redirect_uri(provider)

    if claims["mode"] == "link":
        if "sub" not in claims:
            raise ValidationError("Invalid OAuth state", field="state")
        user = await service.link_oauth(int(claims["sub"]), provider, code, redirect_uri)
        return UserOut.model_validate(user)

    user = await service.sign_in_oauth(
        provider, code, redirect_uri, confirm_restore=bool(claims.get("restore"))
    )
    token = create_access_token(user.id, provider)
    return TokenOut(access_token=token, user=UserOut.model_validate(user))
