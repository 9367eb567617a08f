"""OAuth provider client — authorization URLs, code exchange and user info.

A provider is enabled only when both its client ID and secret are configured.
exchange() is a single fallible call: either it returns a verified
OAuthIdentity or it raises UpstreamProviderError, with no side effects on the
account store either way. Every HTTP call is bounded by ``oauth_timeout``.

Security notes:
  Only verified email addresses are accepted. Google reports
  ``email_verified``; for GitHub the primary *verified* address from
  /user/emails is used when the profile has no public email.

Supported providers:
  google -- https://oauth2.googleapis.com, offline access + consent prompt
  github -- https://github.com/login/oauth, scope "read:user user:email"
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from urllib.parse import urlencode

import httpx

from accountkit.core.config import Settings, get_settings
from accountkit.core.exceptions import UpstreamProviderError, ValidationError
from accountkit.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProviderConfig:
    name: str
    client_id: str
    client_secret: str
    authorize_url: str
    token_url: str
    userinfo_url: str
    scope: str
    extra_params: dict[str, str] = field(default_factory=dict)


@dataclass
class OAuthIdentity:
    """What a provider vouches for after a successful exchange."""

    provider: str
    provider_account_id: str
    email: str
    name: str | None = None
    image: str | None = None
    access_token: str | None = None
    refresh_token: str | None = None
    expires_at: int | None = None  # epoch seconds


def _configured_providers(settings: Settings) -> dict[str, ProviderConfig]:
    providers: dict[str, ProviderConfig] = {}
    if settings.google_client_id and settings.google_client_secret:
        providers["google"] = ProviderConfig(
            name="google",
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
            token_url="https://oauth2.googleapis.com/token",  # noqa: S106 -- URL, not a password
            userinfo_url="https://www.googleapis.com/oauth2/v3/userinfo",
            scope="openid email profile",
            extra_params={"prompt": "consent", "access_type": "offline"},
        )
    if settings.github_client_id and settings.github_client_secret:
        providers["github"] = ProviderConfig(
            name="github",
            client_id=settings.github_client_id,
            client_secret=settings.github_client_secret,
            authorize_url="https://github.com/login/oauth/authorize",
            token_url="https://github.com/login/oauth/access_token",  # noqa: S106 -- URL, not a password
            userinfo_url="https://api.github.com/user",
            scope="read:user user:email",
        )
    return providers


class OAuthClient:
    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.providers = _configured_providers(self.settings)
        self._transport = transport

    def get_provider(self, provider: str) -> ProviderConfig:
        config = self.providers.get(provider)
        if config is None:
            raise ValidationError(f"Unsupported provider: {provider}", field="provider")
        return config

    def authorization_url(self, provider: str, redirect_uri: str, state: str) -> str:
        config = self.get_provider(provider)
        params = {
            "client_id": config.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": config.scope,
            "state": state,
            **config.extra_params,
        }
        return f"{config.authorize_url}?{urlencode(params)}"

    async def exchange(self, provider: str, code: str, redirect_uri: str) -> OAuthIdentity:
        """Trade an authorization code for tokens, then fetch the provider identity."""
        config = self.get_provider(provider)
        if not code:
            raise ValidationError("Missing authorization code", field="code")

        try:
            async with httpx.AsyncClient(
                timeout=self.settings.oauth_timeout, transport=self._transport
            ) as client:
                tokens = await self._fetch_tokens(client, config, code, redirect_uri)
                if provider == "github":
                    identity = await self._github_identity(client, config, tokens["access_token"])
                else:
                    identity = await self._google_identity(client, config, tokens["access_token"])
        except httpx.TimeoutException as exc:
            logger.warning("OAuth provider timed out", provider=provider)
            raise UpstreamProviderError(f"{provider} did not respond in time") from exc
        except httpx.HTTPError as exc:
            logger.warning("OAuth provider request failed", provider=provider, error=str(exc))
            raise UpstreamProviderError(f"{provider} sign-in failed") from exc
        except ValueError as exc:
            logger.warning("OAuth provider sent malformed JSON", provider=provider)
            raise UpstreamProviderError(f"{provider} sent an unreadable response") from exc

        identity.access_token = tokens["access_token"]
        identity.refresh_token = tokens.get("refresh_token")
        expires_in = tokens.get("expires_in")
        identity.expires_at = int(time.time()) + int(expires_in) if expires_in else None
        return identity

    # ── Provider calls ─────────────────────────────────────────────────────────

    async def _fetch_tokens(
        self,
        client: httpx.AsyncClient,
        config: ProviderConfig,
        code: str,
        redirect_uri: str,
    ) -> dict:
        resp = await client.post(
            config.token_url,
            data={
                "code": code,
                "client_id": config.client_id,
                "client_secret": config.client_secret,
                "redirect_uri": redirect_uri,
                "grant_type": "authorization_code",
            },
            headers={"Accept": "application/json"},
        )
        resp.raise_for_status()
        data = resp.json()
        # GitHub answers 200 with an "error" field on a bad code
        if not data.get("access_token"):
            logger.warning(
                "OAuth token exchange rejected",
                provider=config.name,
                error=data.get("error"),
            )
            raise UpstreamProviderError(f"Failed to obtain tokens from {config.name}")
        return data

    async def _google_identity(
        self, client: httpx.AsyncClient, config: ProviderConfig, access_token: str
    ) -> OAuthIdentity:
        resp = await client.get(
            config.userinfo_url,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        resp.raise_for_status()
        info = resp.json()
        if info.get("email_verified") is False:
            raise UpstreamProviderError("google email address is not verified")
        return self._identity(config.name, info.get("sub"), info.get("email"), info.get("name"),
                              info.get("picture"))

    async def _github_identity(
        self, client: httpx.AsyncClient, config: ProviderConfig, access_token: str
    ) -> OAuthIdentity:
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/vnd.github+json",
        }
        resp = await client.get(config.userinfo_url, headers=headers)
        resp.raise_for_status()
        info = resp.json()

        email = info.get("email")
        if not email:
            emails_resp = await client.get(f"{config.userinfo_url}/emails", headers=headers)
            emails_resp.raise_for_status()
            email = next(
                (e.get("email") for e in emails_resp.json()
                 if e.get("primary") and e.get("verified")),
                None,
            )
        account_id = str(info["id"]) if info.get("id") is not None else None
        return self._identity(config.name, account_id, email,
                              info.get("name") or info.get("login"), info.get("avatar_url"))

    @staticmethod
    def _identity(
        provider: str,
        account_id: str | None,
        email: str | None,
        name: str | None,
        image: str | None,
    ) -> OAuthIdentity:
        if not account_id or not email:
            raise UpstreamProviderError(
                f"Failed to retrieve email or account id from {provider}"
            )
        return OAuthIdentity(
            provider=provider,
            provider_account_id=str(account_id),
            email=email,
            name=name,
            image=image,
        )
