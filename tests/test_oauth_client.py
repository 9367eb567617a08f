"""Tests for the OAuth provider client using a mocked HTTP transport."""

from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from accountkit.core.exceptions import UpstreamProviderError, ValidationError
from accountkit.services.oauth import OAuthClient


def make_client(settings, handler) -> OAuthClient:
    return OAuthClient(settings, transport=httpx.MockTransport(handler))


def google_handler(userinfo: dict, token_status: int = 200):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "oauth2.googleapis.com":
            if token_status != 200:
                return httpx.Response(token_status, json={"error": "invalid_grant"})
            return httpx.Response(
                200,
                json={"access_token": "at", "refresh_token": "rt", "expires_in": 3600},
            )
        assert request.headers["Authorization"] == "Bearer at"
        return httpx.Response(200, json=userinfo)

    return handler


def test_only_configured_providers_are_enabled(settings):
    assert set(OAuthClient(settings).providers) == {"google", "github"}
    settings.github_client_secret = None
    assert set(OAuthClient(settings).providers) == {"google"}


def test_authorization_url(settings):
    client = OAuthClient(settings)
    url = client.authorization_url("google", "http://test/cb", "signed-state")
    parsed = urlparse(url)
    query = parse_qs(parsed.query)
    assert parsed.netloc == "accounts.google.com"
    assert query["client_id"] == ["google-client"]
    assert query["state"] == ["signed-state"]
    assert query["redirect_uri"] == ["http://test/cb"]
    assert query["access_type"] == ["offline"]


def test_unsupported_provider(settings):
    with pytest.raises(ValidationError):
        OAuthClient(settings).get_provider("myspace")


@pytest.mark.asyncio
async def test_google_exchange(settings):
    client = make_client(settings, google_handler({
        "sub": "1234", "email": "alice@gmail.example", "email_verified": True,
        "name": "Alice", "picture": "https://img.example/a.png",
    }))
    identity = await client.exchange("google", "code", "http://test/cb")

    assert identity.provider == "google"
    assert identity.provider_account_id == "1234"
    assert identity.email == "alice@gmail.example"
    assert identity.image == "https://img.example/a.png"
    assert identity.access_token == "at"
    assert identity.refresh_token == "rt"
    assert identity.expires_at is not None


@pytest.mark.asyncio
async def test_google_unverified_email_rejected(settings):
    client = make_client(settings, google_handler({
        "sub": "1234", "email": "alice@gmail.example", "email_verified": False,
    }))
    with pytest.raises(UpstreamProviderError, match="not verified"):
        await client.exchange("google", "code", "http://test/cb")


@pytest.mark.asyncio
async def test_token_endpoint_failure(settings):
    client = make_client(settings, google_handler({}, token_status=400))
    with pytest.raises(UpstreamProviderError):
        await client.exchange("google", "bad-code", "http://test/cb")


@pytest.mark.asyncio
async def test_provider_timeout(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    client = make_client(settings, handler)
    with pytest.raises(UpstreamProviderError, match="did not respond in time"):
        await client.exchange("google", "code", "http://test/cb")


@pytest.mark.asyncio
async def test_missing_code(settings):
    client = make_client(settings, google_handler({}))
    with pytest.raises(ValidationError):
        await client.exchange("google", "", "http://test/cb")


@pytest.mark.asyncio
async def test_github_falls_back_to_primary_verified_email(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "github.com":
            return httpx.Response(200, json={"access_token": "gh"})
        if request.url.path == "/user":
            return httpx.Response(200, json={"id": 42, "login": "octo", "email": None})
        if request.url.path == "/user/emails":
            return httpx.Response(200, json=[
                {"email": "old@example.com", "primary": False, "verified": True},
                {"email": "octo@example.com", "primary": True, "verified": True},
            ])
        return httpx.Response(404)

    identity = await make_client(settings, handler).exchange("github", "code", "http://test/cb")
    assert identity.provider_account_id == "42"
    assert identity.email == "octo@example.com"
    assert identity.name == "octo"
    assert identity.refresh_token is None
    assert identity.expires_at is None


@pytest.mark.asyncio
async def test_github_bad_code_reported_in_body(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"error": "bad_verification_code"})

    with pytest.raises(UpstreamProviderError):
        await make_client(settings, handler).exchange("github", "code", "http://test/cb")


@pytest.mark.asyncio
async def test_github_without_verified_email(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "github.com":
            return httpx.Response(200, json={"access_token": "gh"})
        if request.url.path == "/user":
            return httpx.Response(200, json={"id": 42, "login": "octo"})
        return httpx.Response(200, json=[{"email": "octo@example.com", "primary": True, "verified": False}])

    with pytest.raises(UpstreamProviderError, match="email"):
        await make_client(settings, handler).exchange("github", "code", "http://test/cb")
