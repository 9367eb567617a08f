"""pytest fixtures shared across all tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from accountkit.core.config import Settings
from accountkit.core.exceptions import UpstreamProviderError
from accountkit.models.base import Base
from accountkit.services.oauth import OAuthClient, OAuthIdentity
from accountkit.services.orchestrator import AuthService

# SQLite in memory, no PostgreSQL required.
# Each test function gets its own fresh DB to avoid cross-test pollution.
TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


class FakeClock:
    """Settable clock handed to AuthService in place of utcnow()."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeOAuthClient(OAuthClient):
    """OAuth client whose code exchange returns pre-registered identities."""

    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        self.identities: dict[str, OAuthIdentity] = {}
        self.exchanged: list[str] = []

    def add(self, code: str, **fields) -> OAuthIdentity:
        identity = OAuthIdentity(access_token=f"token-{code}", **fields)
        self.identities[code] = identity
        return identity

    async def exchange(self, provider: str, code: str, redirect_uri: str) -> OAuthIdentity:
        self.get_provider(provider)
        self.exchanged.append(code)
        identity = self.identities.get(code)
        if identity is None or identity.provider != provider:
            raise UpstreamProviderError(f"Failed to obtain tokens from {provider}")
        return identity


@pytest.fixture
def settings() -> Settings:
    return Settings(
        app_debug=True,
        google_client_id="google-client",
        google_client_secret="google-secret",
        github_client_id="github-client",
        github_client_secret="github-secret",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def oauth(settings) -> FakeOAuthClient:
    return FakeOAuthClient(settings)


@pytest_asyncio.fixture
async def engine():
    """Create a fresh in-memory SQLite engine per test function."""
    eng = create_async_engine(
        TEST_DB_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def db_session(engine):
    """Yield an async session bound to the test engine."""
    factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=True)
    async with factory() as session:
        yield session


@pytest.fixture
def service(db_session, settings, oauth, clock) -> AuthService:
    return AuthService(db_session, settings=settings, oauth=oauth, clock=clock)


@pytest_asyncio.fixture
async def client(engine, oauth):
    """HTTPX async test client wired to the FastAPI app with a test DB."""
    from accountkit.api.app import create_app
    from accountkit.api.dependencies import get_db, get_oauth_client
    from accountkit.core.limiter import limiter

    app = create_app()
    factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=True)

    async def override_db():
        async with factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_oauth_client] = lambda: oauth
    limiter.reset()

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac
