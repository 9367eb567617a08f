"""FastAPI application factory with lifespan management."""

from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from accountkit import __version__
from accountkit.api.errors import install_error_handlers
from accountkit.api.routers import account as account_router
from accountkit.api.routers import auth as auth_router
from accountkit.core.config import get_settings
from accountkit.core.database import close_engine, get_engine
from accountkit.core.limiter import limiter
from accountkit.core.logging import configure_logging, get_logger
from accountkit.core.scheduler import deletion_sweep_loop

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the engine and start the optional deletion sweep task."""
    configure_logging()
    settings = get_settings()
    logger.info("Starting accountkit", debug=settings.app_debug)

    # Warm up DB connection pool
    get_engine()

    sweep_task: asyncio.Task | None = None
    if settings.deletion_sweep_enabled:
        sweep_task = asyncio.create_task(deletion_sweep_loop(), name="deletion-sweep")

    yield

    # Cleanup
    if sweep_task is not None:
        sweep_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweep_task
    await close_engine()
    logger.info("accountkit stopped")


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="accountkit",
        description="User accounts, login-method linking, lockout and scheduled deletion",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    install_error_handlers(app)

    api_prefix = "/api/v1"

    # auth/register, auth/login and the OAuth endpoints are public;
    # everything under /account requires a session
    app.include_router(auth_router.router, prefix=api_prefix)
    app.include_router(account_router.router, prefix=api_prefix)

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    return app


app = create_app()
