"""
api/main.py -- FastAPI application factory for the Secrets app.

create_app() builds the app object, its middleware stack, lifespan and the
health endpoint. It knows nothing about web/; asgi.py mounts the web router
on top.

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects unexpected Host headers
  2. log_requests        -- request logging with latency
  3. restore_principal   -- loads the session's user into request.state.user
                            (skipped for /health and /static/)
  4. SessionMiddleware   -- signed cookie authlib uses for the OAuth state value
  5. SlowAPIMiddleware   -- exposes the limiter; credential routes carry
                            @limiter.limit() from core.limiter

Lifespan builds the AppContext (unless one was injected), starts the expired-
session purge task, and tears both down symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool
from starlette.middleware.sessions import SessionMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware

from api.context import AppContext
from api.models import HealthResponse
from core import limiter as rate_limits
from core.config import Settings, get_settings

__version__ = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("secrets_app.api")

_PURGE_INTERVAL_SECONDS = 60 * 60


def _skips_principal(path: str) -> bool:
    """True for paths served without a principal; restore_principal skips the DB lookup."""
    return path == "/health" or path.startswith("/static/")


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Delete expired session rows once an hour.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine.
    """
    while True:
        await asyncio.sleep(_PURGE_INTERVAL_SECONDS)
        ctx: AppContext = app.state.ctx
        try:
            removed = await run_in_threadpool(ctx.sessions.store.purge_expired)
        except SQLAlchemyError:
            logger.exception("Session purge failed")
            continue
        if removed:
            logger.info("Purged %d expired sessions", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build (or adopt) the AppContext and run the purge task for the server lifetime.

    An injected context (tests) is left open on shutdown; its owner closes it.
    """
    logger.info("Secrets app starting up")
    owns_context = app.state.ctx is None
    if owns_context:
        app.state.ctx = AppContext.from_settings(app.state.settings)
    ctx: AppContext = app.state.ctx
    logger.info(
        "Auth initialized (oauth providers: %s)",
        ", ".join(p["name"] for p in ctx.oauth.enabled_providers()) or "none",
    )
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    if owns_context:
        ctx.close()
        app.state.ctx = None
    logger.info("Secrets app shutdown complete")


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------


def create_app(settings: Settings | None = None, context: AppContext | None = None) -> FastAPI:
    """Build the FastAPI app.

    Args:
        settings: Configuration. Defaults to context.settings, then get_settings().
        context:  A prebuilt AppContext. When None, lifespan builds one from settings.
    """
    if settings is None:
        settings = context.settings if context is not None else get_settings()

    app = FastAPI(
        title="Secrets",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.settings = settings
    app.state.ctx = context

    # Registered innermost first; the last add_middleware() call wraps the rest.
    rate_limits.configure(settings.rate_limit_enabled, settings.login_rate_limit)
    # SlowAPI looks for app.state.limiter by convention.
    app.state.limiter = rate_limits.limiter
    app.add_middleware(SlowAPIMiddleware)

    # authlib keeps the OAuth state value here between the authorization
    # redirect and the callback. Principals live in the server-side session
    # store, not in this cookie.
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.secret_key,
        session_cookie="oauth_state",
        max_age=10 * 60,
        same_site="lax",
        https_only=settings.secure_cookies,
    )

    @app.middleware("http")
    async def restore_principal(request: Request, call_next):
        """Attach the session's user (or None) to request.state.user.

        The lookup runs in the thread pool so blocking DB I/O never stalls the
        event loop. A database failure here degrades the request to anonymous;
        the route's own queries surface the outage to the user.
        """
        if _skips_principal(request.url.path):
            request.state.user = None
            return await call_next(request)
        ctx: AppContext = request.app.state.ctx
        try:
            request.state.user = await run_in_threadpool(ctx.sessions.restore, request)
        except SQLAlchemyError:
            logger.exception("Session lookup failed on %s %s", request.method, request.url.path)
            request.state.user = None
        return await call_next(request)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        ms = (time.perf_counter() - start) * 1000
        logger.info(
            "%s %s %d %.1fms %s",
            request.method,
            request.url.path,
            response.status_code,
            ms,
            request.client.host if request.client else "unknown",
        )
        return response

    # Outermost: a bad Host header is rejected before any session lookup.
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

    @app.get("/health", tags=["Health"])
    def health(request: Request) -> HealthResponse:
        """Return liveness plus a database round-trip check. No auth, no rate limit."""
        ctx: AppContext = request.app.state.ctx
        try:
            database = "ok" if ctx.user_store.ping() else "error"
        except SQLAlchemyError:
            logger.exception("Health check database ping failed")
            database = "error"
        return HealthResponse(version=__version__, components={"app": "ok", "database": database})

    return app
