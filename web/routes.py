"""
web/routes.py -- Jinja2 template routes for the Secrets web UI.

All collaborators come from request.app.state.ctx (an AppContext). The current
principal was already resolved by the restore_principal middleware and is
read with try_get_current_user().

Routes:
  GET  /                         -- home page; signed-in users go to /secrets
  GET  /auth/{provider}          -- OAuth redirect to provider (google, facebook)
  GET  /auth/{provider}/secrets  -- OAuth callback handler
  GET  /secrets                  -- public list of shared secrets
  GET  /submit                   -- secret submission form (auth required)
  POST /submit                   -- store the principal's secret (auth required)
  GET  /logout                   -- destroy session, redirect /
  GET  /register                 -- registration form
  POST /register                 -- create local account, start session
  GET  /login                    -- login form with OAuth buttons
  POST /login                    -- verify credentials, start session

Error policy:
  Expected failures (bad input, taken username, bad credentials, OAuth denial)
  become a redirect or a re-rendered form inside the handler. Everything else
  reaches the HTML error pages registered by install(); those never show
  exception details.
"""

import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, FastAPI, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.context import AppContext
from auth.dependencies import try_get_current_user
from auth.errors import AuthFailed, UpstreamFailure, UsernameTaken, UserNotFound, ValidationFailure
from auth.passwords import check_password_length, verify_credentials
from core.limiter import credential_limit, limiter

logger = logging.getLogger("secrets_app.web")

_WEB_DIR = Path(__file__).parent

templates = Jinja2Templates(directory=str(_WEB_DIR / "templates"))
# layout.html calls this to decide which nav links to show.
templates.env.globals["try_get_current_user"] = try_get_current_user
router = APIRouter()

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

# Whitelist mapping for ?error= query params [M3]. The raw query value is
# NEVER passed to templates, only the message from this dict.
_ERROR_MESSAGES: dict[str, str] = {
    "username_taken": "That username is already registered.",
    "oauth_failed": "Signing in with that provider failed. Please try again.",
    "oauth_unavailable": "That sign-in provider is not available.",
}

_BAD_CREDENTIALS = "Invalid username or password."
_MAX_USERNAME_CHARS = 255
_MAX_SECRET_CHARS = 2000


def _ctx(request: Request) -> AppContext:
    return request.app.state.ctx


def _error_msg(request: Request) -> Optional[str]:
    return _ERROR_MESSAGES.get(request.query_params.get("error", ""))


def _require_auth(request: Request) -> Optional[RedirectResponse]:
    """Return a redirect to /login for anonymous requests, None otherwise.

    Call at the top of protected route handlers:
        if redirect := _require_auth(request):
            return redirect
    """
    if try_get_current_user(request) is None:
        return RedirectResponse("/login", status_code=302)
    return None


def _validate_registration(username: str, password: str) -> Optional[str]:
    """Return a user-facing error message, or None if the form is acceptable."""
    if not username:
        return "Username is required."
    if len(username) > _MAX_USERNAME_CHARS:
        return f"Username must be {_MAX_USERNAME_CHARS} characters or fewer."
    try:
        check_password_length(password)
    except ValidationFailure as exc:
        return str(exc)
    return None


# ---------------------------------------------------------------------------
# GET / -- home
# ---------------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
def home(request: Request) -> HTMLResponse:
    if try_get_current_user(request) is not None:
        return RedirectResponse("/secrets", status_code=302)
    return templates.TemplateResponse(request, "home.html")


# ---------------------------------------------------------------------------
# OAuth -- initiate and callback
# ---------------------------------------------------------------------------


@router.get("/auth/{provider}", response_class=HTMLResponse)
async def oauth_initiate(request: Request, provider: str) -> RedirectResponse:
    """Redirect the browser to the provider's authorization page.

    Unknown or unconfigured provider tags never reach authlib, so a crafted
    path cannot produce a redirect to an arbitrary URL.
    """
    oauth_provider = _ctx(request).oauth.get(provider)
    if oauth_provider is None:
        return RedirectResponse("/login?error=oauth_unavailable", status_code=302)
    return await oauth_provider.initiate(request)


@router.get("/auth/{provider}/secrets", response_class=HTMLResponse)
async def oauth_callback(request: Request, provider: str) -> RedirectResponse:
    """Finish the OAuth handshake, start a session and go to /secrets.

    Denial, state mismatch, failed exchange and unreachable providers all
    land on /login?error=oauth_failed without creating or touching a user.
    """
    ctx = _ctx(request)
    oauth_provider = ctx.oauth.get(provider)
    if oauth_provider is None:
        return RedirectResponse("/login?error=oauth_unavailable", status_code=302)

    try:
        user = await oauth_provider.handle_callback(request, ctx.user_store)
    except AuthFailed as exc:
        logger.warning("OAuth login rejected: %s", exc)
        return RedirectResponse("/login?error=oauth_failed", status_code=302)
    except UpstreamFailure:
        logger.exception("OAuth provider %r unavailable", provider)
        return RedirectResponse("/login?error=oauth_failed", status_code=302)

    resp = RedirectResponse("/secrets", status_code=302)
    await run_in_threadpool(ctx.sessions.login, request, resp, user)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Secrets -- public listing and gated submission
# ---------------------------------------------------------------------------


@router.get("/secrets", response_class=HTMLResponse)
def secrets_list(request: Request) -> HTMLResponse:
    """List every shared secret. Public on purpose: no principal required."""
    secrets = _ctx(request).user_store.list_secrets()
    return templates.TemplateResponse(request, "secrets.html", {"secrets": secrets})


@router.get("/submit", response_class=HTMLResponse)
def submit_form(request: Request) -> HTMLResponse:
    if redirect := _require_auth(request):
        return redirect
    return templates.TemplateResponse(request, "submit.html", {"error_msg": None, "secret": ""})


@router.post("/submit", response_class=HTMLResponse)
def submit_post(request: Request, secret: str = Form(default="")) -> HTMLResponse:
    """Overwrite the principal's secret and show the list."""
    if redirect := _require_auth(request):
        return redirect
    ctx = _ctx(request)
    user = try_get_current_user(request)

    text = secret.strip()
    error_msg = None
    if not text:
        error_msg = "Write a secret before submitting."
    elif len(text) > _MAX_SECRET_CHARS:
        error_msg = f"Secrets must be {_MAX_SECRET_CHARS} characters or fewer."
    if error_msg:
        return templates.TemplateResponse(
            request,
            "submit.html",
            {"error_msg": error_msg, "secret": secret[:_MAX_SECRET_CHARS]},
            status_code=400,
        )

    try:
        ctx.user_store.update_secret(user.id, text)
    except UserNotFound:
        # Account vanished after the session was restored.
        resp = RedirectResponse("/login", status_code=302)
        ctx.sessions.logout(request, resp)
        return resp
    return RedirectResponse("/secrets", status_code=302)


# ---------------------------------------------------------------------------
# Session lifecycle -- logout, register, login
# ---------------------------------------------------------------------------


@router.get("/logout")
def logout(request: Request) -> RedirectResponse:
    """Destroy the session and go home."""
    resp = RedirectResponse("/", status_code=302)
    _ctx(request).sessions.logout(request, resp)
    return resp


@router.get("/register", response_class=HTMLResponse)
def register_form(request: Request) -> HTMLResponse:
    return templates.TemplateResponse(request, "register.html", {"error_msg": _error_msg(request), "username": ""})


@router.post("/register", response_class=HTMLResponse)
@limiter.limit(credential_limit)
def register_post(
    request: Request,
    username: str = Form(default=""),
    password: str = Form(default=""),
) -> HTMLResponse:
    """Create a local account and sign it in.

    Malformed input re-renders the form (400). A taken username redirects back
    to /register with a whitelisted error code.
    """
    ctx = _ctx(request)
    username = username.strip()
    error_msg = _validate_registration(username, password)
    if error_msg is None:
        try:
            user = ctx.user_store.register(username, password)
        except UsernameTaken:
            logger.info("Registration rejected: username already taken")
            return RedirectResponse("/register?error=username_taken", status_code=302)
        except ValidationFailure as exc:
            error_msg = str(exc)
    if error_msg is not None:
        return templates.TemplateResponse(
            request,
            "register.html",
            {"error_msg": error_msg, "username": username[:_MAX_USERNAME_CHARS]},
            status_code=400,
        )

    resp = RedirectResponse("/secrets", status_code=302)
    ctx.sessions.login(request, resp, user)
    return resp


@router.get("/login", response_class=HTMLResponse)
def login_form(request: Request) -> HTMLResponse:
    """Render the login page with username/password form and OAuth buttons."""
    return templates.TemplateResponse(
        request,
        "login.html",
        {
            "error_msg": _error_msg(request),
            "providers": _ctx(request).oauth.enabled_providers(),
            "username": "",
        },
    )


@router.post("/login", response_class=HTMLResponse)
@limiter.limit(credential_limit)
def login_post(
    request: Request,
    username: str = Form(default=""),
    password: str = Form(default=""),
) -> HTMLResponse:
    """Verify credentials; on failure re-render the form with a generic error (401).

    verify_credentials() equalizes timing between unknown usernames and wrong
    passwords [C1], and the message is identical for both.
    """
    ctx = _ctx(request)
    username = username.strip()
    try:
        user = verify_credentials(ctx.user_store, username, password, rounds=ctx.settings.bcrypt_rounds)
    except AuthFailed:
        resp = templates.TemplateResponse(
            request,
            "login.html",
            {
                "error_msg": _BAD_CREDENTIALS,
                "providers": ctx.oauth.enabled_providers(),
                "username": username[:_MAX_USERNAME_CHARS],
            },
            status_code=401,
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    resp = RedirectResponse("/secrets", status_code=302)
    ctx.sessions.login(request, resp, user)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Error pages
# ---------------------------------------------------------------------------

_STATUS_MESSAGES: dict[int, str] = {
    400: "The request could not be understood.",
    404: "That page does not exist.",
    405: "That action is not allowed here.",
    429: "Too many attempts. Please wait a minute and try again.",
    503: "The service is temporarily unavailable. Please try again shortly.",
}
_GENERIC_MESSAGE = "Something went wrong. Please try again."


def _error_page(request: Request, status_code: int, headers: Optional[dict] = None) -> HTMLResponse:
    return templates.TemplateResponse(
        request,
        "error.html",
        {"status_code": status_code, "message": _STATUS_MESSAGES.get(status_code, _GENERIC_MESSAGE)},
        status_code=status_code,
        headers=headers,
    )


def install(app: FastAPI) -> None:
    """Mount the web UI on app: router, static assets and HTML error pages."""
    app.include_router(router, tags=["Web UI"])
    app.mount("/static", StaticFiles(directory=str(_WEB_DIR / "static")), name="static")

    @app.exception_handler(StarletteHTTPException)
    async def http_error_page(request: Request, exc: StarletteHTTPException) -> HTMLResponse:
        return _error_page(request, exc.status_code, headers=getattr(exc, "headers", None))

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_page(request: Request, exc: RateLimitExceeded) -> HTMLResponse:
        """429 with Retry-After. slowapi stores the wait on exc.retry_after when known."""
        retry_after = int(getattr(exc, "retry_after", 60))
        logger.warning("Rate limit exceeded on %s %s", request.method, request.url.path)
        return _error_page(request, 429, headers={"Retry-After": str(retry_after)})

    @app.exception_handler(SQLAlchemyError)
    async def database_error_page(request: Request, exc: SQLAlchemyError) -> HTMLResponse:
        logger.exception("Database error on %s %s", request.method, request.url.path, exc_info=exc)
        return _error_page(request, 503)

    @app.exception_handler(UpstreamFailure)
    async def upstream_error_page(request: Request, exc: UpstreamFailure) -> HTMLResponse:
        logger.exception("Upstream failure on %s %s", request.method, request.url.path, exc_info=exc)
        return _error_page(request, 503)

    @app.exception_handler(Exception)
    async def unexpected_error_page(request: Request, exc: Exception) -> HTMLResponse:
        """Catch-all. The exception goes to the log only, never to the response body."""
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path, exc_info=exc)
        return _error_page(request, 500)
