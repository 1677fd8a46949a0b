"EventDesk"
from __future__ import annotations

from pathlib import Path
import os
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response
from fastapi.staticfiles import StaticFiles

from identity_access.directory import RemoteDirectory
from identity_access.session import IdentityManager
from identity_access.stores import SessionRecord, SessionStore
from registration.drafts import DraftCache

import config as _cfg
from auth_utils import SESSION_COOKIE_NAME
from directory_wiring import build_directory_from_env
from guards import require_roles
from http_helpers import private_json, private_no_store
from session_cookies import end_session, store_refreshed_tokens


def _under_pytest() -> bool:
    return "pytest" in sys.modules or bool(os.getenv("PYTEST_CURRENT_TEST"))


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating test env.
    - Allow explicit opt-out via EVENTDESK_ENABLE_DOTENV (default true
      outside pytest).
    """
    if _under_pytest():
        return False
    flag = (os.getenv("EVENTDESK_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


if _should_load_dotenv():
    load_dotenv()

# Minimal production safety checks (fail-fast on insecure config)
_cfg.ensure_secure_config_on_startup()

# --- App & Settings Setup -------------------------------------------------------

class AuthSettings:
    def __init__(self) -> None:
        self._env_override: str | None = None

    @property
    def environment(self) -> str:
        if self._env_override is not None:
            return self._env_override
        return os.getenv("EVENTDESK_ENV", "dev").lower()

    def override_environment(self, env: str | None) -> None:
        """Override environment for tests (e.g., "prod"), or reset with None."""
        self._env_override = env


logger = logging.getLogger("eventdesk.web")
SETTINGS = AuthSettings()

static_dir = Path(__file__).parent / "static"


def _build_session_store():
    if (not _under_pytest()) and os.getenv("SESSIONS_BACKEND", "memory").lower() == "db":
        from identity_access.stores_db import DBSessionStore

        return DBSessionStore()
    return SessionStore()


SESSION_STORE = _build_session_store()
DIRECTORY: RemoteDirectory = build_directory_from_env()
DRAFTS = DraftCache()

# --- Auth Middleware ----------------------------------------------------------

def _is_public_path(path: str) -> bool:
    return path.startswith(("/auth/", "/static/")) or path in ("/health", "/favicon.ico")


async def auth_enforcement(request: Request, call_next):
    """Attach a per-request IdentityManager built from the server-side session.

    Requests without a session only reach public paths; everything else gets a
    401 (API), an HX-Redirect (HTMX) or a redirect to the sign-in page. The
    manager is disposed when the request ends so late notifications from the
    directory never touch a finished request.
    """
    path = request.url.path
    state = request.app.state
    request.state.environment = SETTINGS.environment

    sid = request.cookies.get(SESSION_COOKIE_NAME)
    rec = None
    if sid:
        try:
            rec = state.session_store.get(sid)
        except Exception as exc:
            logger.warning("Session store get failed: %s", exc.__class__.__name__)

    if not rec:
        if _is_public_path(path):
            return await call_next(request)
        if path.startswith("/api/"):
            headers = {**private_no_store(), "Vary": "Origin"}
            return JSONResponse({"error": "unauthenticated"}, status_code=401, headers=headers)
        if "HX-Request" in request.headers:
            return Response(status_code=401, headers={"HX-Redirect": "/auth/login", **private_no_store(), "Vary": "HX-Request"})
        target = "/auth/login" if path == "/" else f"/auth/login?next={path}"
        return RedirectResponse(url=target, status_code=302, headers=private_no_store())

    store = state.session_store
    session_id = rec.session_id
    manager = IdentityManager(
        state.directory,
        access_token=rec.access_token,
        refresh_token=rec.refresh_token,
        on_signed_out=lambda: end_session(store, session_id),
        on_tokens_refreshed=lambda ident: store_refreshed_tokens(store, session_id, ident),
    )
    request.state.session_id = session_id
    request.state.session = rec
    request.state.identity_manager = manager
    try:
        return await call_next(request)
    finally:
        manager.dispose()

# --- Security Headers Middleware ----------------------------------------------

async def security_headers(request: Request, call_next):
    response = await call_next(request)
    if SETTINGS.environment in ("prod", "production"):
        # Harden CSP in production: avoid 'unsafe-inline' to reduce XSS surface.
        csp = (
            "default-src 'self'; script-src 'self'; style-src 'self'; "
            "img-src 'self' data:; font-src 'self' data:; connect-src 'self';"
        )
    else:
        csp = (
            "default-src 'self'; script-src 'self' 'unsafe-inline'; style-src 'self' 'unsafe-inline'; "
            "img-src 'self' data:; font-src 'self' data:; connect-src 'self';"
        )
    response.headers.setdefault("Content-Security-Policy", csp)
    response.headers.setdefault("X-Frame-Options", "SAMEORIGIN")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    if SETTINGS.environment in ("prod", "production"):
        response.headers.setdefault("Cross-Origin-Opener-Policy", "same-origin")
    # Scanning happens in the browser camera on the desk pages.
    response.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=(self)")
    response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    return response

# --- App assembly ---------------------------------------------------------------

from routes.auth import auth_router
from routes.registration import registration_router
from routes.checkin import checkin_router
from routes.dashboards import dashboards_router


def _configure(target: FastAPI, *, directory: RemoteDirectory, session_store, drafts: DraftCache) -> FastAPI:
    target.state.directory = directory
    target.state.session_store = session_store
    target.state.drafts = drafts
    target.mount("/static", StaticFiles(directory=str(static_dir)), name="static")
    # Registered last runs first: auth_enforcement wraps the routes, the
    # header middleware wraps everything including auth redirects.
    target.middleware("http")(auth_enforcement)
    target.middleware("http")(security_headers)
    return target


app = _configure(
    FastAPI(title="EventDesk", description="Conference registration and check-in", version="0.1.0"),
    directory=DIRECTORY,
    session_store=SESSION_STORE,
    drafts=DRAFTS,
)

app.include_router(auth_router)
app.include_router(registration_router)
app.include_router(checkin_router)
app.include_router(dashboards_router)


@app.get("/health")
async def health_check():
    # Security: include no-store to avoid caching any runtime status.
    return JSONResponse({"status": "healthy"}, headers=private_no_store())


@app.get("/")
async def index(request: Request):
    manager, denied = await require_roles(request)
    if denied:
        return denied
    return RedirectResponse(url=manager.role_based_redirect_target(), status_code=302, headers=private_no_store())


@app.get("/api/me")
async def get_me(request: Request):
    manager, denied = await require_roles(request)
    if denied:
        return denied
    rec: SessionRecord = request.state.session
    profile = manager.profile
    exp_iso = (
        datetime.fromtimestamp(rec.expires_at, tz=timezone.utc).isoformat(timespec="seconds")
        if rec.expires_at
        else None
    )
    return private_json(
        {
            "id": profile.id,
            "email": profile.email,
            "name": profile.display_name,
            "role": profile.role,
            "landing": manager.role_based_redirect_target(),
            "expires_at": exp_iso,
        }
    )


def create_app_auth_only(
    *,
    directory: Optional[RemoteDirectory] = None,
    session_store=None,
) -> FastAPI:
    """Factory returning a lightweight FastAPI app exposing only auth routes.

    Why: Tests use this to exercise sign-in, sign-out and registration
    contracts in isolation with their own directory fake.
    """
    sub = _configure(
        FastAPI(title="EventDesk (auth-only)", description="Auth slice", version="0.1.0"),
        directory=directory if directory is not None else DIRECTORY,
        session_store=session_store if session_store is not None else SessionStore(),
        drafts=DraftCache(),
    )
    sub.include_router(auth_router)
    sub.include_router(registration_router)
    return sub
