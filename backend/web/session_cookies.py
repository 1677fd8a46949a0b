"""
Server-side session bookkeeping for the web layer.

The browser holds only an opaque id (`eventdesk_session`); the directory
tokens live in the session store on `app.state`.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import Request
from fastapi.responses import Response

from identity_access.domain import Identity
from identity_access.stores import SessionRecord

from auth_utils import SESSION_COOKIE_NAME, clear_session_cookie, cookie_opts
from config import get_session_ttl_seconds

logger = logging.getLogger("eventdesk.web.auth")


def _environment(request: Request) -> str:
    return getattr(request.state, "environment", "dev")


def set_session_cookie(response: Response, value: str, environment: str, *, max_age: Optional[int] = None) -> None:
    opts = cookie_opts(environment)
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=value,
        httponly=True,
        secure=opts["secure"],
        samesite=opts["samesite"],
        path="/",
        max_age=max_age,
    )


def end_session(store, session_id: Optional[str]) -> None:
    if not session_id:
        return
    try:
        store.delete(session_id)
    except Exception as exc:
        logger.warning("Session store delete failed: %s", exc.__class__.__name__)


def store_refreshed_tokens(store, session_id: str, identity: Identity) -> None:
    """Keep the server-side record on the newest token pair after a refresh."""
    store.update_tokens(
        session_id,
        access_token=identity.access_token or "",
        refresh_token=identity.refresh_token,
    )


def start_session(request: Request, response: Response, identity: Identity) -> SessionRecord:
    """Persist the identity's tokens and hand the browser a fresh opaque id.

    Any session id the browser already carried is dropped first, so a
    sign-in never reuses an old id.
    """
    store = request.app.state.session_store
    end_session(store, request.cookies.get(SESSION_COOKIE_NAME))
    rec = store.create(
        identity_id=identity.id,
        access_token=identity.access_token or "",
        refresh_token=identity.refresh_token,
        ttl_seconds=get_session_ttl_seconds(),
    )
    environment = _environment(request)
    max_age = rec.ttl_seconds if environment in ("prod", "production") else None
    set_session_cookie(response, rec.session_id, environment, max_age=max_age)
    return rec


def drop_session(request: Request, response: Response) -> None:
    """Delete the server-side record (if any) and expire the cookie."""
    end_session(request.app.state.session_store, request.cookies.get(SESSION_COOKIE_NAME))
    clear_session_cookie(response, _environment(request))


__all__ = ["set_session_cookie", "start_session", "end_session", "drop_session", "store_refreshed_tokens"]
