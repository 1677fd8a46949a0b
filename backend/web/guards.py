"""
Route authorization guard.

Why:
    Every protected page asks the same questions in the same order: has the
    identity been resolved, is there one, is its profile loaded, does the role
    fit? Keeping the decision pure (`evaluate_protected`, `evaluate_public`)
    makes the state machine unit-testable; the async adapters below only turn
    a decision into an HTTP response.

States (protected routes):
    INITIALIZING         identity not resolved yet (application-shell timeout)
    UNAUTHENTICATED      resolved, nobody signed in -> login with ?next=
    AWAITING_PROFILE     identity without profile, inside the grace window
    PROFILE_UNAVAILABLE  identity without profile, grace window elapsed
    ROLE_DENIED          profile role does not satisfy the route
    AUTHORIZED           render the page

Security:
    A missing profile never grants access; ROLE_DENIED never redirects to the
    protected content.
"""
from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional, Tuple
from urllib.parse import urlencode

import anyio
from fastapi import Request
from fastapi.responses import RedirectResponse, Response

from components.pages import AccessDeniedPage, AppTimeoutPage, LoadingPage, ProfileUnavailablePage
from identity_access.domain import normalize_roles, profile_has_role, role_based_redirect_target
from identity_access.session import AuthState, IdentityManager

from auth_utils import clear_session_cookie
from config import get_app_loading_timeout_seconds, get_profile_grace_seconds, get_session_ttl_seconds
from http_helpers import json_error, layout_response, private_no_store

logger = logging.getLogger("eventdesk.web.auth")

LOGIN_PATH = "/auth/login"


class GuardOutcome(str, Enum):
    INITIALIZING = "initializing"
    UNAUTHENTICATED = "unauthenticated"
    AWAITING_PROFILE = "awaiting_profile"
    PROFILE_UNAVAILABLE = "profile_unavailable"
    ROLE_DENIED = "role_denied"
    AUTHORIZED = "authorized"
    # Public routes only: signed-in visitors go to their landing route.
    REDIRECT_AUTHENTICATED = "redirect_authenticated"


@dataclass(frozen=True)
class GuardDecision:
    outcome: GuardOutcome
    redirect_to: Optional[str] = None
    retry_after: Optional[int] = None
    actual_role: Optional[str] = None
    required_roles: FrozenSet[str] = frozenset()

    @property
    def allowed(self) -> bool:
        return self.outcome is GuardOutcome.AUTHORIZED


def evaluate_protected(
    state: AuthState,
    required_roles: str | Iterable[str] | None = None,
    now: Optional[float] = None,
    grace_seconds: Optional[float] = None,
) -> GuardDecision:
    """Decide how a protected route renders for the given auth state."""
    if not state.initialized:
        return GuardDecision(GuardOutcome.INITIALIZING)
    if state.identity is None:
        return GuardDecision(GuardOutcome.UNAUTHENTICATED, redirect_to=LOGIN_PATH)
    if state.profile is None:
        now = time.time() if now is None else now
        grace = get_profile_grace_seconds() if grace_seconds is None else grace_seconds
        since = state.identity_resolved_at if state.identity_resolved_at is not None else now
        remaining = grace - (now - since)
        if remaining > 0:
            return GuardDecision(GuardOutcome.AWAITING_PROFILE, retry_after=max(1, math.ceil(remaining)))
        return GuardDecision(GuardOutcome.PROFILE_UNAVAILABLE)
    roles = normalize_roles(required_roles)
    if roles and not profile_has_role(state.profile, roles):
        return GuardDecision(
            GuardOutcome.ROLE_DENIED,
            actual_role=state.profile.role,
            required_roles=roles,
            redirect_to=role_based_redirect_target(state.profile.role),
        )
    return GuardDecision(GuardOutcome.AUTHORIZED)


def evaluate_public(state: AuthState, allow_authenticated: bool = False) -> GuardDecision:
    """Public-only views: signed-in participants are sent to their landing route."""
    if allow_authenticated or state.profile is None:
        return GuardDecision(GuardOutcome.AUTHORIZED)
    return GuardDecision(
        GuardOutcome.REDIRECT_AUTHENTICATED,
        redirect_to=role_based_redirect_target(state.profile.role),
    )


class ProfileWaits:
    """First time each session was seen with an identity but no profile.

    The grace window spans requests: a loading page refreshes itself, and the
    retry must not restart the clock. Entries older than `max_age` (the
    session lifetime) belong to expired sessions and are dropped on `mark`.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._since: Dict[str, float] = {}

    def mark(self, session_id: str, at: float, max_age: Optional[float] = None) -> float:
        with self._lock:
            if max_age is not None:
                cutoff = at - max_age
                for sid in [s for s, since in self._since.items() if since < cutoff and s != session_id]:
                    del self._since[sid]
            return self._since.setdefault(session_id, at)

    def clear(self, session_id: str) -> None:
        with self._lock:
            self._since.pop(session_id, None)

    def reset(self) -> None:
        with self._lock:
            self._since.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._since)


PROFILE_WAITS = ProfileWaits()


# --- FastAPI adapters --------------------------------------------------------

def current_manager(request: Request) -> Optional[IdentityManager]:
    return getattr(request.state, "identity_manager", None)


async def resolve_auth_state(manager: Optional[IdentityManager], timeout: Optional[float] = None) -> Tuple[AuthState, bool]:
    """Initialize the identity manager within the application-shell timeout.

    Returns the state and whether the timeout fired.
    """
    if manager is None:
        return AuthState(loading=False, initialized=True), False
    limit = get_app_loading_timeout_seconds() if timeout is None else timeout
    with anyio.move_on_after(limit):
        state = await anyio.to_thread.run_sync(manager.initialize, abandon_on_cancel=True)
        return state, False
    logger.warning("Identity initialisation exceeded %.1fs", limit)
    return manager.state, True


def _track_profile_wait(request: Request, state: AuthState) -> AuthState:
    sid = getattr(request.state, "session_id", None)
    if not sid:
        return state
    if state.identity is not None and state.profile is None:
        since = PROFILE_WAITS.mark(
            sid, state.identity_resolved_at or time.time(), max_age=get_session_ttl_seconds()
        )
        return replace(state, identity_resolved_at=since)
    PROFILE_WAITS.clear(sid)
    return state


def _wants_json(request: Request) -> bool:
    return request.url.path.startswith("/api/")


def _login_redirect(request: Request) -> Response:
    target = LOGIN_PATH
    path = request.url.path
    if path and path != "/":
        target = f"{LOGIN_PATH}?{urlencode({'next': path})}"
    headers = private_no_store()
    if request.headers.get("HX-Request"):
        response: Response = Response(status_code=401, headers={**headers, "HX-Redirect": target})
    else:
        response = RedirectResponse(url=target, status_code=302, headers=headers)
    return response


def render_decision(request: Request, decision: GuardDecision, *, timed_out: bool = False) -> Response:
    """Turn a non-authorized decision into the matching response."""
    outcome = decision.outcome
    environment = getattr(request.state, "environment", "dev")
    if outcome is GuardOutcome.UNAUTHENTICATED:
        if _wants_json(request):
            response = json_error("unauthenticated", status_code=401)
        else:
            response = _login_redirect(request)
        clear_session_cookie(response, environment)
        return response
    if outcome is GuardOutcome.REDIRECT_AUTHENTICATED:
        return RedirectResponse(url=decision.redirect_to or "/", status_code=302, headers=private_no_store())
    if outcome is GuardOutcome.INITIALIZING:
        retry = {"Retry-After": "1"}
        if _wants_json(request):
            return json_error("initializing", status_code=503, headers=retry)
        if timed_out:
            return layout_response(request, "Retry", AppTimeoutPage().render(), status_code=503, headers=retry, show_nav=False)
        return layout_response(
            request, "Loading", LoadingPage().render(), status_code=503, headers=retry, refresh_seconds=1, show_nav=False
        )
    if outcome is GuardOutcome.AWAITING_PROFILE:
        seconds = decision.retry_after or 1
        retry = {"Retry-After": str(seconds)}
        if _wants_json(request):
            return json_error("profile_loading", status_code=503, headers=retry)
        page = LoadingPage("Loading your profile...", retry_after=seconds).render()
        return layout_response(request, "Loading", page, status_code=503, headers=retry, refresh_seconds=seconds, show_nav=False)
    if outcome is GuardOutcome.PROFILE_UNAVAILABLE:
        if _wants_json(request):
            return json_error("profile_unavailable", "Please sign in again.", status_code=401)
        return layout_response(request, "Profile unavailable", ProfileUnavailablePage().render(), status_code=503, show_nav=False)
    # ROLE_DENIED
    if _wants_json(request):
        return json_error("forbidden", "Insufficient role.", status_code=403)
    page = AccessDeniedPage(decision.actual_role, decision.required_roles, decision.redirect_to or "/").render()
    manager = current_manager(request)
    return layout_response(request, "Access denied", page, profile=manager.profile if manager else None, status_code=403)


async def require_roles(
    request: Request, required_roles: str | Iterable[str] | None = None
) -> Tuple[Optional[IdentityManager], Optional[Response]]:
    """Run the protected-route guard; returns (manager, None) when authorized.

    Usage:
        manager, denied = await require_roles(request, ADMIN)
        if denied:
            return denied
    """
    manager = current_manager(request)
    state, timed_out = await resolve_auth_state(manager)
    state = _track_profile_wait(request, state)
    decision = evaluate_protected(state, required_roles)
    if decision.allowed:
        return manager, None
    if decision.outcome is GuardOutcome.UNAUTHENTICATED and manager is not None:
        # Drops the server-side session record via the sign-out hook.
        manager.sign_out()
    if decision.outcome is GuardOutcome.ROLE_DENIED:
        logger.info(
            "role denied path=%s role=%s required=%s",
            request.url.path,
            decision.actual_role,
            ",".join(sorted(decision.required_roles)),
        )
    return None, render_decision(request, decision, timed_out=timed_out)


async def redirect_if_signed_in(request: Request, allow_authenticated: bool = False) -> Optional[Response]:
    """Public-route guard; returns a redirect for signed-in visitors, else None."""
    manager = current_manager(request)
    if manager is None:
        return None
    state, _ = await resolve_auth_state(manager)
    decision = evaluate_public(state, allow_authenticated)
    if decision.allowed:
        return None
    return render_decision(request, decision)


__all__ = [
    "GuardOutcome",
    "GuardDecision",
    "evaluate_protected",
    "evaluate_public",
    "ProfileWaits",
    "PROFILE_WAITS",
    "resolve_auth_state",
    "render_decision",
    "require_roles",
    "redirect_if_signed_in",
]
