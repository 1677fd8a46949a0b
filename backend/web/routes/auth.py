"""
Authentication routes (router-only module).

Why:
    Keep sign-in, sign-out and password reset in a dedicated router so the full
    app and the slim auth-only test app share one implementation.

Notes:
    - Sign-in builds a short-lived IdentityManager, runs it in the threadpool
      (directory calls block) and disposes it before responding.
    - Every failure renders the same generic message: the page never reveals
      whether the email exists or which step failed.
    - Logout is POST-only and idempotent; it also works without a session.
    - The reset link lands on `/auth/reset?token_hash=...`; the token is only
      redeemed by the POST, so link scanners cannot burn it.
"""

from __future__ import annotations

import logging

import anyio
from fastapi import APIRouter, Request
from fastapi.responses import RedirectResponse, Response

from components.pages import ForgotPasswordPage, LoginPage, ResetPasswordPage
from identity_access.domain import role_based_redirect_target
from identity_access.session import (
    GENERIC_SIGN_IN_MESSAGE,
    RESET_LINK_INVALID_MESSAGE,
    AuthResult,
    IdentityManager,
)
from registration.validation import validate_confirm_password, validate_new_password

from auth_utils import safe_next
from guards import current_manager, redirect_if_signed_in
from http_helpers import layout_response, private_no_store
from routes.security import csrf_violation
from session_cookies import drop_session, start_session

auth_router = APIRouter(tags=["Auth"])  # explicit paths, no prefix
logger = logging.getLogger("eventdesk.web.auth")

PASSWORD_UPDATED_NOTICE = "Password updated. Please sign in with your new password."


def sign_in_blocking(directory, email: str, password: str) -> AuthResult:
    """One-shot sign-in against the directory; the manager never outlives the call."""
    with IdentityManager(directory) as manager:
        return manager.sign_in(email, password)


def _login_page(request: Request, *, status_code: int = 200, **kwargs) -> Response:
    return layout_response(request, "Sign in", LoginPage(**kwargs).render(), status_code=status_code, show_nav=False)


@auth_router.get("/auth/login")
async def auth_login(request: Request, next: str | None = None, reset: str | None = None):
    redirect = await redirect_if_signed_in(request)
    if redirect is not None:
        return redirect
    notice = PASSWORD_UPDATED_NOTICE if reset == "done" else None
    return _login_page(request, next_path=safe_next(next), notice=notice)


@auth_router.post("/auth/login")
async def auth_login_submit(request: Request):
    if (violation := csrf_violation(request)) is not None:
        return violation
    form = await request.form()
    email = str(form.get("email") or "").strip()
    password = str(form.get("password") or "")
    next_path = safe_next(str(form.get("next") or "")) if form.get("next") else None
    if not email or not password:
        return _login_page(
            request, status_code=400, email=email, next_path=next_path, error="Please enter your email and password."
        )

    directory = request.app.state.directory
    result = await anyio.to_thread.run_sync(sign_in_blocking, directory, email, password)
    if not result.ok or result.identity is None or result.profile is None:
        logger.info("sign-in rejected")
        return _login_page(request, status_code=401, email=email, next_path=next_path, error=GENERIC_SIGN_IN_MESSAGE)

    target = next_path or role_based_redirect_target(result.profile.role)
    response = RedirectResponse(url=target, status_code=303, headers=private_no_store())
    start_session(request, response, result.identity)
    logger.info("sign-in ok role=%s", result.profile.role)
    return response


@auth_router.get("/auth/forgot")
async def auth_forgot(request: Request, email: str | None = None):
    redirect = await redirect_if_signed_in(request)
    if redirect is not None:
        return redirect
    page = ForgotPasswordPage(email=(email or "").strip())
    return layout_response(request, "Reset password", page.render(), show_nav=False)


@auth_router.post("/auth/forgot")
async def auth_forgot_submit(request: Request):
    if (violation := csrf_violation(request)) is not None:
        return violation
    form = await request.form()
    email = str(form.get("email") or "").strip()
    if not email:
        page = ForgotPasswordPage(error="Please enter your email address.")
        return layout_response(request, "Reset password", page.render(), status_code=400, show_nav=False)

    def _send() -> AuthResult:
        with IdentityManager(request.app.state.directory) as manager:
            return manager.reset_password(email)

    await anyio.to_thread.run_sync(_send)
    page = ForgotPasswordPage(email=email, sent=True)
    return layout_response(request, "Reset password", page.render(), show_nav=False)


def _reset_page(request: Request, *, status_code: int = 200, **kwargs) -> Response:
    page = ResetPasswordPage(**kwargs)
    return layout_response(request, "Reset password", page.render(), status_code=status_code, show_nav=False)


@auth_router.get("/auth/reset")
async def auth_reset(request: Request, token_hash: str | None = None):
    token = (token_hash or "").strip()
    if not token:
        return _reset_page(request, status_code=400, invalid_link=True, error=RESET_LINK_INVALID_MESSAGE)
    return _reset_page(request, token=token)


@auth_router.post("/auth/reset")
async def auth_reset_submit(request: Request):
    if (violation := csrf_violation(request)) is not None:
        return violation
    form = await request.form()
    token = str(form.get("token_hash") or "").strip()
    password = str(form.get("password") or "")
    confirm = str(form.get("confirm_password") or "")
    if not token:
        return _reset_page(request, status_code=400, invalid_link=True, error=RESET_LINK_INVALID_MESSAGE)
    problem = validate_new_password(password) or validate_confirm_password(password, confirm)
    if problem:
        return _reset_page(request, status_code=400, token=token, error=problem)

    def _complete() -> AuthResult:
        with IdentityManager(request.app.state.directory) as manager:
            return manager.complete_password_reset(token, password)

    result = await anyio.to_thread.run_sync(_complete)
    if not result.ok:
        logger.info("password reset rejected: %s", result.error)
        if result.error == "invalid_reset_token":
            return _reset_page(request, status_code=400, invalid_link=True, error=result.message)
        return _reset_page(request, status_code=503, token=token, error=result.message)
    logger.info("password reset completed")
    return RedirectResponse(url="/auth/login?reset=done", status_code=303, headers=private_no_store())


@auth_router.post("/auth/logout")
async def auth_logout(request: Request):
    if (violation := csrf_violation(request)) is not None:
        return violation
    manager = current_manager(request)
    if manager is not None:
        # Revokes the directory credential and drops the session record.
        await anyio.to_thread.run_sync(manager.sign_out)
    response = RedirectResponse(url="/auth/login", status_code=303, headers=private_no_store())
    drop_session(request, response)
    return response


__all__ = ["auth_router", "sign_in_blocking"]
