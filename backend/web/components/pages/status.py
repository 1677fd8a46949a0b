"""
Status pages rendered by the route guard.

Each page is a terminal or transient state of a protected route: loading
(identity or profile still resolving), access denied, profile unavailable,
and the application-shell timeout.
"""

from typing import Iterable, Optional

from ..base import Component
from ..navigation import role_label


class LoadingPage(Component):
    """Neutral loading state; the browser retries via meta refresh."""

    def __init__(self, message: str = "Loading your account...", retry_after: int = 1):
        self.message = message
        self.retry_after = retry_after

    def render(self) -> str:
        return (
            '<section class="status status--loading" aria-busy="true">'
            '<div class="spinner" aria-hidden="true"></div>'
            f"<p>{self.escape(self.message)}</p>"
            f'<p class="text-muted">This page refreshes automatically in {int(self.retry_after)}s.</p>'
            "</section>"
        )


class AppTimeoutPage(Component):
    def render(self) -> str:
        return (
            '<section class="status status--timeout">'
            "<h1>This is taking longer than expected</h1>"
            "<p>We could not reach the account service in time.</p>"
            '<p><a class="btn btn-primary" href="">Retry</a></p>'
            "</section>"
        )


class AccessDeniedPage(Component):
    """Shown when the profile's role does not satisfy the route."""

    def __init__(self, actual_role: Optional[str], required_roles: Iterable[str], landing: str):
        self.actual_role = actual_role
        self.required_roles = sorted(required_roles)
        self.landing = landing

    def render(self) -> str:
        required = ", ".join(role_label(r) for r in self.required_roles)
        return (
            '<section class="status status--denied">'
            "<h1>Access denied</h1>"
            "<p>You don't have permission to access this page.</p>"
            '<dl class="role-compare">'
            f"<dt>Your role</dt><dd>{self.escape(role_label(self.actual_role))}</dd>"
            f"<dt>Required</dt><dd>{self.escape(required)}</dd>"
            "</dl>"
            f'<p><a class="btn btn-primary" href="{self.escape(self.landing)}">Go to my dashboard</a></p>'
            "</section>"
        )


class ProfileUnavailablePage(Component):
    """Terminal error when the profile could not be loaded in time."""

    def render(self) -> str:
        return (
            '<section class="status status--error">'
            "<h1>We couldn't load your profile</h1>"
            "<p>Your sign-in worked, but your participant profile is not available right now.</p>"
            '<form method="post" action="/auth/logout">'
            '<input type="hidden" name="next" value="/auth/login">'
            '<button type="submit" class="btn btn-primary">Sign in again</button>'
            "</form>"
            "</section>"
        )


class ErrorPage(Component):
    def __init__(self, title: str, message: str):
        self.title = title
        self.message = message

    def render(self) -> str:
        return (
            '<section class="status status--error">'
            f"<h1>{self.escape(self.title)}</h1>"
            f"<p>{self.escape(self.message)}</p>"
            "</section>"
        )
