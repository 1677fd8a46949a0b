"""
Sign-in and password reset pages.
"""

from typing import Optional

from ..base import Component
from ..forms import SubmitButton, TextInputField


def _alert(message: Optional[str], kind: str) -> str:
    if not message:
        return ""
    return f'<div class="alert alert-{kind}" role="alert">{Component.escape(message)}</div>'


class LoginPage(Component):
    def __init__(
        self,
        *,
        email: str = "",
        next_path: Optional[str] = None,
        error: Optional[str] = None,
        notice: Optional[str] = None,
    ):
        self.email = email
        self.next_path = next_path
        self.error = error
        self.notice = notice

    def render(self) -> str:
        next_input = (
            f'<input type="hidden" name="next" value="{self.escape(self.next_path)}">' if self.next_path else ""
        )
        return (
            '<section class="auth-card">'
            "<h1>Sign in</h1>"
            f"{_alert(self.notice, 'info')}"
            f"{_alert(self.error, 'error')}"
            '<form method="post" action="/auth/login" class="form">'
            f"{next_input}"
            + TextInputField("email", "Email", required=True).render(
                value=self.email, input_type="email", autocomplete="email"
            )
            + TextInputField("password", "Password", required=True).render(
                input_type="password", autocomplete="current-password"
            )
            + SubmitButton("Sign in").render()
            + "</form>"
            '<p><a href="/auth/forgot">Forgot your password?</a></p>'
            '<p>No account yet? <a href="/auth/register">Register as attendee</a> or '
            '<a href="/auth/register/volunteer">as volunteer</a>.</p>'
            "</section>"
        )


class ForgotPasswordPage(Component):
    def __init__(self, *, email: str = "", sent: bool = False, error: Optional[str] = None):
        self.email = email
        self.sent = sent
        self.error = error

    def render(self) -> str:
        if self.sent:
            # Same message whether or not the address exists.
            return (
                '<section class="auth-card">'
                "<h1>Check your email</h1>"
                "<p>If an account exists for this address, we sent a link to reset your password.</p>"
                '<p><a href="/auth/login">Back to sign in</a></p>'
                "</section>"
            )
        return (
            '<section class="auth-card">'
            "<h1>Reset password</h1>"
            f"{_alert(self.error, 'error')}"
            '<form method="post" action="/auth/forgot" class="form">'
            + TextInputField("email", "Email", required=True).render(
                value=self.email, input_type="email", autocomplete="email"
            )
            + SubmitButton("Send reset link").render()
            + "</form>"
            '<p><a href="/auth/login">Back to sign in</a></p>'
            "</section>"
        )


class ResetPasswordPage(Component):
    """New-password form reached from the emailed recovery link."""

    def __init__(self, *, token: str = "", error: Optional[str] = None, invalid_link: bool = False):
        self.token = token
        self.error = error
        self.invalid_link = invalid_link

    def render(self) -> str:
        if self.invalid_link:
            return (
                '<section class="auth-card">'
                "<h1>Reset password</h1>"
                f"{_alert(self.error, 'error')}"
                '<p><a href="/auth/forgot">Request a new link</a></p>'
                "</section>"
            )
        return (
            '<section class="auth-card">'
            "<h1>Choose a new password</h1>"
            f"{_alert(self.error, 'error')}"
            '<form method="post" action="/auth/reset" class="form">'
            f'<input type="hidden" name="token_hash" value="{self.escape(self.token)}">'
            + TextInputField("password", "New password", required=True).render(
                input_type="password", autocomplete="new-password"
            )
            + TextInputField("confirm_password", "Confirm new password", required=True).render(
                input_type="password", autocomplete="new-password"
            )
            + SubmitButton("Update password").render()
            + "</form>"
            "</section>"
        )
