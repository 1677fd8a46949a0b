"""Full-page components (rendered inside `Layout`)."""

from .auth import ForgotPasswordPage, LoginPage, ResetPasswordPage
from .dashboards import DashboardPage, DeskPage, ProfileCard, RoleChangePage
from .registration import RegistrationDonePage, RegistrationPage
from .status import AccessDeniedPage, AppTimeoutPage, ErrorPage, LoadingPage, ProfileUnavailablePage

__all__ = [
    "LoginPage",
    "ForgotPasswordPage",
    "ResetPasswordPage",
    "DashboardPage",
    "DeskPage",
    "ProfileCard",
    "RoleChangePage",
    "RegistrationPage",
    "RegistrationDonePage",
    "AccessDeniedPage",
    "AppTimeoutPage",
    "ErrorPage",
    "LoadingPage",
    "ProfileUnavailablePage",
]
