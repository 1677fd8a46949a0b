"""
Shared authentication utilities.

Why:
    Avoid duplicating environment-dependent cookie policy and redirect-target
    validation across modules (main app, auth router, route guard).

Design:
    The helpers are framework-agnostic and pure. Callers decide where the
    environment comes from (e.g., settings object).
"""

from __future__ import annotations

import re
from typing import Optional

# Allowed in-app redirect paths: absolute, no double slashes, no "..".
INAPP_PATH_PATTERN = re.compile(r"^(?!.*//)(?!.*\.\.)/[A-Za-z0-9._\-/]*$")
MAX_INAPP_REDIRECT_LEN = 256


def cookie_opts(environment: str) -> dict:
    """Return hardened cookie flags (dev = prod).

    Returns a mapping with keys:
      - secure: True
      - samesite: "lax"  # cookie is sent on the redirect after sign-in
    """
    return {"secure": True, "samesite": "lax"}


def is_inapp_path(value: Optional[str]) -> bool:
    """True for short absolute in-app paths; external URLs are rejected."""
    if not isinstance(value, str) or not value:
        return False
    if len(value) > MAX_INAPP_REDIRECT_LEN:
        return False
    return bool(INAPP_PATH_PATTERN.match(value))


def safe_next(value: Optional[str]) -> Optional[str]:
    return value if is_inapp_path(value) else None


SESSION_COOKIE_NAME = "eventdesk_session"


def clear_session_cookie(response, environment: str) -> None:
    """Expire the session cookie with the same flags it was set with."""
    opts = cookie_opts(environment)
    response.delete_cookie(
        key=SESSION_COOKIE_NAME,
        path="/",
        secure=opts["secure"],
        httponly=True,
        samesite=opts["samesite"],
    )
