"""
Configuration and startup security checks for EventDesk.

Why: Conference data includes national IDs and uploaded documents; an
accidental insecure deployment must not start. This module provides a single
guard that enforces minimal production safety constraints without burdening
local development, plus the small env getters the route guard relies on.

Permissions: The caller needs no special privileges. The function simply reads
environment variables and raises `SystemExit` on fatal misconfiguration.
"""
from __future__ import annotations

import os

PROFILE_GRACE_SECONDS_DEFAULT = 5
APP_LOADING_TIMEOUT_SECONDS_DEFAULT = 15
SESSION_TTL_SECONDS_DEFAULT = 3600


def _is_prod_like(env: str) -> bool:
    env_l = (env or "").lower()
    return env_l in {"prod", "production", "stage", "staging"}


def _parse_positive_float(name: str, default: float, *, maximum: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    if value <= 0:
        return default
    return min(value, maximum)


def get_profile_grace_seconds() -> float:
    """Seconds a signed-in identity may wait for its profile before the guard gives up."""
    return _parse_positive_float("PROFILE_GRACE_SECONDS", PROFILE_GRACE_SECONDS_DEFAULT, maximum=60)


def get_app_loading_timeout_seconds() -> float:
    """Upper bound for resolving the identity of one request (application shell)."""
    return _parse_positive_float("APP_LOADING_TIMEOUT_SECONDS", APP_LOADING_TIMEOUT_SECONDS_DEFAULT, maximum=120)


def get_session_ttl_seconds() -> int:
    return int(_parse_positive_float("SESSION_TTL_SECONDS", SESSION_TTL_SECONDS_DEFAULT, maximum=7 * 24 * 3600))


def ensure_secure_config_on_startup() -> None:
    """Fail fast on insecure production configuration.

    Intent: Abort process startup when obviously insecure settings are detected
    in production/staging. Development remains permissive for convenience.

    Checks:
    - Supabase URL, anon key and service role key must be set (no placeholders).
    - The in-memory directory must not be selected.
    - Supabase URLs must use https.
    - DATABASE_URL must not explicitly disable TLS.
    """

    env = os.getenv("EVENTDESK_ENV", "dev")
    if not _is_prod_like(env):
        return  # dev/test remain permissive

    # 1) Supabase project credentials
    for var in ("SUPABASE_URL", "SUPABASE_ANON_KEY", "SUPABASE_SERVICE_ROLE_KEY"):
        value = (os.getenv(var) or "").strip()
        if not value or value.upper() in {"DUMMY_DO_NOT_USE", "CHANGE_ME"}:
            raise SystemExit(f"Refusing to start: {var} is unset or a dummy placeholder in production.")

    # 2) The in-memory directory keeps accounts in process memory only
    if (os.getenv("DIRECTORY_BACKEND") or "").strip().lower() == "memory":
        raise SystemExit("Refusing to start: DIRECTORY_BACKEND=memory is not allowed in production/staging.")

    # 3) Supabase endpoints must use HTTPS in production-like environments
    def _must_be_https(url_value: str, var_name: str) -> None:
        val = (url_value or "").strip().lower()
        if val.startswith("http://"):
            raise SystemExit(f"Refusing to start: {var_name} must use https in production (got http).")

    _must_be_https(os.getenv("SUPABASE_URL", ""), "SUPABASE_URL")
    _must_be_https(os.getenv("PASSWORD_RESET_REDIRECT_URL", ""), "PASSWORD_RESET_REDIRECT_URL")

    # 4) Postgres TLS: basic guard to avoid explicit disable (DB session store)
    dsn = os.getenv("DATABASE_URL", "")
    if "sslmode=disable" in dsn:
        raise SystemExit(
            "Refusing to start: DATABASE_URL contains sslmode=disable in production. Use sslmode=require or verify TLS."
        )

    # 5) Dev convenience bucket creation must stay off
    if (os.getenv("AUTO_CREATE_STORAGE_BUCKETS", "false") or "").strip().lower() == "true":
        raise SystemExit("Refusing to start: AUTO_CREATE_STORAGE_BUCKETS must be false in production/staging.")
