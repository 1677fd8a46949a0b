"""
Helper for wiring the remote directory (Supabase or in-memory).

Why:
    Local development and tests run without a Supabase project; production
    must never fall back silently. This module picks the adapter once at
    startup from the environment.

Behavior:
    - `DIRECTORY_BACKEND=memory` or missing Supabase settings: in-memory
      directory (refused in production by `config.ensure_secure_config_on_startup`).
    - Otherwise a `SupabaseDirectory`; when the client cannot be created the
      error propagates in production-like environments and falls back to the
      in-memory directory elsewhere.
    - Dev convenience: ensures the attachment buckets exist when
      AUTO_CREATE_STORAGE_BUCKETS=true.

Security:
    Requires SUPABASE_SERVICE_ROLE_KEY, SUPABASE_ANON_KEY and SUPABASE_URL.
    The service role key stays server-side.
"""
from __future__ import annotations

import logging
import os

from identity_access.directory import RemoteDirectory
from identity_access.directory_memory import InMemoryDirectory

logger = logging.getLogger("eventdesk.web")


def _supabase_configured() -> bool:
    return all(
        (os.getenv(var) or "").strip()
        for var in ("SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY", "SUPABASE_ANON_KEY")
    )


def build_directory_from_env() -> RemoteDirectory:
    backend = (os.getenv("DIRECTORY_BACKEND") or "").strip().lower()
    if backend == "memory" or not _supabase_configured():
        logger.info("Directory wired: in-memory (development only)")
        return InMemoryDirectory()

    from identity_access.directory_supabase import build_supabase_directory_from_env

    env = (os.getenv("EVENTDESK_ENV") or "dev").strip().lower()
    try:
        directory = build_supabase_directory_from_env()
    except Exception as exc:
        if env in {"prod", "production", "stage", "staging"}:
            raise
        logger.warning("Supabase directory unavailable: %s; using in-memory directory", exc.__class__.__name__)
        return InMemoryDirectory()
    logger.info("Directory wired: Supabase")

    from storage.bootstrap import ensure_buckets_from_env

    try:
        ensure_buckets_from_env()
    except Exception as exc:
        # Do not block startup on bucket bootstrap issues in dev.
        logger.warning("Bucket bootstrap skipped: %s", exc.__class__.__name__)
    return directory


__all__ = ["build_directory_from_env"]
