"""
Supabase Storage bootstrap for the registration attachment buckets.

Intent:
    Ensure the private `university-ids` and `cvs` buckets exist when a fresh
    local Supabase instance is started, so registration uploads work without
    manual setup.

Security & Safety:
    - Opt-in via `AUTO_CREATE_STORAGE_BUCKETS=true`; never enable in prod.
    - Requires the server-side `SUPABASE_SERVICE_ROLE_KEY`.
    - Idempotent: lists buckets first, creates only missing ones.
"""
from __future__ import annotations

import logging
import os
from typing import Iterable

import requests

from .config import get_cvs_bucket, get_university_ids_bucket

_log = logging.getLogger("eventdesk.storage")

_TIMEOUT = (3, 10)


def _headers(key: str) -> dict:
    return {"apikey": key, "Authorization": f"Bearer {key}"}


def _list_buckets(base_url: str, key: str) -> list[dict]:
    url = f"{base_url.rstrip('/')}/storage/v1/bucket"
    try:
        resp = requests.get(url, headers=_headers(key), timeout=_TIMEOUT)
    except requests.RequestException as exc:
        _log.warning("list buckets failed: error=%s", type(exc).__name__)
        return []
    if resp.status_code >= 300:
        _log.warning("list buckets failed: status=%s", resp.status_code)
        return []
    try:
        data = resp.json()
    except ValueError:
        return []
    return data if isinstance(data, list) else []


def _create_bucket(base_url: str, key: str, name: str) -> bool:
    url = f"{base_url.rstrip('/')}/storage/v1/bucket"
    try:
        resp = requests.post(url, headers=_headers(key), json={"name": name, "public": False}, timeout=_TIMEOUT)
    except requests.RequestException as exc:
        _log.warning("create bucket '%s' failed: error=%s", name, type(exc).__name__)
        return False
    if resp.status_code >= 300:
        _log.warning("create bucket '%s' failed: status=%s", name, resp.status_code)
        return False
    _log.info("created storage bucket '%s'", name)
    return True


def ensure_buckets(base_url: str, key: str, buckets: Iterable[str]) -> list[str]:
    """Create missing private buckets and return the names that were created."""
    existing = {str(it.get("name") or it.get("id") or "") for it in _list_buckets(base_url, key)}
    created: list[str] = []
    for name in sorted(set(b for b in buckets if b)):
        if name in existing:
            continue
        if _create_bucket(base_url, key, name):
            created.append(name)
    return created


def ensure_buckets_from_env() -> bool:
    """Ensure attachment buckets when AUTO_CREATE_STORAGE_BUCKETS=true.

    Returns False when disabled or when Supabase credentials are missing.
    """
    if (os.getenv("AUTO_CREATE_STORAGE_BUCKETS") or "").strip().lower() != "true":
        return False
    base = (os.getenv("SUPABASE_URL") or "").strip()
    key = (os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip()
    if not base or not key:
        return False
    _log.warning("AUTO_CREATE_STORAGE_BUCKETS=true detected (dev convenience only)")
    ensure_buckets(base, key, [get_university_ids_bucket(), get_cvs_bucket()])
    return True


__all__ = ["ensure_buckets_from_env", "ensure_buckets"]
