"""
In-memory SessionStore for development.

Why: Keep the Supabase access/refresh tokens server-side. The browser only
holds an opaque session id; every request rebuilds its identity state from the
cached token. For production, use the DB-backed store (`stores_db`).

Security: Cookies carry only an opaque session id. Session data stays server-side.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional
import secrets
import time


def _now() -> int:
    return int(time.time())


@dataclass
class SessionRecord:
    session_id: str
    identity_id: str
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None
    ttl_seconds: int = 3600


class SessionStore:
    def __init__(self):
        self._data: Dict[str, SessionRecord] = {}

    def create(
        self,
        *,
        identity_id: str,
        access_token: str,
        refresh_token: Optional[str] = None,
        ttl_seconds: int = 3600,
    ) -> SessionRecord:
        sid = secrets.token_urlsafe(24)
        rec = SessionRecord(
            session_id=sid,
            identity_id=identity_id,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=_now() + ttl_seconds,
            ttl_seconds=ttl_seconds,
        )
        self._data[sid] = rec
        return rec

    def get(self, session_id: str) -> Optional[SessionRecord]:
        rec = self._data.get(session_id)
        if not rec:
            return None
        if rec.expires_at and rec.expires_at < _now():
            self._data.pop(session_id, None)
            return None
        return rec

    def delete(self, session_id: str) -> None:
        self._data.pop(session_id, None)

    def update_tokens(self, session_id: str, *, access_token: str, refresh_token: Optional[str]) -> None:
        """Replace the cached tokens after a refresh; the expiry is unchanged."""
        rec = self._data.get(session_id)
        if rec is not None:
            rec.access_token = access_token
            rec.refresh_token = refresh_token
