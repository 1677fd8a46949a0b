"""
Registration drafts and the short-lived draft cache.

Why:
    A registration form spans several sections; when a submission is rejected
    or the visitor leaves, the form should come back pre-filled. Drafts are
    kept server-side for a fixed time (default 24h) keyed by an opaque form id.

Security:
    Passwords and uploaded files are never cached; only the plain form fields.
"""
from __future__ import annotations

import os
import threading
import time
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Callable, Dict, Mapping, Optional

DRAFT_TTL_SECONDS_DEFAULT = 24 * 60 * 60

_NOT_CACHED = {"password", "confirm_password", "attachments"}


@dataclass(frozen=True)
class Attachment:
    kind: str
    filename: str
    content_type: str
    body: bytes = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.body)


@dataclass
class RegistrationDraft:
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    password: str = ""
    confirm_password: str = ""
    gender: str = ""
    nationality: str = ""
    phone: str = ""
    personal_id: str = ""
    university: str = ""
    custom_university: str = ""
    faculty: str = ""
    degree_level: str = ""
    program: str = ""
    class_year: str = ""
    how_did_hear: str = ""
    volunteer_id: str = ""
    role: str = ""
    tl_team: str = ""
    attachments: Dict[str, Attachment] = field(default_factory=dict, repr=False)

    @classmethod
    def from_form(cls, form: Mapping[str, Any], attachments: Optional[Mapping[str, Attachment]] = None) -> "RegistrationDraft":
        """Build a draft from submitted form values; text fields are trimmed, passwords are not."""
        values: Dict[str, Any] = {}
        for f in fields(cls):
            if f.name == "attachments" or f.name not in form:
                continue
            raw = form.get(f.name)
            text = "" if raw is None else str(raw)
            values[f.name] = text if f.name in ("password", "confirm_password") else text.strip()
        return cls(**values, attachments=dict(attachments or {}))

    def cacheable(self) -> Dict[str, str]:
        data = asdict(self)
        return {k: v for k, v in data.items() if k not in _NOT_CACHED}


def _ttl_from_env() -> int:
    raw = (os.getenv("DRAFT_TTL_SECONDS") or "").strip()
    try:
        value = int(raw) if raw else DRAFT_TTL_SECONDS_DEFAULT
    except ValueError:
        return DRAFT_TTL_SECONDS_DEFAULT
    return value if value > 0 else DRAFT_TTL_SECONDS_DEFAULT


class DraftCache:
    """In-memory draft cache with a fixed expiry per entry."""

    def __init__(self, ttl_seconds: Optional[int] = None, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds or _ttl_from_env()
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, tuple[float, Dict[str, str]]] = {}

    def save(self, form_id: str, draft: RegistrationDraft) -> None:
        with self._lock:
            self._entries[form_id] = (self._clock(), draft.cacheable())

    def load(self, form_id: str) -> Optional[Dict[str, str]]:
        with self._lock:
            entry = self._entries.get(form_id)
            if entry is None:
                return None
            saved_at, data = entry
            if self._clock() - saved_at > self.ttl_seconds:
                self._entries.pop(form_id, None)
                return None
            return dict(data)

    def clear(self, form_id: str) -> None:
        with self._lock:
            self._entries.pop(form_id, None)

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            stale = [k for k, (ts, _) in self._entries.items() if now - ts > self.ttl_seconds]
            for k in stale:
                del self._entries[k]
        return len(stale)


__all__ = ["Attachment", "RegistrationDraft", "DraftCache", "DRAFT_TTL_SECONDS_DEFAULT"]
