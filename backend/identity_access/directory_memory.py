"""
In-memory RemoteDirectory for development and tests.

Behavior:
- Thread-safe: every mutation happens under one lock, so a conditional
  `update_profile(..., expect=...)` behaves like the remote single-row update
  (exactly one of several racing writers can match the precondition).
- Rejects profile updates that would leave `building_entry` set without
  `event_entry`, mirroring the constraint enforced on the hosted table.
- Publishes profile changes and auth-state events through a `ChangeFeed`.

Security: passwords are kept only as salted PBKDF2 digests; nothing here is
intended for production (`ensure_secure_config_on_startup` refuses it).
"""
from __future__ import annotations

import hashlib
import secrets
import threading
import uuid
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from identity_access.directory import (
    SIGNED_IN,
    SIGNED_OUT,
    USER_DELETED,
    USER_UPDATED,
    AuthFailedError,
    CapacityError,
    ChangeFeed,
    ConflictError,
    DirectoryError,
    NotFoundError,
    PreconditionFailedError,
    Subscription,
)
from identity_access.domain import ATTENDEE, Identity, Profile


def _digest(password: str, salt: bytes) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, 10_000)


@dataclass
class _Credential:
    id: str
    email: str
    salt: bytes
    digest: bytes


class InMemoryDirectory:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._credentials: Dict[str, _Credential] = {}  # email -> credential
        self._tokens: Dict[str, str] = {}  # access token -> identity id
        self._refresh: Dict[str, str] = {}  # refresh token -> identity id
        self._profiles: Dict[str, Profile] = {}
        self._event_sessions: Dict[str, Dict[str, Any]] = {}
        self._bookings: Set[Tuple[str, str]] = set()
        self.files: Dict[Tuple[str, str], bytes] = {}
        self.reset_requests: List[str] = []
        self.reset_tokens: Dict[str, str] = {}  # recovery token -> email
        self._checked_in_on: Dict[str, date] = {}
        self.feed = ChangeFeed()

    # --- credentials -----------------------------------------------------
    def _issue(self, cred: _Credential) -> Identity:
        token = secrets.token_urlsafe(24)
        refresh = secrets.token_urlsafe(24)
        self._tokens[token] = cred.id
        self._refresh[refresh] = cred.id
        return Identity(id=cred.id, email=cred.email, access_token=token, refresh_token=refresh, email_confirmed=True)

    def _credential_by_id(self, identity_id: Optional[str]) -> Optional[_Credential]:
        return next((c for c in self._credentials.values() if c.id == identity_id), None)

    def verify_credential(self, email: str, password: str) -> Identity:
        key = (email or "").strip().lower()
        with self._lock:
            cred = self._credentials.get(key)
            if cred is None or not secrets.compare_digest(cred.digest, _digest(password or "", cred.salt)):
                raise AuthFailedError()
            ident = self._issue(cred)
        self.feed.publish_auth(SIGNED_IN, ident.id)
        return ident

    def resolve_identity(self, access_token: str) -> Identity:
        with self._lock:
            cred = self._credential_by_id(self._tokens.get(access_token or ""))
            if cred is None:
                raise AuthFailedError("invalid_token")
            return Identity(id=cred.id, email=cred.email, access_token=access_token, email_confirmed=True)

    def revoke_credential(self, access_token: str) -> None:
        with self._lock:
            ident_id = self._tokens.pop(access_token or "", None)
            for token in [t for t, i in self._refresh.items() if i == ident_id]:
                del self._refresh[token]
        if ident_id:
            self.feed.publish_auth(SIGNED_OUT, ident_id)

    def refresh_credential(self, refresh_token: str) -> Identity:
        """Exchange a refresh token for a new token pair; refresh tokens are single use."""
        with self._lock:
            cred = self._credential_by_id(self._refresh.pop(refresh_token or "", None))
            if cred is None:
                raise AuthFailedError("invalid_refresh_token")
            return self._issue(cred)

    def create_credential(self, email: str, password: str) -> Identity:
        key = (email or "").strip().lower()
        with self._lock:
            if key in self._credentials:
                raise ConflictError("email_taken")
            salt = secrets.token_bytes(16)
            cred = _Credential(id=str(uuid.uuid4()), email=key, salt=salt, digest=_digest(password or "", salt))
            self._credentials[key] = cred
            return self._issue(cred)

    def delete_credential(self, identity_id: str) -> None:
        with self._lock:
            key = next((k for k, c in self._credentials.items() if c.id == identity_id), None)
            if key is None:
                raise NotFoundError()
            del self._credentials[key]
            for registry in (self._tokens, self._refresh):
                for token in [t for t, i in registry.items() if i == identity_id]:
                    del registry[token]
        self.feed.publish_auth(USER_DELETED, identity_id)

    def send_password_reset_email(self, email: str) -> None:
        key = (email or "").strip().lower()
        with self._lock:
            if key in self._credentials:
                self.reset_requests.append(key)
                self.reset_tokens[secrets.token_urlsafe(24)] = key

    def complete_password_reset(self, recovery_token: str, new_password: str) -> None:
        with self._lock:
            key = self.reset_tokens.pop(recovery_token or "", None)
            cred = self._credentials.get(key or "")
            if cred is None:
                raise AuthFailedError("invalid_reset_token")
            cred.salt = secrets.token_bytes(16)
            cred.digest = _digest(new_password or "", cred.salt)
        self.feed.publish_auth(USER_UPDATED, cred.id)

    # --- profiles --------------------------------------------------------
    def get_profile(self, identity_id: str) -> Profile:
        with self._lock:
            prof = self._profiles.get(identity_id)
        if prof is None:
            raise NotFoundError("profile_not_found")
        return prof

    def find_profile_by_personal_id(self, personal_id: str) -> Optional[Profile]:
        with self._lock:
            return next((p for p in self._profiles.values() if p.personal_id and p.personal_id == personal_id), None)

    def create_profile(self, identity_id: str, fields: Mapping[str, Any]) -> Profile:
        with self._lock:
            if identity_id in self._profiles:
                raise ConflictError("profile_exists")
            pid = fields.get("personal_id")
            if pid and self.find_profile_by_personal_id(pid) is not None:
                raise ConflictError("personal_id_taken")
            prof = Profile(id=identity_id).with_changes(fields)
            self._check_presence(prof)
            self._profiles[identity_id] = prof
        self.feed.publish_profile(prof)
        return prof

    def update_profile(
        self,
        identity_id: str,
        fields: Mapping[str, Any],
        *,
        expect: Optional[Mapping[str, Any]] = None,
    ) -> Profile:
        with self._lock:
            current = self._profiles.get(identity_id)
            if current is None:
                raise NotFoundError("profile_not_found")
            for column, value in (expect or {}).items():
                if getattr(current, column, None) != value:
                    raise PreconditionFailedError()
            updated = current.with_changes(fields)
            self._check_presence(updated)
            self._profiles[identity_id] = updated
            if updated.event_entry and not current.event_entry:
                self._checked_in_on[identity_id] = date.today()
        self.feed.publish_latest(identity_id, lambda: self.get_profile(identity_id))
        return updated

    @staticmethod
    def _check_presence(profile: Profile) -> None:
        if profile.building_entry and not profile.event_entry:
            raise PreconditionFailedError("building_requires_event")

    def subscribe_profile_changes(self, identity_id: str, callback) -> Subscription:
        return self.feed.subscribe_profile(identity_id, callback)

    def on_auth_state_change(self, callback) -> Subscription:
        return self.feed.on_auth_state_change(callback)

    # --- storage ---------------------------------------------------------
    def upload_file(self, bucket: str, path: str, body: bytes, content_type: str) -> str:
        if not bucket or not path:
            raise DirectoryError("invalid_path")
        with self._lock:
            self.files[(bucket, path)] = bytes(body)
        return path

    # --- event sessions --------------------------------------------------
    def add_event_session(self, session_id: str, title: str, max_attendees: int) -> Dict[str, Any]:
        with self._lock:
            rec = {"id": session_id, "title": title, "max_attendees": int(max_attendees), "current_bookings": 0}
            self._event_sessions[session_id] = rec
            return dict(rec)

    def get_event_session(self, session_id: str) -> Dict[str, Any]:
        with self._lock:
            rec = self._event_sessions.get(session_id)
            if rec is None:
                raise NotFoundError("session_not_found")
            return dict(rec)

    def book_session(self, profile_id: str, session_id: str, scanned_by: Optional[str]) -> Dict[str, Any]:
        with self._lock:
            rec = self._event_sessions.get(session_id)
            if rec is None:
                raise NotFoundError("session_not_found")
            if (profile_id, session_id) in self._bookings:
                raise ConflictError("already_booked")
            if rec["max_attendees"] and rec["current_bookings"] >= rec["max_attendees"]:
                raise CapacityError()
            self._bookings.add((profile_id, session_id))
            rec["current_bookings"] += 1
            return {"profile_id": profile_id, "session_id": session_id, "scanned_by": scanned_by}

    def cancel_session_booking(self, profile_id: str, session_id: str) -> None:
        with self._lock:
            rec = self._event_sessions.get(session_id)
            if rec is None:
                raise NotFoundError("session_not_found")
            if (profile_id, session_id) not in self._bookings:
                raise NotFoundError("booking_not_found")
            self._bookings.discard((profile_id, session_id))
            rec["current_bookings"] = max(0, rec["current_bookings"] - 1)

    def registration_stats(self) -> Dict[str, int]:
        today = date.today()
        with self._lock:
            attendees = [p for p in self._profiles.values() if p.role == ATTENDEE]
            return {
                "total_registered": len(self._profiles),
                "total_attendees": len(attendees),
                "inside_event": sum(1 for p in attendees if p.event_entry),
                "checked_in_today": sum(1 for d in self._checked_in_on.values() if d == today),
            }

    # --- dev helpers -----------------------------------------------------
    def expire_access_tokens(self, identity_id: str) -> None:
        """Let every access token of `identity_id` lapse; refresh tokens stay valid."""
        with self._lock:
            for token in [t for t, i in self._tokens.items() if i == identity_id]:
                del self._tokens[token]

    def seed(self, *, email: str, password: str, profile: Optional[Mapping[str, Any]] = None) -> Identity:
        """Create a credential (and optionally its profile) in one call."""
        ident = self.create_credential(email, password)
        if profile is not None:
            self.create_profile(ident.id, {"email": ident.email, **profile})
        return ident
