"""
Remote directory port: the hosted auth + tables + storage service.

Why:
    The application never talks to the backend-as-a-service directly. Identity,
    registration and check-in code depend on the `RemoteDirectory` protocol so
    tests can supply simple fakes and the Supabase adapter stays swappable.

Errors:
    Adapters raise `DirectoryError` subclasses with a stable `code`. The
    identity manager, the registration pipeline and the check-in service catch
    them at their boundary and convert them into typed result values; no raw
    adapter exception is allowed to reach route handlers.

Realtime:
    Change notifications are modelled as explicit subscriptions returning a
    disposable `Subscription`. Callers must dispose it on teardown (it also
    works as a context manager).
"""
from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Tuple

from identity_access.domain import Identity, Profile

logger = logging.getLogger("eventdesk.identity_access")

# Auth state change events (aligned with the hosted auth service naming).
SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
USER_UPDATED = "USER_UPDATED"
USER_DELETED = "USER_DELETED"

AuthStateCallback = Callable[[str, Optional[str]], None]
ProfileChangeCallback = Callable[[Profile], None]

_ORDERING_STRIPES = 64


class DirectoryError(Exception):
    """Base class for remote directory failures."""

    code = "directory_error"

    def __init__(self, code: str | None = None, message: str | None = None):
        self.code = code or self.code
        super().__init__(message or self.code)


class AuthFailedError(DirectoryError):
    code = "invalid_credentials"


class NotFoundError(DirectoryError):
    code = "not_found"


class ConflictError(DirectoryError):
    """Uniqueness violation (email or personal ID already registered)."""

    code = "conflict"


class PreconditionFailedError(DirectoryError):
    """A conditional update matched no row: the record is not in the expected state."""

    code = "precondition_failed"


class CapacityError(DirectoryError):
    code = "capacity_reached"


class Subscription:
    """Disposable handle for a change subscription.

    `dispose()` is idempotent and safe to call from any exit path.
    """

    def __init__(self, release: Callable[[], None]):
        self._release: Optional[Callable[[], None]] = release
        self._lock = threading.Lock()

    @property
    def active(self) -> bool:
        return self._release is not None

    def dispose(self) -> None:
        with self._lock:
            release, self._release = self._release, None
        if release is not None:
            release()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.dispose()


class ChangeFeed:
    """In-process fan-out for auth-state and profile-change notifications.

    Subscriber exceptions are logged and isolated so one faulty consumer does
    not break delivery to the others.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._auth: Dict[int, AuthStateCallback] = {}
        self._profiles: Dict[int, Tuple[str, ProfileChangeCallback]] = {}
        self._next = 0
        self._stripes = [threading.RLock() for _ in range(_ORDERING_STRIPES)]

    def _token(self) -> int:
        self._next += 1
        return self._next

    def on_auth_state_change(self, callback: AuthStateCallback) -> Subscription:
        with self._lock:
            token = self._token()
            self._auth[token] = callback
        return Subscription(lambda: self._drop(self._auth, token))

    def subscribe_profile(self, identity_id: str, callback: ProfileChangeCallback) -> Subscription:
        with self._lock:
            token = self._token()
            self._profiles[token] = (identity_id, callback)
        return Subscription(lambda: self._drop(self._profiles, token))

    def _drop(self, registry: dict, token: int) -> None:
        with self._lock:
            registry.pop(token, None)

    def publish_auth(self, event: str, identity_id: Optional[str]) -> None:
        with self._lock:
            callbacks = list(self._auth.values())
        for cb in callbacks:
            try:
                cb(event, identity_id)
            except Exception as exc:
                logger.warning("Auth state subscriber failed: %s", exc.__class__.__name__)

    def publish_profile(self, profile: Profile) -> None:
        with self._lock:
            callbacks = [cb for ident, cb in self._profiles.values() if ident == profile.id]
        for cb in callbacks:
            try:
                cb(profile)
            except Exception as exc:
                logger.warning("Profile subscriber failed: %s", exc.__class__.__name__)

    def publish_latest(self, identity_id: str, load: Callable[[], Profile]) -> Profile:
        """Publish the current row of `identity_id` after a write.

        Writers may finish in any order. Loading and delivering under one
        lock per identity means each delivery carries a row at least as new
        as the previous one, so watchers never step back to an older state.
        """
        with self._stripes[hash(identity_id) % _ORDERING_STRIPES]:
            profile = load()
            self.publish_profile(profile)
        return profile

    def subscriber_count(self, identity_id: Optional[str] = None) -> int:
        """All live subscriptions, or only the profile watchers of `identity_id`."""
        with self._lock:
            if identity_id is not None:
                return sum(1 for ident, _ in self._profiles.values() if ident == identity_id)
            return len(self._auth) + len(self._profiles)


class RemoteDirectory(Protocol):
    """Operations the application consumes from the hosted backend."""

    def verify_credential(self, email: str, password: str) -> Identity: ...

    def resolve_identity(self, access_token: str) -> Identity: ...

    def revoke_credential(self, access_token: str) -> None: ...

    def refresh_credential(self, refresh_token: str) -> Identity: ...

    def create_credential(self, email: str, password: str) -> Identity: ...

    def delete_credential(self, identity_id: str) -> None: ...

    def send_password_reset_email(self, email: str) -> None: ...

    def complete_password_reset(self, recovery_token: str, new_password: str) -> None: ...

    def get_profile(self, identity_id: str) -> Profile: ...

    def find_profile_by_personal_id(self, personal_id: str) -> Optional[Profile]: ...

    def create_profile(self, identity_id: str, fields: Mapping[str, Any]) -> Profile: ...

    def update_profile(
        self,
        identity_id: str,
        fields: Mapping[str, Any],
        *,
        expect: Optional[Mapping[str, Any]] = None,
    ) -> Profile: ...

    def subscribe_profile_changes(self, identity_id: str, callback: ProfileChangeCallback) -> Subscription: ...

    def upload_file(self, bucket: str, path: str, body: bytes, content_type: str) -> str: ...

    def on_auth_state_change(self, callback: AuthStateCallback) -> Subscription: ...

    def get_event_session(self, session_id: str) -> Dict[str, Any]: ...

    def book_session(self, profile_id: str, session_id: str, scanned_by: Optional[str]) -> Dict[str, Any]: ...

    def cancel_session_booking(self, profile_id: str, session_id: str) -> None: ...

    def registration_stats(self) -> Dict[str, int]: ...


def profile_row(fields: Mapping[str, Any]) -> Dict[str, Any]:
    """Map Profile attribute names to the remote table's column names."""
    renames = {"class_year": "class", "how_did_hear": "how_did_hear_about_event", "volunteer_id": "reg_id"}
    return {renames.get(k, k): v for k, v in fields.items() if k != "extra"}


__all__: List[str] = [
    "SIGNED_IN",
    "SIGNED_OUT",
    "USER_UPDATED",
    "USER_DELETED",
    "DirectoryError",
    "AuthFailedError",
    "NotFoundError",
    "ConflictError",
    "PreconditionFailedError",
    "CapacityError",
    "Subscription",
    "ChangeFeed",
    "RemoteDirectory",
    "profile_row",
]
