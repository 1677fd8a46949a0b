"""
Identity manager: who is signed in for this browser session, and in which role.

Why:
    Route guards, dashboards and the check-in desks all ask the same two
    questions (is there an identity? what is its profile role?). This module
    owns the answer for one session explicitly (no module-level singleton):
    the web layer builds an `IdentityManager` per request from the cached
    access token and disposes it when the request ends.

Behavior:
    - `initialize()` re-resolves the cached token (exchanging the refresh
      token once when the access token has lapsed), then loads the profile.
      A valid identity without a profile is a fatal inconsistency: the
      session is signed out and the navigation hook fires (fail closed).
      Transient profile read errors keep the identity, leave `profile=None`
      and record `profile_error` so the route guard can apply its grace window.
    - `sign_in()` never raises. Any failure after a valid credential check
      revokes the credential and returns the same generic error as a wrong
      password, so callers cannot tell which part failed.
    - Auth-state and profile-change notifications re-resolve the profile.
      After `dispose()` late notifications are ignored.

Security:
    Passwords and tokens are never logged.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Iterable, Optional

from identity_access.directory import (
    SIGNED_OUT,
    USER_DELETED,
    AuthFailedError,
    DirectoryError,
    NotFoundError,
    PreconditionFailedError,
    RemoteDirectory,
    Subscription,
)
from identity_access.domain import (
    LEADABLE_TEAMS,
    SELECTABLE_VOLUNTEER_ROLES,
    TEAM_LEADER,
    Identity,
    Profile,
    profile_has_role,
    role_based_redirect_target,
)

logger = logging.getLogger("eventdesk.identity_access")

INVALID_CREDENTIALS = "invalid_credentials"
GENERIC_SIGN_IN_MESSAGE = "Invalid email or password."
RESET_LINK_INVALID_MESSAGE = "This password reset link is invalid or has expired."


@dataclass(frozen=True)
class AuthState:
    """Snapshot of the session-scoped authentication state."""

    identity: Optional[Identity] = None
    profile: Optional[Profile] = None
    loading: bool = True
    initialized: bool = False
    identity_resolved_at: Optional[float] = None
    profile_error: Optional[str] = None


@dataclass(frozen=True)
class AuthResult:
    ok: bool
    identity: Optional[Identity] = None
    profile: Optional[Profile] = None
    error: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def failure(cls, error: str, message: str) -> "AuthResult":
        return cls(ok=False, error=error, message=message)


class IdentityManager:
    def __init__(
        self,
        directory: RemoteDirectory,
        *,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        on_signed_out: Optional[Callable[[], None]] = None,
        on_tokens_refreshed: Optional[Callable[[Identity], None]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._directory = directory
        self._token = access_token
        self._refresh_token = refresh_token
        self._on_signed_out = on_signed_out
        self._on_tokens_refreshed = on_tokens_refreshed
        self._clock = clock
        self._lock = threading.RLock()
        self._state = AuthState()
        self._disposed = False
        self._profile_sub: Optional[Subscription] = None
        self._auth_sub: Subscription = directory.on_auth_state_change(self._on_auth_event)

    # --- state -----------------------------------------------------------
    @property
    def state(self) -> AuthState:
        with self._lock:
            return self._state

    @property
    def identity(self) -> Optional[Identity]:
        return self.state.identity

    @property
    def profile(self) -> Optional[Profile]:
        return self.state.profile

    @property
    def disposed(self) -> bool:
        return self._disposed

    def _set(self, **changes) -> None:
        with self._lock:
            self._state = replace(self._state, **changes)

    def _watch_profile(self, identity_id: str) -> None:
        with self._lock:
            if self._disposed:
                return
            if self._profile_sub is not None:
                self._profile_sub.dispose()
            self._profile_sub = self._directory.subscribe_profile_changes(identity_id, self._on_profile_changed)

    def _clear(self) -> None:
        with self._lock:
            if self._profile_sub is not None:
                self._profile_sub.dispose()
                self._profile_sub = None
            self._token = None
            self._refresh_token = None
            self._state = replace(
                self._state,
                identity=None,
                profile=None,
                loading=False,
                identity_resolved_at=None,
                profile_error=None,
            )

    # --- operations ------------------------------------------------------
    def initialize(self) -> AuthState:
        """Resolve the cached credential and its profile; runs at most once."""
        with self._lock:
            if self._state.initialized:
                return self._state
        identity: Optional[Identity] = None
        if self._token:
            try:
                identity = self._directory.resolve_identity(self._token)
            except DirectoryError as exc:
                logger.info("Cached credential rejected: %s", exc.code)
                identity = self._refresh()
        if identity is None:
            self._clear()
            self._set(initialized=True)
            return self.state

        self._set(identity=identity, identity_resolved_at=self._clock())
        try:
            profile = self._directory.get_profile(identity.id)
        except NotFoundError:
            logger.warning("Signed-in identity has no profile; forcing sign-out")
            self._set(initialized=True)
            self.sign_out()
            return self.state
        except DirectoryError as exc:
            logger.warning("Profile load failed: %s", exc.code)
            self._set(profile=None, profile_error=exc.code, loading=False, initialized=True)
            return self.state
        self._watch_profile(identity.id)
        self._set(profile=profile, profile_error=None, loading=False, initialized=True)
        return self.state

    def _refresh(self) -> Optional[Identity]:
        """Trade the refresh token for a new pair; None when that is impossible."""
        if not self._refresh_token:
            return None
        try:
            identity = self._directory.refresh_credential(self._refresh_token)
        except DirectoryError as exc:
            logger.info("Refresh token rejected: %s", exc.code)
            return None
        with self._lock:
            self._token = identity.access_token
            self._refresh_token = identity.refresh_token
        if self._on_tokens_refreshed is not None:
            try:
                self._on_tokens_refreshed(identity)
            except Exception as exc:
                logger.warning("Storing refreshed tokens failed: %s", exc.__class__.__name__)
        return identity

    def sign_in(self, email: str, password: str) -> AuthResult:
        try:
            identity = self._directory.verify_credential(email, password)
        except DirectoryError:
            return AuthResult.failure(INVALID_CREDENTIALS, GENERIC_SIGN_IN_MESSAGE)
        except Exception as exc:
            logger.warning("Sign-in failed unexpectedly: %s", exc.__class__.__name__)
            return AuthResult.failure(INVALID_CREDENTIALS, GENERIC_SIGN_IN_MESSAGE)

        try:
            profile = self._directory.get_profile(identity.id)
        except Exception as exc:
            logger.warning("Profile unavailable after sign-in: %s", exc.__class__.__name__)
            self._revoke(identity.access_token)
            self._clear()
            self._set(initialized=True)
            return AuthResult.failure(INVALID_CREDENTIALS, GENERIC_SIGN_IN_MESSAGE)

        with self._lock:
            self._token = identity.access_token
            self._refresh_token = identity.refresh_token
            self._state = AuthState(
                identity=identity,
                profile=profile,
                loading=False,
                initialized=True,
                identity_resolved_at=self._clock(),
            )
        self._watch_profile(identity.id)
        return AuthResult(ok=True, identity=identity, profile=profile)

    def _revoke(self, token: Optional[str]) -> None:
        if not token:
            return
        try:
            self._directory.revoke_credential(token)
        except Exception as exc:
            logger.warning("Credential revocation failed: %s", exc.__class__.__name__)

    def sign_out(self) -> None:
        """Revoke and forget the current credential; safe to call repeatedly."""
        with self._lock:
            token = self._token or (self._state.identity.access_token if self._state.identity else None)
        self._clear()
        self._revoke(token)
        if self._on_signed_out is not None:
            self._on_signed_out()

    def reset_password(self, email: str) -> AuthResult:
        try:
            self._directory.send_password_reset_email(email)
        except Exception as exc:
            logger.warning("Password reset request failed: %s", exc.__class__.__name__)
        return AuthResult(ok=True)

    def complete_password_reset(self, recovery_token: str, new_password: str) -> AuthResult:
        """Set a new password from a recovery link token."""
        if not recovery_token:
            return AuthResult.failure("invalid_reset_token", RESET_LINK_INVALID_MESSAGE)
        try:
            self._directory.complete_password_reset(recovery_token, new_password)
        except AuthFailedError:
            return AuthResult.failure("invalid_reset_token", RESET_LINK_INVALID_MESSAGE)
        except DirectoryError as exc:
            logger.warning("Password update failed: %s", exc.code)
            return AuthResult.failure("update_failed", "Failed to update password. Please try again.")
        return AuthResult(ok=True)

    def has_role(self, role_or_roles: str | Iterable[str] | None) -> bool:
        return profile_has_role(self.state.profile, role_or_roles)

    def role_based_redirect_target(self) -> str:
        profile = self.state.profile
        return role_based_redirect_target(profile.role if profile else None)

    def refresh_profile(self) -> Optional[Profile]:
        identity = self.state.identity
        if identity is None:
            return None
        try:
            profile = self._directory.get_profile(identity.id)
        except NotFoundError:
            logger.warning("Profile disappeared; forcing sign-out")
            self.sign_out()
            return None
        except DirectoryError as exc:
            self._set(profile_error=exc.code)
            return self.state.profile
        if self._disposed:
            return profile
        self._set(profile=profile, profile_error=None, loading=False)
        return profile

    def change_role(self, new_role: str, team: Optional[str] = None) -> AuthResult:
        """Self-service role change between volunteer-family roles.

        `team_leader` requires a team to lead; any other role clears it. The
        update is conditional on the role read here so a concurrent admin
        change is not overwritten.
        """
        profile = self.state.profile
        if profile is None:
            return AuthResult.failure("not_authenticated", "Please sign in again.")
        if new_role not in SELECTABLE_VOLUNTEER_ROLES:
            return AuthResult.failure("invalid_role", "Please select a role.")
        if new_role == TEAM_LEADER and team not in LEADABLE_TEAMS:
            return AuthResult.failure("team_required", "Please select a team to lead.")
        fields = {"role": new_role, "tl_team": team if new_role == TEAM_LEADER else None}
        try:
            updated = self._directory.update_profile(profile.id, fields, expect={"role": profile.role})
        except PreconditionFailedError:
            self.refresh_profile()
            return AuthResult.failure("role_changed", "Your role was changed elsewhere. Please review and try again.")
        except DirectoryError as exc:
            logger.warning("Role update failed: %s", exc.code)
            return AuthResult.failure("update_failed", "Failed to update role. Please try again.")
        self._set(profile=updated, profile_error=None)
        return AuthResult(ok=True, identity=self.state.identity, profile=updated)

    # --- notifications ---------------------------------------------------
    def _on_auth_event(self, event: str, identity_id: Optional[str]) -> None:
        if self._disposed:
            return
        identity = self.state.identity
        if identity is None or identity_id != identity.id:
            return
        if event in (SIGNED_OUT, USER_DELETED):
            self._clear()
            return
        self.refresh_profile()

    def _on_profile_changed(self, profile: Profile) -> None:
        if self._disposed:
            return
        identity = self.state.identity
        if identity is None or profile.id != identity.id:
            return
        self._set(profile=profile, profile_error=None)

    def dispose(self) -> None:
        """Release subscriptions; later notifications are ignored."""
        with self._lock:
            self._disposed = True
            sub, self._profile_sub = self._profile_sub, None
        self._auth_sub.dispose()
        if sub is not None:
            sub.dispose()

    def __enter__(self) -> "IdentityManager":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.dispose()


__all__ = [
    "AuthState",
    "AuthResult",
    "IdentityManager",
    "INVALID_CREDENTIALS",
    "GENERIC_SIGN_IN_MESSAGE",
    "RESET_LINK_INVALID_MESSAGE",
]
