"""
Supabase adapter for the RemoteDirectory port.

Why:
    Supabase is the hosted auth + Postgres + storage service the event runs on.
    This adapter keeps supabase-py specifics (response shapes, PostgREST error
    codes, client options) out of the identity, registration and check-in code.

Clients:
    - A service-role client for admin auth calls, table access and storage.
    - A fresh anon client per credential operation, created with
      `persist_session=False` so no user session leaks between requests.

Tokens:
    Cached access tokens are verified locally with python-jose (HS256 secret or
    JWKS) when possible; otherwise the auth service is asked (`auth.get_user`).

Realtime:
    The synchronous supabase-py client has no realtime channel support.
    Profile-change and auth-state notifications are fanned out in-process via
    a `ChangeFeed` for every write made through this adapter.

Security:
    Never log credentials, tokens or personal data; only exception class names.
"""
from __future__ import annotations

import logging
import os
from typing import Any, Dict, Mapping, Optional

from supabase import Client, ClientOptions, create_client

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
    profile_row,
)
from identity_access.domain import Identity, Profile
from identity_access.tokens import (
    AccessTokenVerificationError,
    JWKSCache,
    TokenConfig,
    load_token_config,
    verify_access_token,
)
from storage.ports import BinaryWriteStorage
from storage.supabase_storage import SupabaseObjectStorage

logger = logging.getLogger("eventdesk.identity_access")

UNIQUE_VIOLATION = "23505"

# Codes that mean "cannot verify locally"; fall back to the auth service.
_LOCAL_VERIFY_UNAVAILABLE = {"no_verification_key", "jwks_fetch_failed", "jwks_invalid"}


def _pg_code(exc: Exception) -> Optional[str]:
    code = getattr(exc, "code", None)
    return str(code) if code is not None else None


def _filter_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _identity_from_auth(res: Any) -> Identity:
    user = getattr(res, "user", None)
    session = getattr(res, "session", None)
    if user is None or not getattr(user, "id", None):
        raise AuthFailedError()
    return Identity(
        id=str(user.id),
        email=str(getattr(user, "email", "") or ""),
        access_token=getattr(session, "access_token", None),
        refresh_token=getattr(session, "refresh_token", None),
        email_confirmed=bool(getattr(user, "email_confirmed_at", None)),
    )


class SupabaseDirectory:
    def __init__(
        self,
        *,
        url: str,
        service_role_key: str,
        anon_key: str,
        profiles_table: str | None = None,
        sessions_table: str | None = None,
        bookings_table: str | None = None,
        reset_redirect_url: str | None = None,
        client: Client | None = None,
        storage: BinaryWriteStorage | None = None,
        token_config: TokenConfig | None = None,
        jwks_cache: JWKSCache | None = None,
    ) -> None:
        if not url or not service_role_key or not anon_key:
            raise RuntimeError("supabase_not_configured")
        self._url = url
        self._anon_key = anon_key
        self._client = client or create_client(url, service_role_key, options=self._options())
        self._storage = storage or SupabaseObjectStorage(self._client)
        self._profiles = profiles_table or os.getenv("PROFILES_TABLE", "users_profiles")
        self._sessions = sessions_table or os.getenv("SESSIONS_TABLE", "sessions")
        self._bookings = bookings_table or os.getenv("BOOKINGS_TABLE", "attendances")
        self._reset_redirect = reset_redirect_url or (os.getenv("PASSWORD_RESET_REDIRECT_URL") or "").strip() or None
        self._token_cfg = token_config or load_token_config()
        self._jwks = jwks_cache
        self.feed = ChangeFeed()

    @staticmethod
    def _options() -> ClientOptions:
        return ClientOptions(persist_session=False, auto_refresh_token=False)

    def _anon(self) -> Client:
        return create_client(self._url, self._anon_key, options=self._options())

    # --- credentials -----------------------------------------------------
    def verify_credential(self, email: str, password: str) -> Identity:
        try:
            res = self._anon().auth.sign_in_with_password({"email": email, "password": password})
        except Exception as exc:
            logger.info("Credential check rejected: %s", exc.__class__.__name__)
            raise AuthFailedError() from exc
        ident = _identity_from_auth(res)
        self.feed.publish_auth(SIGNED_IN, ident.id)
        return ident

    def resolve_identity(self, access_token: str) -> Identity:
        try:
            claims = verify_access_token(access_token=access_token, cfg=self._token_cfg, cache=self._jwks)
            return Identity(
                id=str(claims["sub"]),
                email=str(claims.get("email") or ""),
                access_token=access_token,
                email_confirmed=True,
            )
        except AccessTokenVerificationError as exc:
            if exc.code not in _LOCAL_VERIFY_UNAVAILABLE:
                raise AuthFailedError("invalid_token") from exc
        try:
            res = self._client.auth.get_user(access_token)
        except Exception as exc:
            raise AuthFailedError("invalid_token") from exc
        if res is None:
            raise AuthFailedError("invalid_token")
        ident = _identity_from_auth(res)
        return Identity(id=ident.id, email=ident.email, access_token=access_token, email_confirmed=ident.email_confirmed)

    def revoke_credential(self, access_token: str) -> None:
        identity_id = None
        try:
            identity_id = self.resolve_identity(access_token).id
        except AuthFailedError:
            pass
        try:
            self._client.auth.admin.sign_out(access_token, "global")
        except Exception as exc:
            raise DirectoryError("revoke_failed") from exc
        if identity_id:
            self.feed.publish_auth(SIGNED_OUT, identity_id)

    def refresh_credential(self, refresh_token: str) -> Identity:
        try:
            res = self._anon().auth.refresh_session(refresh_token)
        except Exception as exc:
            logger.info("Token refresh rejected: %s", exc.__class__.__name__)
            raise AuthFailedError("invalid_refresh_token") from exc
        if res is None:
            raise AuthFailedError("invalid_refresh_token")
        return _identity_from_auth(res)

    def create_credential(self, email: str, password: str) -> Identity:
        try:
            res = self._anon().auth.sign_up({"email": email, "password": password})
        except Exception as exc:
            message = str(exc).lower()
            if "already" in message or "exists" in message:
                raise ConflictError("email_taken") from exc
            raise DirectoryError("credential_create_failed") from exc
        user = getattr(res, "user", None)
        # Supabase hides existing accounts behind a user without identities.
        if user is not None and getattr(user, "identities", None) == []:
            raise ConflictError("email_taken")
        return _identity_from_auth(res)

    def delete_credential(self, identity_id: str) -> None:
        try:
            self._client.auth.admin.delete_user(identity_id)
        except Exception as exc:
            if "not found" in str(exc).lower():
                raise NotFoundError() from exc
            raise DirectoryError("credential_delete_failed") from exc
        self.feed.publish_auth(USER_DELETED, identity_id)

    def send_password_reset_email(self, email: str) -> None:
        options = {"redirect_to": self._reset_redirect} if self._reset_redirect else {}
        try:
            self._anon().auth.reset_password_for_email(email, options)
        except Exception as exc:
            # The caller must not learn whether the account exists.
            logger.warning("Password reset request failed: %s", exc.__class__.__name__)

    def complete_password_reset(self, recovery_token: str, new_password: str) -> None:
        """Redeem the `token_hash` from a recovery link and set the new password."""
        try:
            res = self._anon().auth.verify_otp({"token_hash": recovery_token, "type": "recovery"})
        except Exception as exc:
            logger.info("Recovery token rejected: %s", exc.__class__.__name__)
            raise AuthFailedError("invalid_reset_token") from exc
        user = getattr(res, "user", None)
        if user is None or not getattr(user, "id", None):
            raise AuthFailedError("invalid_reset_token")
        try:
            self._client.auth.admin.update_user_by_id(str(user.id), {"password": new_password})
        except Exception as exc:
            raise DirectoryError("password_update_failed") from exc
        self.feed.publish_auth(USER_UPDATED, str(user.id))

    # --- profiles --------------------------------------------------------
    def _select_profile(self, column: str, value: str) -> Optional[Profile]:
        try:
            res = self._client.table(self._profiles).select("*").eq(column, value).limit(1).execute()
        except Exception as exc:
            raise DirectoryError("profile_read_failed") from exc
        rows = res.data or []
        return Profile.from_row(rows[0]) if rows else None

    def get_profile(self, identity_id: str) -> Profile:
        prof = self._select_profile("id", identity_id)
        if prof is None:
            raise NotFoundError("profile_not_found")
        return prof

    def find_profile_by_personal_id(self, personal_id: str) -> Optional[Profile]:
        return self._select_profile("personal_id", personal_id)

    def create_profile(self, identity_id: str, fields: Mapping[str, Any]) -> Profile:
        row = {**profile_row(fields), "id": identity_id}
        try:
            res = self._client.table(self._profiles).insert(row).execute()
        except Exception as exc:
            if _pg_code(exc) == UNIQUE_VIOLATION:
                raise ConflictError("profile_exists") from exc
            raise DirectoryError("profile_create_failed") from exc
        rows = res.data or [row]
        prof = Profile.from_row(rows[0])
        self.feed.publish_profile(prof)
        return prof

    def update_profile(
        self,
        identity_id: str,
        fields: Mapping[str, Any],
        *,
        expect: Optional[Mapping[str, Any]] = None,
    ) -> Profile:
        """Apply a single-row update, optionally guarded by column preconditions.

        The preconditions become additional filters on the same PATCH, so the
        row only changes when it is still in the expected state. An empty
        result then means either a missing row or a failed precondition.
        """
        query = self._client.table(self._profiles).update(profile_row(fields)).eq("id", identity_id)
        for column, value in profile_row(expect or {}).items():
            if value is None:
                query = query.is_(column, "null")
            else:
                query = query.eq(column, _filter_value(value))
        try:
            res = query.execute()
        except Exception as exc:
            # 23514: check constraint (building_entry requires event_entry)
            if _pg_code(exc) == "23514":
                raise PreconditionFailedError("building_requires_event") from exc
            raise DirectoryError("profile_update_failed") from exc
        rows = res.data or []
        if not rows:
            if expect and self._select_profile("id", identity_id) is not None:
                raise PreconditionFailedError()
            raise NotFoundError("profile_not_found")
        written = Profile.from_row(rows[0])
        self.feed.publish_latest(identity_id, lambda: self._latest(identity_id, written))
        return written

    def _latest(self, identity_id: str, written: Profile) -> Profile:
        try:
            return self._select_profile("id", identity_id) or written
        except DirectoryError:
            logger.warning("Profile re-read after update failed; publishing the written row")
            return written

    def subscribe_profile_changes(self, identity_id: str, callback) -> Subscription:
        return self.feed.subscribe_profile(identity_id, callback)

    def on_auth_state_change(self, callback) -> Subscription:
        return self.feed.on_auth_state_change(callback)

    # --- storage ---------------------------------------------------------
    def upload_file(self, bucket: str, path: str, body: bytes, content_type: str) -> str:
        try:
            self._storage.put_object(bucket=bucket, key=path, body=body, content_type=content_type)
        except Exception as exc:
            logger.warning("Upload to bucket %s failed: %s", bucket, exc.__class__.__name__)
            raise DirectoryError("upload_failed") from exc
        return path

    # --- event sessions --------------------------------------------------
    def get_event_session(self, session_id: str) -> Dict[str, Any]:
        try:
            res = (
                self._client.table(self._sessions)
                .select("id, title, max_attendees, current_bookings")
                .eq("id", session_id)
                .limit(1)
                .execute()
            )
        except Exception as exc:
            raise DirectoryError("session_read_failed") from exc
        rows = res.data or []
        if not rows:
            raise NotFoundError("session_not_found")
        return dict(rows[0])

    def book_session(self, profile_id: str, session_id: str, scanned_by: Optional[str]) -> Dict[str, Any]:
        session = self.get_event_session(session_id)
        capacity = session.get("max_attendees") or 0
        if capacity and int(session.get("current_bookings") or 0) >= int(capacity):
            raise CapacityError()
        row = {"user_id": profile_id, "session_id": session_id, "scan_type": "booking", "scanned_by": scanned_by}
        try:
            res = self._client.table(self._bookings).insert(row).execute()
        except Exception as exc:
            if _pg_code(exc) == UNIQUE_VIOLATION:
                raise ConflictError("already_booked") from exc
            raise DirectoryError("booking_failed") from exc
        rows = res.data or [row]
        return dict(rows[0])

    def cancel_session_booking(self, profile_id: str, session_id: str) -> None:
        self.get_event_session(session_id)
        try:
            res = (
                self._client.table(self._bookings)
                .delete()
                .eq("user_id", profile_id)
                .eq("session_id", session_id)
                .execute()
            )
        except Exception as exc:
            raise DirectoryError("booking_cancel_failed") from exc
        if not res.data:
            raise NotFoundError("booking_not_found")

    def registration_stats(self) -> Dict[str, int]:
        """Counters from the `get_registration_stats` database function."""
        try:
            data = self._client.rpc("get_registration_stats").execute().data
        except Exception as exc:
            raise DirectoryError("stats_unavailable") from exc
        if isinstance(data, list):
            data = data[0] if data else None
        if not isinstance(data, dict):
            raise DirectoryError("stats_unavailable")
        keys = ("total_registered", "checked_in_today", "inside_event", "total_attendees")
        return {key: int(data.get(key) or 0) for key in keys}


def build_supabase_directory_from_env() -> SupabaseDirectory:
    return SupabaseDirectory(
        url=(os.getenv("SUPABASE_URL") or "").strip(),
        service_role_key=(os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip(),
        anon_key=(os.getenv("SUPABASE_ANON_KEY") or "").strip(),
    )


__all__ = ["SupabaseDirectory", "build_supabase_directory_from_env"]
