"""
SupabaseDirectory against a stub supabase client.

Covers the column mapping, PostgREST error translation, the conditional
single-row update used by check-in, session capacity and local token checks.
"""
from __future__ import annotations

import time
from types import SimpleNamespace

import pytest
from jose import jwt

from identity_access import directory_supabase as mod
from identity_access.directory import (
    AuthFailedError,
    CapacityError,
    ConflictError,
    DirectoryError,
    NotFoundError,
    PreconditionFailedError,
)
from identity_access.directory_memory import InMemoryDirectory
from identity_access.tokens import TokenConfig

URL = "https://project.supabase.co"
SECRET = "project-jwt-secret-for-tests-only"


class _PgError(Exception):
    def __init__(self, code):
        super().__init__(f"pg error {code}")
        self.code = code


def _as_filter(value):
    if isinstance(value, bool):
        return "true" if value else "false"
    return None if value is None else str(value)


class _Query:
    def __init__(self, table):
        self._table = table
        self._op = "select"
        self._payload = None
        self._filters = []

    def select(self, _cols):
        return self

    def limit(self, _n):
        return self

    def eq(self, column, value):
        self._filters.append((column, str(value)))
        return self

    def is_(self, column, _null):
        self._filters.append((column, None))
        return self

    def insert(self, row):
        self._op, self._payload = "insert", dict(row)
        return self

    def update(self, row):
        self._op, self._payload = "update", dict(row)
        return self

    def delete(self):
        self._op = "delete"
        return self

    def _matches(self, row):
        return all(_as_filter(row.get(col)) == val for col, val in self._filters)

    def execute(self):
        rows = self._table["rows"]
        if self._op == "insert":
            for col in self._table["unique"]:
                value = self._payload.get(col)
                if value is not None and any(r.get(col) == value for r in rows):
                    raise _PgError("23505")
            rows.append(dict(self._payload))
            return SimpleNamespace(data=[dict(self._payload)])
        matched = [r for r in rows if self._matches(r)]
        if self._op == "update":
            for r in matched:
                r.update(self._payload)
        if self._op == "delete":
            self._table["rows"] = [r for r in rows if not self._matches(r)]
        return SimpleNamespace(data=[dict(r) for r in matched])


class _Client:
    def __init__(self):
        self.tables = {
            "users_profiles": {"rows": [], "unique": ("id", "personal_id")},
            "sessions": {"rows": [], "unique": ("id",)},
            "attendances": {"rows": [], "unique": ()},
        }
        self.get_user_calls = []
        self.password_updates = []
        self.rpc_results = {}
        admin = SimpleNamespace(sign_out=lambda *a: None, update_user_by_id=self._update_user)
        self.auth = SimpleNamespace(get_user=self._get_user, admin=admin)

    def table(self, name):
        return _Query(self.tables[name])

    def rpc(self, name):
        result = self.rpc_results[name]

        def execute():
            if isinstance(result, Exception):
                raise result
            return SimpleNamespace(data=result)

        return SimpleNamespace(execute=execute)

    def _update_user(self, user_id, attrs):
        self.password_updates.append((user_id, attrs["password"]))

    def _get_user(self, token):
        self.get_user_calls.append(token)
        return SimpleNamespace(user=SimpleNamespace(id="remote-user", email="r@example.com", email_confirmed_at="now"))


class _Storage:
    def __init__(self, fail=False):
        self.fail = fail
        self.objects = {}

    def put_object(self, *, bucket, key, body, content_type):
        if self.fail:
            raise ConnectionError("down")
        self.objects[(bucket, key)] = body


def _directory(client=None, *, secret=SECRET, storage=None):
    return mod.SupabaseDirectory(
        url=URL,
        service_role_key="service",
        anon_key="anon",
        client=client or _Client(),
        storage=storage or _Storage(),
        token_config=TokenConfig(supabase_url=URL, jwt_secret=secret),
    )


def _token(secret=SECRET, sub="user-1"):
    now = int(time.time())
    claims = {"sub": sub, "aud": "authenticated", "iss": f"{URL}/auth/v1", "iat": now, "exp": now + 600, "email": "a@example.com"}
    return jwt.encode(claims, secret, algorithm="HS256")


def test_profile_columns_are_mapped_both_ways():
    client = _Client()
    directory = _directory(client)
    seen = []
    directory.subscribe_profile_changes("u1", seen.append)
    directory.create_profile("u1", {"first_name": "Mona", "class_year": "3", "how_did_hear": "friend", "volunteer_id": "29701012222222"})
    row = client.tables["users_profiles"]["rows"][0]
    assert row["class"] == "3"
    assert row["how_did_hear_about_event"] == "friend"
    assert row["reg_id"] == "29701012222222"
    profile = directory.get_profile("u1")
    assert (profile.class_year, profile.how_did_hear, profile.volunteer_id) == ("3", "friend", "29701012222222")
    assert [p.id for p in seen] == ["u1"]


def test_duplicate_profile_is_a_conflict_and_missing_profile_not_found():
    directory = _directory()
    directory.create_profile("u1", {"personal_id": "29801011234567"})
    with pytest.raises(ConflictError):
        directory.create_profile("u2", {"personal_id": "29801011234567"})
    with pytest.raises(NotFoundError):
        directory.get_profile("nobody")
    assert directory.find_profile_by_personal_id("29801011234567").id == "u1"


def test_conditional_update_only_applies_in_expected_state():
    directory = _directory()
    directory.create_profile("u1", {"event_entry": False, "building_entry": False})
    updated = directory.update_profile(
        "u1", {"event_entry": True}, expect={"event_entry": False, "building_entry": False}
    )
    assert updated.event_entry is True
    with pytest.raises(PreconditionFailedError):
        directory.update_profile("u1", {"event_entry": True}, expect={"event_entry": False, "building_entry": False})
    with pytest.raises(NotFoundError):
        directory.update_profile("ghost", {"event_entry": True})


def test_session_booking_capacity_duplicate_and_unknown():
    client = _Client()
    client.tables["sessions"]["rows"].append({"id": "s1", "title": "Keynote", "max_attendees": 1, "current_bookings": 1})
    client.tables["sessions"]["rows"].append({"id": "s2", "title": "Panel", "max_attendees": 0, "current_bookings": 5})
    client.tables["attendances"]["unique"] = ("user_id",)
    directory = _directory(client)
    with pytest.raises(CapacityError):
        directory.book_session("u1", "s1", "desk")
    booking = directory.book_session("u1", "s2", "desk")
    assert booking["scan_type"] == "booking"
    with pytest.raises(ConflictError):
        directory.book_session("u1", "s2", "desk")
    with pytest.raises(NotFoundError):
        directory.book_session("u1", "missing", "desk")


def test_tokens_are_verified_locally_when_possible():
    client = _Client()
    directory = _directory(client)
    ident = directory.resolve_identity(_token())
    assert ident.id == "user-1"
    assert client.get_user_calls == []
    with pytest.raises(AuthFailedError):
        directory.resolve_identity(_token(secret="forged-secret"))
    assert client.get_user_calls == []


def test_without_secret_the_auth_service_is_asked():
    client = _Client()
    directory = _directory(client, secret=None)
    token = _token()
    assert directory.resolve_identity(token).id == "remote-user"
    assert client.get_user_calls == [token]


def test_upload_failure_becomes_directory_error():
    directory = _directory(storage=_Storage(fail=True))
    with pytest.raises(DirectoryError) as exc:
        directory.upload_file("cvs", "u1/1-t.pdf", b"x", "application/pdf")
    assert exc.value.code == "upload_failed"


def test_credential_calls_use_a_fresh_anon_client(monkeypatch: pytest.MonkeyPatch):
    created = []

    def sign_in_with_password(_creds):
        raise RuntimeError("Invalid login credentials")

    def sign_up(_creds):
        return SimpleNamespace(user=SimpleNamespace(id="x", email="dup@example.com", identities=[]), session=None)

    def fake_create_client(url, key, options=None):
        created.append(key)
        return SimpleNamespace(auth=SimpleNamespace(sign_in_with_password=sign_in_with_password, sign_up=sign_up))

    monkeypatch.setattr(mod, "create_client", fake_create_client)
    directory = _directory()
    with pytest.raises(AuthFailedError):
        directory.verify_credential("a@example.com", "nope")
    with pytest.raises(ConflictError):
        directory.create_credential("dup@example.com", "secret123")
    assert created == ["anon", "anon"]


def test_wiring_prefers_memory_without_supabase(monkeypatch: pytest.MonkeyPatch):
    from directory_wiring import build_directory_from_env  # type: ignore

    monkeypatch.setenv("DIRECTORY_BACKEND", "memory")
    assert isinstance(build_directory_from_env(), InMemoryDirectory)


def test_wiring_fails_loudly_in_production(monkeypatch: pytest.MonkeyPatch):
    from directory_wiring import build_directory_from_env  # type: ignore

    def broken():
        raise RuntimeError("cannot reach project")

    monkeypatch.setenv("DIRECTORY_BACKEND", "supabase")
    monkeypatch.setenv("SUPABASE_URL", URL)
    monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "service")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "anon")
    monkeypatch.setattr(mod, "build_supabase_directory_from_env", broken)
    assert isinstance(build_directory_from_env(), InMemoryDirectory)
    monkeypatch.setenv("EVENTDESK_ENV", "prod")
    with pytest.raises(RuntimeError):
        build_directory_from_env()


def test_booking_removal_deletes_only_that_booking():
    client = _Client()
    client.tables["sessions"]["rows"].append({"id": "s1", "title": "Keynote", "max_attendees": 5, "current_bookings": 0})
    directory = _directory(client)
    directory.book_session("u1", "s1", "desk")
    directory.book_session("u2", "s1", "desk")
    directory.cancel_session_booking("u1", "s1")
    assert [r["user_id"] for r in client.tables["attendances"]["rows"]] == ["u2"]
    with pytest.raises(NotFoundError) as missing_booking:
        directory.cancel_session_booking("u1", "s1")
    assert missing_booking.value.code == "booking_not_found"
    with pytest.raises(NotFoundError) as missing_session:
        directory.cancel_session_booking("u2", "nope")
    assert missing_session.value.code == "session_not_found"


def test_registration_stats_accepts_row_or_list_and_reports_failure():
    client = _Client()
    directory = _directory(client)
    counters = {"total_registered": 12, "checked_in_today": "3", "inside_event": 2, "total_attendees": 9}
    client.rpc_results["get_registration_stats"] = counters
    assert directory.registration_stats() == {
        "total_registered": 12,
        "checked_in_today": 3,
        "inside_event": 2,
        "total_attendees": 9,
    }
    client.rpc_results["get_registration_stats"] = [counters]
    assert directory.registration_stats()["total_attendees"] == 9
    client.rpc_results["get_registration_stats"] = []
    with pytest.raises(DirectoryError):
        directory.registration_stats()
    client.rpc_results["get_registration_stats"] = ConnectionError("down")
    with pytest.raises(DirectoryError) as exc:
        directory.registration_stats()
    assert exc.value.code == "stats_unavailable"


def test_refresh_and_password_reset_use_the_anon_client(monkeypatch: pytest.MonkeyPatch):
    def refresh_session(token):
        if token != "rt-good":
            raise RuntimeError("Invalid Refresh Token")
        user = SimpleNamespace(id="u1", email="a@example.com", email_confirmed_at="now")
        return SimpleNamespace(user=user, session=SimpleNamespace(access_token="at-2", refresh_token="rt-2"))

    def verify_otp(params):
        if params != {"token_hash": "hash-ok", "type": "recovery"}:
            raise RuntimeError("Token has expired or is invalid")
        return SimpleNamespace(user=SimpleNamespace(id="u1"), session=None)

    def fake_create_client(url, key, options=None):
        return SimpleNamespace(auth=SimpleNamespace(refresh_session=refresh_session, verify_otp=verify_otp))

    monkeypatch.setattr(mod, "create_client", fake_create_client)
    client = _Client()
    directory = _directory(client)
    events = []
    directory.on_auth_state_change(lambda event, ident: events.append((event, ident)))

    ident = directory.refresh_credential("rt-good")
    assert (ident.id, ident.access_token, ident.refresh_token) == ("u1", "at-2", "rt-2")
    with pytest.raises(AuthFailedError):
        directory.refresh_credential("rt-bad")

    directory.complete_password_reset("hash-ok", "N3w!Passw0rd")
    assert client.password_updates == [("u1", "N3w!Passw0rd")]
    assert events == [("USER_UPDATED", "u1")]
    with pytest.raises(AuthFailedError) as exc:
        directory.complete_password_reset("hash-stale", "N3w!Passw0rd")
    assert exc.value.code == "invalid_reset_token"
    assert len(client.password_updates) == 1


def test_update_publishes_the_current_row():
    client = _Client()
    directory = _directory(client)
    directory.create_profile("u1", {"score": 1})
    seen = []
    directory.subscribe_profile_changes("u1", seen.append)
    original_table = client.table
    calls = []

    def table(name):
        calls.append(name)
        if len(calls) == 2:
            # Another writer commits between this update and its publish.
            client.tables["users_profiles"]["rows"][0]["score"] = 7
        return original_table(name)

    client.table = table
    written = directory.update_profile("u1", {"score": 5})
    assert written.score == 5
    assert [p.score for p in seen] == [7]
