"""
DBSessionStore against a fake psycopg driver (or a real DSN via SESSION_TEST_DSN).

Keeps runs self-contained: the fake validates the SQL flow and row mapping
without a Postgres instance.
"""

from __future__ import annotations

import os

import pytest

from identity_access import stores_db as mod

from utils.fake_psycopg import install_fake_psycopg

SESSION_TEST_DSN = os.getenv("SESSION_TEST_DSN")


def _store(monkeypatch: pytest.MonkeyPatch):
    if SESSION_TEST_DSN:
        return mod.DBSessionStore(dsn=SESSION_TEST_DSN)
    install_fake_psycopg(monkeypatch, mod)
    return mod.DBSessionStore(dsn="fake://dsn")


def test_create_get_delete_roundtrip(monkeypatch: pytest.MonkeyPatch):
    store = _store(monkeypatch)
    rec = store.create(identity_id="user-1", access_token="at-1", refresh_token="rt-1", ttl_seconds=60)
    assert rec.session_id
    assert rec.ttl_seconds == 60

    got = store.get(rec.session_id)
    assert got is not None
    assert (got.identity_id, got.access_token, got.refresh_token) == ("user-1", "at-1", "rt-1")
    assert isinstance(got.expires_at, int)

    store.delete(rec.session_id)
    assert store.get(rec.session_id) is None


def test_get_filters_expired_sessions(monkeypatch: pytest.MonkeyPatch):
    store = _store(monkeypatch)
    rec = store.create(identity_id="u2", access_token="at-2", ttl_seconds=-10)
    assert store.get(rec.session_id) is None


def test_invalid_table_name_is_rejected(monkeypatch: pytest.MonkeyPatch):
    install_fake_psycopg(monkeypatch, mod)
    with pytest.raises(ValueError):
        mod.DBSessionStore(dsn="fake://dsn", table="bad;drop table")
    assert mod.DBSessionStore(dsn="fake://dsn", table="public.app_sessions") is not None


def test_missing_dsn_raises_runtime_error(monkeypatch: pytest.MonkeyPatch):
    install_fake_psycopg(monkeypatch, mod)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_DB_URL", raising=False)
    with pytest.raises(RuntimeError):
        mod.DBSessionStore()


def test_update_tokens_replaces_cached_pair(monkeypatch: pytest.MonkeyPatch):
    store = _store(monkeypatch)
    rec = store.create(identity_id="u3", access_token="at-old", refresh_token="rt-old", ttl_seconds=60)
    store.update_tokens(rec.session_id, access_token="at-new", refresh_token="rt-new")
    got = store.get(rec.session_id)
    assert got is not None
    assert (got.identity_id, got.access_token, got.refresh_token) == ("u3", "at-new", "rt-new")
