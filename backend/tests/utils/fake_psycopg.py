"""
Lightweight psycopg stand-in for unit tests.

Provides ``install_fake_psycopg`` which monkeypatches a target module so that
``psycopg.connect`` returns an in-memory session table and ``psycopg.sql``
composes plain strings. Supports the subset of SQL used by DBSessionStore
(INSERT/SELECT/UPDATE/DELETE).
"""
from __future__ import annotations

import itertools
import time
import types
from dataclasses import dataclass
from typing import Dict, Optional


class _FakeSQL(str):
    def format(self, *args):  # type: ignore[override]
        return _FakeSQL(str.format(self, *(str(a) for a in args)))


def _fake_identifier(name: str) -> str:
    return f'"{name}"'


@dataclass
class _Record:
    identity_id: str
    access_token: str
    refresh_token: Optional[str]
    expires_at: int


class _FakeCursor:
    def __init__(self, store: Dict[str, _Record], now_func, ids) -> None:
        self._store = store
        self._row = None
        self._now = now_func
        self._ids = ids
        self.statements: list[str] = []

    def execute(self, stmt, params: tuple | list) -> None:
        sql_low = str(stmt).lower().strip()
        self.statements.append(sql_low)
        if sql_low.startswith("insert into"):
            identity_id, access_token, refresh_token, expires_at = params
            sid = f"fake-{next(self._ids)}"
            self._store[sid] = _Record(identity_id, access_token, refresh_token, int(expires_at))
            self._row = (sid,)
        elif sql_low.startswith("select"):
            sid = str(params[0])
            rec = self._store.get(sid)
            if rec and rec.expires_at > int(self._now()):
                self._row = (sid, rec.identity_id, rec.access_token, rec.refresh_token, rec.expires_at)
            else:
                self._row = None
        elif sql_low.startswith("update"):
            access_token, refresh_token, sid = params
            rec = self._store.get(str(sid))
            if rec is not None:
                rec.access_token, rec.refresh_token = access_token, refresh_token
            self._row = None
        elif sql_low.startswith("delete"):
            self._store.pop(str(params[0]), None)
            self._row = None
        else:
            raise AssertionError(f"Unexpected SQL in fake psycopg: {stmt}")

    def fetchone(self):
        return self._row

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class _FakeConn:
    def __init__(self, store: Dict[str, _Record], now_func, ids) -> None:
        self._store = store
        self._now = now_func
        self._ids = ids

    def cursor(self):
        return _FakeCursor(self._store, self._now, self._ids)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


def install_fake_psycopg(monkeypatch, target_module, now_func=time.time):
    """
    Patch ``target_module`` so psycopg operations go against an in-memory store.

    Returns the mutable dictionary acting as the backing table.
    """
    fake_store: Dict[str, _Record] = {}
    ids = itertools.count(1)

    def fake_connect(dsn: str, autocommit: bool | None = None):
        return _FakeConn(fake_store, now_func, ids)

    fake_psycopg = types.SimpleNamespace(connect=fake_connect)
    fake_sql = types.SimpleNamespace(SQL=_FakeSQL, Identifier=_fake_identifier)

    monkeypatch.setattr(target_module, "HAVE_PSYCOPG", True, raising=False)
    monkeypatch.setattr(target_module, "psycopg", fake_psycopg, raising=False)
    monkeypatch.setattr(target_module, "sql", fake_sql, raising=False)
    return fake_store


__all__ = ["install_fake_psycopg"]
