"""
Storage bootstrap: create missing private attachment buckets when opted in.

Unit-style; `requests.get/post` are monkeypatched so no network is used.
"""
from __future__ import annotations

import pytest

import storage.bootstrap as bootstrap


class _Resp:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        return self._payload


@pytest.fixture
def bootstrap_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("AUTO_CREATE_STORAGE_BUCKETS", "true")
    monkeypatch.setenv("SUPABASE_URL", "http://local.test:54321")
    monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "secret")
    monkeypatch.delenv("UNIVERSITY_IDS_BUCKET", raising=False)
    monkeypatch.delenv("CVS_BUCKET", raising=False)
    return monkeypatch


def test_creates_only_missing_buckets(bootstrap_env):
    posted = []

    def fake_get(url, headers, timeout):
        assert url == "http://local.test:54321/storage/v1/bucket"
        assert headers["Authorization"] == "Bearer secret"
        return _Resp(200, [{"id": "university-ids", "name": "university-ids"}])

    def fake_post(url, headers, json, timeout):
        posted.append(json)
        return _Resp(200, {"name": json["name"]})

    bootstrap_env.setattr(bootstrap.requests, "get", fake_get)
    bootstrap_env.setattr(bootstrap.requests, "post", fake_post)

    assert bootstrap.ensure_buckets_from_env() is True
    assert posted == [{"name": "cvs", "public": False}]


def test_disabled_or_missing_credentials_do_nothing(bootstrap_env):
    def boom(*args, **kwargs):
        raise AssertionError("no HTTP expected")

    bootstrap_env.setattr(bootstrap.requests, "get", boom)
    bootstrap_env.setattr(bootstrap.requests, "post", boom)
    bootstrap_env.setenv("AUTO_CREATE_STORAGE_BUCKETS", "false")
    assert bootstrap.ensure_buckets_from_env() is False
    bootstrap_env.setenv("AUTO_CREATE_STORAGE_BUCKETS", "true")
    bootstrap_env.delenv("SUPABASE_SERVICE_ROLE_KEY")
    assert bootstrap.ensure_buckets_from_env() is False


def test_failed_listing_and_creation_are_logged_not_raised(bootstrap_env, caplog):
    def failing_get(url, headers, timeout):
        raise bootstrap.requests.ConnectionError("refused")

    def failing_post(url, headers, json, timeout):
        return _Resp(500, {})

    bootstrap_env.setattr(bootstrap.requests, "get", failing_get)
    bootstrap_env.setattr(bootstrap.requests, "post", failing_post)
    with caplog.at_level("WARNING", logger="eventdesk.storage"):
        created = bootstrap.ensure_buckets("http://local.test:54321", "secret", ["cvs", "university-ids", "cvs"])
    assert created == []
    assert "list buckets failed" in caplog.text
    assert "create bucket 'cvs' failed: status=500" in caplog.text
