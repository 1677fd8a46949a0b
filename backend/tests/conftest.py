"""
Pytest configuration for backend tests.

Why: Force AnyIO to use the asyncio backend and give every test a fresh
in-memory directory, session store and draft cache so state never leaks
between tests.
"""
import os
import sys
from pathlib import Path

import pytest

# Never reach out to a hosted project from unit tests.
os.environ.setdefault("DIRECTORY_BACKEND", "memory")

# Ensure modules in backend/ and backend/web are importable across tests
REPO_ROOT = Path(__file__).resolve().parents[2]
BACKEND_DIR = REPO_ROOT / "backend"
WEB_DIR = BACKEND_DIR / "web"
TESTS_DIR = BACKEND_DIR / "tests"
for p in (str(BACKEND_DIR), str(WEB_DIR), str(TESTS_DIR)):
    if p not in sys.path:
        sys.path.insert(0, p)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _clear_env_toggles(monkeypatch: pytest.MonkeyPatch):
    """Clear env-driven toggles that may leak across tests.

    Individual tests opt into prod semantics or proxy trust explicitly.
    """
    for var in (
        "EVENTDESK_ENV",
        "EVENTDESK_TRUST_PROXY",
        "PROFILE_GRACE_SECONDS",
        "APP_LOADING_TIMEOUT_SECONDS",
        "SESSION_TTL_SECONDS",
        "MAX_ATTACHMENT_BYTES",
        "DRAFT_TTL_SECONDS",
    ):
        monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture(autouse=True)
def _reset_app_state():
    """Give the web app a fresh directory and stores per test.

    Tests reach the directory through `main.app.state.directory`.
    """
    try:
        import main  # type: ignore
        from guards import PROFILE_WAITS  # type: ignore
    except Exception:
        yield
        return

    from identity_access.directory_memory import InMemoryDirectory
    from identity_access.stores import SessionStore
    from registration.drafts import DraftCache

    main.SETTINGS.override_environment(None)
    main.app.state.directory = InMemoryDirectory()
    main.app.state.session_store = SessionStore()
    main.app.state.drafts = DraftCache()
    PROFILE_WAITS.reset()
    yield
    main.SETTINGS.override_environment(None)
    PROFILE_WAITS.reset()
