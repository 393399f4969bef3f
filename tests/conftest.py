"""Shared test fixtures.

Provides:
- ``set_test_config`` — autouse fixture that patches common settings
- ``MOCK_USER`` / ``USER_ID`` / ``REPO_ID`` / ``SCAN_ID`` — reusable IDs
- ``auth_header`` — helper to generate JWT auth headers
- ``make_file`` — helper to build ``ChangedFile`` objects of a given size
- ``provider_http`` — routes provider adapter traffic to a ``MockTransport``
"""

from uuid import UUID

import httpx
import pytest

from diffguard.auth import create_token
from diffguard.services.scan.models import ChangedFile


def pytest_configure(config):
    config.addinivalue_line(
        "markers",
        "integration: tests requiring external services (database, providers)",
    )


# ---------------------------------------------------------------------------
# Canonical test identifiers
# ---------------------------------------------------------------------------

USER_ID = "22222222-2222-2222-2222-222222222222"
REPO_ID = UUID("33333333-3333-3333-3333-333333333333")
SCAN_ID = UUID("44444444-4444-4444-4444-444444444444")

MOCK_USER: dict = {
    "id": UUID(USER_ID),
    "email": "dev@example.com",
    "display_name": "Dev",
}

MOCK_REPOSITORY: dict = {
    "id": REPO_ID,
    "user_id": UUID(USER_ID),
    "name": "octocat/hello-world",
    "provider": "github",
}

MOCK_CREDENTIAL: dict = {
    "provider": "github",
    "access_token": "gho_testtoken123",
    "username": None,
    "organization": None,
}

# ---------------------------------------------------------------------------
# Environment patching
# ---------------------------------------------------------------------------

_SETTINGS_PATCHES: dict[str, object] = {
    "diffguard.config.settings.JWT_SECRET": "test-secret-key-for-unit-tests",
    "diffguard.config.settings.FRONTEND_URL": "http://localhost:5173",
    "diffguard.config.settings.LLM_PROVIDER": "anthropic",
    "diffguard.config.settings.ANTHROPIC_API_KEY": "test-key",
    "diffguard.config.settings.LLM_SCAN_MODEL": "test-model",
    "diffguard.config.settings.LLM_RETRY_BACKOFF_SECONDS": 0.0,
    "diffguard.config.settings.SCAN_BASE_BRANCH": "main",
    "diffguard.config.settings.SCAN_MAX_BATCH_BYTES": 60_000,
    "diffguard.config.settings.SCAN_MAX_FILES_PER_BATCH": 5,
    "diffguard.config.settings.SCAN_MAX_FILES_PER_DIFF_BATCH": 10,
    "diffguard.config.settings.SCAN_WINDOW_SIZE": 3,
    "diffguard.config.settings.PROGRESS_FILES_DISCOVERED": 25,
    "diffguard.config.settings.PROGRESS_ANALYSIS_CEILING": 95,
}


@pytest.fixture(autouse=True)
def set_test_config(monkeypatch):
    """Deterministic, non-production settings for every test."""
    for target, value in _SETTINGS_PATCHES.items():
        monkeypatch.setattr(target, value)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def auth_header(user_id: str = USER_ID) -> dict:
    """Return an ``Authorization`` header dict with a valid JWT."""
    token = create_token(user_id, "dev@example.com")
    return {"Authorization": f"Bearer {token}"}


def make_file(path: str, size: int, *, patch_size: int | None = None) -> ChangedFile:
    """A ChangedFile whose content (and optional patch) is *size* bytes of ASCII."""
    patch = "+" * patch_size if patch_size is not None else None
    return ChangedFile(path=path, content="x" * size, patch=patch)


@pytest.fixture
def provider_http(monkeypatch):
    """Route provider adapter traffic to a ``MockTransport`` handler.

    Usage: ``provider_http(handler)`` where *handler* maps an
    ``httpx.Request`` to an ``httpx.Response``.
    """
    def install(handler):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        monkeypatch.setattr("diffguard.providers.base._get_client", lambda: client)
        return client

    return install
