"""Pytest configuration and shared fixtures.

This module provides:
- Development settings (no settle delay, output under tmp_path)
- Instant retries for the API client
- An in-memory events API (tests/fakes.py) behind httpx.MockTransport
- An authenticated session and a Notifier with non-expiring toasts
"""

# Set environment variables BEFORE any imports that trigger Settings validation
import os

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("API_BASE_URL", "http://api.test/api")

from collections.abc import AsyncGenerator

import httpx
import pytest

import core.api_client as api_client_module
from core.api_client import ApiClient
from core.auth import AuthSession
from core.config import clear_settings_cache
from schemas import UserProfile
from services.certificates_service import clear_verification_cache
from services.notifications import Notifier
from tests.fakes import BASE_URL, FakeBackend

# =============================================================================
# Settings
# =============================================================================


@pytest.fixture(autouse=True)
def _test_settings(monkeypatch, tmp_path):
    """Fresh settings per test, writing output under tmp_path."""
    monkeypatch.setenv("CERTIFICATE_SETTLE_DELAY", "0")
    monkeypatch.setenv("OUTPUT_DIR", str(tmp_path / "out"))
    clear_settings_cache()
    clear_verification_cache()
    yield
    clear_settings_cache()
    clear_verification_cache()


@pytest.fixture(autouse=True)
def _instant_retries(monkeypatch):
    """Retries keep their attempt count but skip the backoff sleeps."""
    monkeypatch.setattr(api_client_module, "_RETRY_INITIAL_WAIT", 0)
    monkeypatch.setattr(api_client_module, "_RETRY_MAX_WAIT", 0)
    monkeypatch.setattr(api_client_module, "_RETRY_JITTER", 0)


# =============================================================================
# Events API
# =============================================================================


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
async def http_client(backend: FakeBackend) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(backend)) as client:
        yield client


@pytest.fixture
def user() -> UserProfile:
    return UserProfile.model_validate(
        {"_id": "user_1", "name": "Asha Rao", "email": "asha@example.com"}
    )


@pytest.fixture
def session(user: UserProfile) -> AuthSession:
    return AuthSession(user=user, access_token="access-1", refresh_token="refresh-1")


@pytest.fixture
def api(session: AuthSession, http_client: httpx.AsyncClient) -> ApiClient:
    return ApiClient(session, base_url=BASE_URL, http_client=http_client)


@pytest.fixture
def notifier() -> Notifier:
    return Notifier(default_duration_ms=0)
