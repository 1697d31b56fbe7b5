"""Pytest configuration and fixtures."""

import os
import tempfile

# Settings are read once at import time, so the environment comes first
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("DATABASE_AUTO_CREATE_TABLES", "true")
os.environ.setdefault("TELEPHONY_PROVIDER", "mock")
os.environ.setdefault("TELEPHONY_VALIDATE_SIGNATURES", "false")
os.environ.setdefault("TELEPHONY_FROM_NUMBER", "+15005550006")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("DISPATCH_RECORDING_FETCH_DELAY_SECONDS", "0")
os.environ.setdefault("DISPATCH_BATCH_DELAY_MS", "0")
os.environ.setdefault("STORAGE_RECORDINGS_DIR", tempfile.mkdtemp(prefix="recordings-"))
os.environ.setdefault("INTERNAL_API_KEY", "test-internal-key")
os.environ.setdefault("PUBLIC_BASE_URL", "https://calls.example.com")

import pytest
from fastapi.testclient import TestClient

from call_orchestrator.database.session import close_db, get_session_factory, init_db
from call_orchestrator.main import app
from call_orchestrator.services.api_key_service import Principal
from call_orchestrator.services.mock_telephony_service import MockTelephonyProvider
from call_orchestrator.services.telephony_service import get_telephony_provider

INTERNAL_HEADERS = {"X-Internal-API-Key": "test-internal-key"}


@pytest.fixture
async def db():
    """Fresh in-memory database on the application's engine."""
    await init_db()
    yield
    await close_db()


@pytest.fixture
async def session(db):
    """Create test database session."""
    async with get_session_factory()() as session:
        yield session
        await session.rollback()


@pytest.fixture
def mock_provider():
    """A fresh mock telephony provider."""
    return MockTelephonyProvider()


@pytest.fixture
def principal():
    return Principal(account_id="acct_test", api_key_id="key_test")


@pytest.fixture
def client(mock_provider):
    """Test client with the mock provider injected; the lifespan creates a fresh database."""
    app.dependency_overrides[get_telephony_provider] = lambda: mock_provider
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def api_key(client):
    """Raw API key for ``acct_test``, issued through the internal endpoint."""
    response = client.post(
        "/api/v1/api-keys",
        json={"accountId": "acct_test", "name": "tests"},
        headers=INTERNAL_HEADERS,
    )
    assert response.status_code == 201
    return response.json()["key"]


@pytest.fixture
def auth_headers(api_key):
    return {"X-API-Key": api_key}
