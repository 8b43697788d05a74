"""
Shared fixtures for the Entra login tests.
"""

from typing import Any, Dict

import httpx
import pytest

from entra_login.config import ProviderConfig, Settings

from .fakes import CLIENT_ID, CLIENT_SECRET, ENDPOINTS, FRONTEND_URL, ISSUER, TENANT_ID, FakeEntra


@pytest.fixture
def fake_entra():
    """Fake provider answering through httpx.MockTransport"""
    return FakeEntra()


@pytest.fixture
def http_client(fake_entra):
    """httpx AsyncClient wired to the fake provider"""
    return httpx.AsyncClient(transport=httpx.MockTransport(fake_entra.handler))


@pytest.fixture
def make_settings():
    """Factory for Settings with Entra enabled; keyword arguments override fields"""
    def _make(**overrides) -> Settings:
        values: Dict[str, Any] = {
            "ENTRA_ENABLED": "true",
            "ENTRA_CLIENT_ID": CLIENT_ID,
            "ENTRA_CLIENT_SECRET": CLIENT_SECRET,
            "ENTRA_TENANT_ID": TENANT_ID,
            "FRONTEND_URL": FRONTEND_URL,
            "SESSION_JWT_SECRET": "test-session-secret-0123456789abcdef",
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make


@pytest.fixture
def mock_settings(make_settings):
    """Settings with Entra enabled and auto-provisioning off"""
    return make_settings()


@pytest.fixture
def provider_config():
    """Provider configuration with discovered endpoints"""
    return ProviderConfig(
        tenant_id=TENANT_ID,
        issuer_url=ISSUER,
        client_id=CLIENT_ID,
        client_secret=CLIENT_SECRET,
        endpoints=ENDPOINTS,
    )
