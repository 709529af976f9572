"""Pytest configuration and fixtures."""

import os
import time
from collections.abc import Callable, Generator
from typing import Any
from unittest.mock import MagicMock, patch

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import ec
from fastapi.testclient import TestClient
from jwt.algorithms import ECAlgorithm

from tests.fakes import FakeOrderStore

# Key pair standing in for the Supabase project signing key
_SIGNING_KEY = ec.generate_private_key(ec.SECP256R1())

# Set test environment variables before importing application modules
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
os.environ.setdefault("SUPABASE_SIGNING_KEY_JWK", ECAlgorithm.to_jwk(_SIGNING_KEY.public_key()))
os.environ.setdefault("FEDEX_WEBHOOK_SECRET", "fedex-test-secret")
os.environ.setdefault("SHIPROCKET_WEBHOOK_TOKEN", "shiprocket-test-token")
os.environ.setdefault("UPS_WEBHOOK_SECRET", "ups-test-secret")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_stripe_secret_key")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_webhook_secret")
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "rzp_test_secret")
os.environ.setdefault("RAZORPAY_WEBHOOK_SECRET", "rzp-webhook-secret")
os.environ.setdefault("OPTIMISTIC_UPDATE_MAX_ATTEMPTS", "3")
os.environ.setdefault("CARRIER_MAX_RETRIES", "2")


@pytest.fixture(scope="session")
def test_settings() -> Generator[Any, None, None]:
    """Provide test settings with cleared cache.

    Yields:
        Settings: Test configuration settings.
    """
    from src.core.config import get_settings

    get_settings.cache_clear()

    settings = get_settings()
    yield settings

    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def no_backoff() -> Generator[None, None, None]:
    """Make outbound retries immediate."""
    with patch("src.core.http.MIN_WAIT_SECONDS", 0), patch("src.core.http.MAX_WAIT_SECONDS", 0):
        yield


@pytest.fixture
def fake_store() -> FakeOrderStore:
    """Provide an empty in-memory order store."""
    return FakeOrderStore()


@pytest.fixture
def make_token() -> Callable[..., str]:
    """Issue signed access tokens the way Supabase Auth does."""

    def _make(user_id: str, role: str | None = None, expires_in: int = 3600) -> str:
        now = int(time.time())
        claims: dict[str, Any] = {
            "sub": user_id,
            "email": "user@example.com",
            "role": "authenticated",
            "aud": "authenticated",
            "iat": now,
            "exp": now + expires_in,
        }
        if role:
            claims["app_metadata"] = {"role": role}
        return jwt.encode(claims, _SIGNING_KEY, algorithm="ES256")

    return _make


@pytest.fixture
def auth_headers(make_token: Callable[..., str]) -> Callable[..., dict[str, str]]:
    """Build an Authorization header for a user."""

    def _headers(user_id: str, role: str | None = None) -> dict[str, str]:
        return {"Authorization": f"Bearer {make_token(user_id, role=role)}"}

    return _headers


@pytest.fixture
def mock_supabase_client() -> Generator[MagicMock, None, None]:
    """Provide a mocked Supabase client.

    Yields:
        MagicMock: Mocked Supabase client for testing.
    """
    mock_client = MagicMock()

    mock_response = MagicMock()
    mock_response.data = []
    mock_client.table.return_value.select.return_value.limit.return_value.execute.return_value = (
        mock_response
    )

    with patch("src.core.supabase.get_supabase_client", return_value=mock_client), \
         patch("src.services.order_store.get_supabase_client", return_value=mock_client):
        yield mock_client


@pytest.fixture
def client(mock_supabase_client: MagicMock) -> Generator[TestClient, None, None]:
    """Provide a test client for the FastAPI application.

    Args:
        mock_supabase_client: Mocked Supabase client fixture.

    Yields:
        TestClient: FastAPI test client.
    """
    from src.main import app

    with TestClient(app) as test_client:
        yield test_client
