"""
Pytest configuration and fixtures for the backend tests.
"""
import os
import tempfile

# Settings are read at import time; configure the environment first
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-otp-signing")
os.environ.setdefault("ENVIRONMENT", "production")
os.environ.setdefault("USE_MONGO", "false")
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="salescentri-logs-"))

import pytest
from typing import List
from unittest.mock import AsyncMock, MagicMock
from fastapi.testclient import TestClient
from faker import Faker

from main import app
from api.dependencies import get_otp_service, get_mailer, get_privacy_identity
from core.config import settings
from services.otp_service import OtpService
from services.otp_store import SignedTokenVerifier, InMemoryConsumedTokenStore
from services.privacy_service import PrivacyIdentity
from services.rate_limiter import InMemoryRateLimiter

# Initialize Faker for test data generation
fake = Faker()

START_TIME = 1_700_000_000.0


class FakeClock:
    """Manually advanced replacement for time.time"""

    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeMailer:
    def __init__(self, configured: bool = True, result: bool = True):
        self.is_configured = configured
        self.result = result
        self.sent: List[dict] = []

    def send(self, subject, to_email, html_body, text_body=None, headers=None, from_email=None, from_name=None) -> bool:
        self.sent.append({
            "subject": subject,
            "to": to_email,
            "html": html_body,
            "text": text_body,
            "headers": headers,
            "from_email": from_email,
            "from_name": from_name,
        })
        return self.result

    async def send_async(self, *args, **kwargs) -> bool:
        return self.send(*args, **kwargs)


class FakeRecaptcha:
    def __init__(self, verdict: bool = True, configured: bool = True):
        self.verdict = verdict
        self.is_configured = configured
        self.tokens: List[str] = []

    async def verify(self, token: str) -> bool:
        self.tokens.append(token)
        return self.verdict


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def make_mailer():
    return FakeMailer


@pytest.fixture
def make_recaptcha():
    return FakeRecaptcha


@pytest.fixture
def recaptcha() -> FakeRecaptcha:
    return FakeRecaptcha()


@pytest.fixture
def rate_limiter(clock: FakeClock) -> InMemoryRateLimiter:
    return InMemoryRateLimiter(max_requests=3, window_seconds=15 * 60, clock=clock)


@pytest.fixture
def verify_limiter(clock: FakeClock) -> InMemoryRateLimiter:
    return InMemoryRateLimiter(max_requests=10, window_seconds=15 * 60, clock=clock, subject="verification attempts")


@pytest.fixture
def token_verifier(clock: FakeClock) -> SignedTokenVerifier:
    return SignedTokenVerifier(
        expiry_seconds=300,
        consumed_store=InMemoryConsumedTokenStore(clock=clock),
        max_attempts=3,
        clock=clock,
    )


def build_otp_service(rate_limiter, verifier, mailer, recaptcha=None, development: bool = False, verify_limiter=None) -> OtpService:
    return OtpService(
        rate_limiter=rate_limiter,
        verifier=verifier,
        mailer=mailer,
        recaptcha=recaptcha,
        verify_limiter=verify_limiter,
        otp_length=6,
        email_expiry_minutes=5,
        brand="SalesCentri",
        development=development,
    )


@pytest.fixture
def otp_service(rate_limiter, token_verifier, mailer, recaptcha, verify_limiter) -> OtpService:
    return build_otp_service(rate_limiter, token_verifier, mailer, recaptcha, verify_limiter=verify_limiter)


@pytest.fixture
def dev_otp_service(rate_limiter, token_verifier, mailer, recaptcha, verify_limiter) -> OtpService:
    return build_otp_service(rate_limiter, token_verifier, mailer, recaptcha, development=True, verify_limiter=verify_limiter)


@pytest.fixture
def privacy_identity() -> PrivacyIdentity:
    return PrivacyIdentity.from_settings(settings)


def _client_with(overrides: dict):
    app.dependency_overrides.update(overrides)
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def client(otp_service: OtpService, mailer: FakeMailer, privacy_identity: PrivacyIdentity):
    """Test client running in production mode with fake collaborators."""
    yield from _client_with({
        get_otp_service: lambda: otp_service,
        get_mailer: lambda: mailer,
        get_privacy_identity: lambda: privacy_identity,
    })


@pytest.fixture
def dev_client(dev_otp_service: OtpService, mailer: FakeMailer, privacy_identity: PrivacyIdentity):
    """Test client running in development mode (debug OTP in responses)."""
    yield from _client_with({
        get_otp_service: lambda: dev_otp_service,
        get_mailer: lambda: mailer,
        get_privacy_identity: lambda: privacy_identity,
    })


@pytest.fixture
def corporate_contact() -> dict:
    """A business email and phone number."""
    return {
        "email": f"{fake.user_name()}@{fake.domain_word()}-corp.com",
        "phone": "+1555" + fake.numerify("#######"),
    }


@pytest.fixture
def mock_mongo_db():
    """Mock MongoDB database for testing."""
    mock_db = MagicMock()
    for name in ("rate_limits", "verify_rate_limits", "otp_records", "consumed_otp_tokens"):
        collection = MagicMock()
        collection.find_one = AsyncMock(return_value=None)
        collection.find_one_and_update = AsyncMock(return_value=None)
        collection.find_one_and_delete = AsyncMock(return_value=None)
        collection.replace_one = AsyncMock()
        collection.update_one = AsyncMock()
        collection.delete_one = AsyncMock()
        collection.create_index = AsyncMock()
        setattr(mock_db, name, collection)
    mock_db.command = AsyncMock(return_value={"ok": 1})
    mock_db.__getitem__.side_effect = lambda name: getattr(mock_db, name)
    return mock_db

