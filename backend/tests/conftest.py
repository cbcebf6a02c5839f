from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import StaticPool, create_engine
from sqlalchemy.orm import sessionmaker

import textdesk.models  # noqa: F401 (registers models with Base.metadata)
from textdesk.core.config import settings
from textdesk.core.database import Base, get_db
from textdesk.main import app as fastapi_app
from textdesk.models import Profile
from textdesk.services.auth import create_access_token
from textdesk.services.realtime import change_feed
from textdesk.services.telephony import BaseSmsProvider, SmsResult

# No pacing between sends in tests
settings.SMS_BATCH_SEND_DELAY_SECONDS = 0
settings.STATUS_POLL_DELAY_SECONDS = 0
settings.STATUS_POLL_ENABLED = False
settings.TWILIO_VALIDATE_WEBHOOKS = False

# In-memory SQLite for tests (no PostgreSQL dependency needed)
TEST_DATABASE_URL = "sqlite://"

engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(autouse=True)
def setup_db():
    """Create all tables before each test, drop after."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def reset_change_feed():
    yield
    for subscription_id in list(change_feed._subscriptions):
        change_feed.remove(subscription_id)


@pytest.fixture
def db():
    """Provide a test database session."""
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db):
    """TestClient with overridden DB dependency."""

    def _override_get_db():
        try:
            yield db
        finally:
            pass

    fastapi_app.dependency_overrides[get_db] = _override_get_db
    yield TestClient(fastapi_app)
    fastapi_app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


def _create_profile(db, **fields) -> Profile:
    profile = Profile(**fields)
    db.add(profile)
    db.commit()
    db.refresh(profile)
    return profile


@pytest.fixture
def make_profile(db):
    """Factory for extra profiles: ``make_profile(first_name="Sam", phone=...)``."""

    def _make(**fields) -> Profile:
        return _create_profile(db, **fields)

    return _make


@pytest.fixture
def admin(db) -> Profile:
    return _create_profile(db, first_name="Ada", last_name="Admin", email="ada@example.com", role="admin")


@pytest.fixture
def customer(db) -> Profile:
    """A consented customer with a phone on file."""
    return _create_profile(
        db,
        first_name="Jane",
        last_name="Doe",
        email="jane@example.com",
        phone="+15551234567",
        sms_consent=True,
        sms_consent_method="website",
    )


@pytest.fixture
def admin_headers(admin) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(admin.id)}"}


@pytest.fixture
def customer_headers(customer) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(customer.id)}"}


# ---------------------------------------------------------------------------
# Carrier
# ---------------------------------------------------------------------------


@pytest.fixture
def provider():
    """Carrier stub that accepts every message."""
    mock = MagicMock(spec=BaseSmsProvider)
    mock.name = "twilio"
    mock.default_from_number = "+15550001111"
    mock.send_sms = AsyncMock(
        return_value=SmsResult(
            message_id="SM_test_123",
            status="queued",
            from_number="+15550001111",
            to_number="+15551234567",
        )
    )
    mock.fetch_message = AsyncMock()
    return mock
