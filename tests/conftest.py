import os
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing the app
os.environ["APP_ENV"] = "dev"
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("WHATSAPP_DRY_RUN", "true")
os.environ.pop("OPENAI_API_KEY", None)  # Extraction is always faked in tests
os.environ.pop("ADMIN_API_KEY", None)

# Import all models so Base.metadata includes every table
import leadcapture.db.models as _models  # noqa: F401, E402
import leadcapture.db.session as _db_session  # noqa: E402
from leadcapture.constants.conversation import ConversationState  # noqa: E402
from leadcapture.constants.statuses import STATUS_QUALIFYING  # noqa: E402
from leadcapture.db.base import Base  # noqa: E402
from leadcapture.db.deps import get_db  # noqa: E402
from leadcapture.db.models import Lead, LeadConversation, Tenant  # noqa: E402
from leadcapture.main import app  # noqa: E402
from leadcapture.services.messaging.message_composer import reset_cache  # noqa: E402
from tests.helpers.lead_flow import CUSTOMER_PHONE, OWNER_PHONE  # noqa: E402

SQLALCHEMY_DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///:memory:")

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# The worker opens its own sessions; point it at the same in-memory DB
_db_session.engine = engine
_db_session.SessionLocal = TestingSessionLocal

# Every module that sends WhatsApp messages imports send_text_message directly
SEND_TARGETS = [
    "leadcapture.services.reminders.send_text_message",
    "leadcapture.services.conversation.outreach.send_text_message",
    "leadcapture.services.conversation.turns.send_text_message",
    "leadcapture.services.messaging.notifications.send_text_message",
]


@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db):
    """Create a test client with database dependency override."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_composer():
    """Copy is cached globally; start each test from the real copy files."""
    reset_cache()
    yield
    reset_cache()


@pytest.fixture
def mock_send(monkeypatch):
    """Patch every WhatsApp send; returns the shared AsyncMock."""
    mock = AsyncMock(return_value={"status": "sent", "message_id": "wamid.test", "to": CUSTOMER_PHONE})
    for target in SEND_TARGETS:
        monkeypatch.setattr(target, mock)
    return mock


@pytest.fixture
def tenant(db):
    tenant = Tenant(
        business_name="Dani Plumbing",
        owner_name="Dani",
        owner_phone=OWNER_PHONE,
        whatsapp_phone_number_id="1234567890",
        whatsapp_access_token="test_access_token",
        whatsapp_status="active",
    )
    db.add(tenant)
    db.commit()
    db.refresh(tenant)
    return tenant


@pytest.fixture
def lead(db, tenant):
    lead = Lead(tenant_id=tenant.id, customer_phone=CUSTOMER_PHONE, status=STATUS_QUALIFYING)
    db.add(lead)
    db.commit()
    db.refresh(lead)
    return lead


@pytest.fixture
def conversation(db, lead):
    convo = LeadConversation(lead_id=lead.id, state=ConversationState.AWAITING_RESPONSE)
    db.add(convo)
    db.commit()
    db.refresh(convo)
    return convo
