import json
import os
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

TEST_JWT_SECRET = "test-supabase-jwt-secret-with-enough-length"
os.environ.setdefault("SUPABASE_JWT_SECRET", TEST_JWT_SECRET)
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DB_LOG_SLOW_QUERIES", "false")

from app import config  # noqa: E402
from app.database import Base, get_db  # noqa: E402
from app.domain.billing.stripe_service import get_stripe_service  # noqa: E402
from app.domain.contracts.access import issue_signing_token  # noqa: E402
from app.main import app  # noqa: E402
from app.models import Client, Company, Contract, ContractStatus, Contractor  # noqa: E402
from app.security_utils import hash_password_bcrypt  # noqa: E402

SAMPLE_CONTENT = "<p>The contractor will clean the premises weekly.</p><p>Payment is due on completion.</p>"


@pytest.fixture
def engine():
    """In-memory SQLite shared by every connection in a test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    """Database session for a single test."""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def jwt_secret(monkeypatch):
    monkeypatch.setattr(config, "SUPABASE_JWT_SECRET", TEST_JWT_SECRET)


@pytest.fixture(autouse=True)
def r2_client():
    """Object storage client; every upload succeeds and nothing is stored."""
    client = MagicMock()
    client.get_object.return_value = {"Body": MagicMock(read=MagicMock(return_value=b""))}
    client.generate_presigned_url.return_value = "https://r2.example.com/presigned/final.pdf"
    with patch("app.services.storage.get_r2_client", return_value=client):
        yield client


@pytest.fixture(autouse=True)
def sent_emails():
    """Outgoing email; the mock records every message instead of calling Resend."""
    with patch("app.email_service.send_email", new_callable=AsyncMock) as send_email:
        send_email.return_value = {"id": "email_test"}
        yield send_email


@pytest.fixture
def fake_stripe():
    stripe_client = MagicMock()
    stripe_client.currency = "usd"
    stripe_client.is_available.return_value = True
    stripe_client.create_deposit_checkout_session.return_value = {
        "id": "cs_test_123",
        "url": "https://checkout.stripe.com/c/pay/cs_test_123",
    }
    stripe_client.retrieve_payment_intent.return_value = {"id": "pi_test_123", "latest_charge": "ch_test_123"}
    stripe_client.create_customer.return_value = {"id": "cus_test_123"}
    stripe_client.charge_saved_payment_method.return_value = {
        "id": "pi_balance_123",
        "status": "succeeded",
        "latest_charge": "ch_balance_123",
    }
    stripe_client.construct_webhook_event.side_effect = lambda payload, sig_header: json.loads(payload)
    return stripe_client


@pytest.fixture
def client(db, fake_stripe):
    """Test client with overridden database and Stripe."""

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_stripe_service] = lambda: fake_stripe

    yield TestClient(app)

    app.dependency_overrides.clear()


# ============================================================================
# DATA
# ============================================================================


@pytest.fixture
def company(db):
    company = Company(name="Sparkle Cleaning Co", subscription_tier="pro", subscription_status="active")
    db.add(company)
    db.commit()
    db.refresh(company)
    return company


@pytest.fixture
def contractor(db, company):
    contractor = Contractor(
        auth_user_id="auth-user-1",
        company_id=company.id,
        email="owner@sparkle.example",
        name="Sam Owner",
    )
    db.add(contractor)
    db.commit()
    db.refresh(contractor)
    return contractor


@pytest.fixture
def client_record(db, company):
    record = Client(company_id=company.id, name="Jane Doe", email="jane@example.com")
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


@pytest.fixture
def make_contract(db, contractor, client_record):
    """
    Build a contract in a given status.

    Returns (contract, token); token is None for drafts.
    """

    def _make(
        status=ContractStatus.SENT,
        deposit_amount=0.0,
        total_amount=500.0,
        requires_contractor_signature=False,
        password=None,
        issued_at=None,
        **extra,
    ):
        extra.setdefault("field_values", {"frequency": "weekly"})
        contract = Contract(
            company_id=contractor.company_id,
            contractor_id=contractor.id,
            client_id=client_record.id,
            title="Weekly Office Cleaning",
            content=SAMPLE_CONTENT,
            status=status,
            deposit_amount=deposit_amount,
            total_amount=total_amount,
            requires_contractor_signature=requires_contractor_signature,
            password_hash=hash_password_bcrypt(password) if password else None,
            **extra,
        )
        token = None
        if status != ContractStatus.DRAFT:
            token = issue_signing_token(contract, issued_at)
        db.add(contract)
        db.commit()
        db.refresh(contract)
        return contract, token

    return _make


def make_session_token(auth_user_id: str, expires_in: timedelta = timedelta(hours=1)) -> str:
    now = datetime.utcnow()
    return jwt.encode(
        {"sub": auth_user_id, "aud": "authenticated", "iat": now, "exp": now + expires_in},
        TEST_JWT_SECRET,
        algorithm="HS256",
    )


@pytest.fixture
def auth_headers(contractor):
    return {"Authorization": f"Bearer {make_session_token(contractor.auth_user_id)}"}
