import os
import sys
from datetime import timedelta
from decimal import Decimal

# ensure the project root is on path for tests
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

# configure before the application modules read settings
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["BREVO_API_KEY"] = ""
os.environ["RAZORPAY_KEY_ID"] = ""
os.environ["RAZORPAY_KEY_SECRET"] = ""

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from config import settings
from database import get_session
from dependencies import get_payment_gateway
from exceptions import PaymentGatewayError
from main import app
from models import Base, Campaign, Donation, Donor
from models.donation import PaymentStatus, RiskLevel
from services.donation_service import compute_fee, generate_receipt_number
from services.settlement_service import compute_payment_signature
from utils.clock import utcnow

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


class FakeGateway:
    """In-memory stand-in for the Razorpay adapter."""

    key_id = "rzp_test_key"
    key_secret = "test_gateway_secret"

    def __init__(self):
        self.fail_create = False
        self.payment_method = "upi"
        self.orders = []
        self.refunds = []

    @property
    def signature_secret(self):
        return self.key_secret

    def create_order(self, amount, currency, receipt):
        if self.fail_create:
            raise PaymentGatewayError(details={"error": "gateway unavailable"})
        order = {
            "id": f"order_test_{len(self.orders) + 1}",
            "amount": int(amount) * 100,
            "currency": currency,
            "receipt": receipt,
        }
        self.orders.append(order)
        return order

    def fetch_payment_details(self, payment_id):
        return {"id": payment_id, "method": self.payment_method, "status": "captured"}

    def refund_payment(self, payment_id, amount=None):
        refund = {"id": f"rfnd_{len(self.refunds) + 1}", "payment_id": payment_id, "amount": amount}
        self.refunds.append(refund)
        return refund

    def sign(self, order_id, payment_id):
        return compute_payment_signature(self.key_secret, order_id, payment_id)


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(db, gateway):
    def override_get_session():
        session = TestingSessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def make_token(user_id, role="donor"):
    return jwt.encode({"id": user_id, "role": role}, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def auth_header(user_id, role="donor"):
    return {"Authorization": f"Bearer {make_token(user_id, role)}"}


def make_campaign(db, goal=100000, raised=0, owner=500, title="Help Asha walk again"):
    campaign = Campaign(
        title=title,
        beneficiary_name="Asha",
        goal_amount=Decimal(goal),
        raised_amount=Decimal(raised),
        contributors=0,
        created_by=owner,
        is_approved=True,
    )
    db.add(campaign)
    db.commit()
    return campaign


def make_donor(db, email="donor@example.com", name="Ravi Kumar", blocked=False):
    donor = Donor(name=name, email=email, phone="9999999999", is_blocked=blocked)
    db.add(donor)
    db.commit()
    return donor


def make_donation(
    db,
    campaign,
    amount=500,
    donor=None,
    email=None,
    ip_address="10.0.0.1",
    created_at=None,
    status=PaymentStatus.SUCCESS,
    method="razorpay",
):
    """Insert history directly, bypassing screening."""
    created_at = created_at or utcnow() - timedelta(hours=1)
    fee, net = compute_fee(amount)
    donation = Donation(
        donor_id=donor.id if donor else None,
        campaign_id=campaign.id,
        amount=amount,
        payment_status=status,
        payment_method=method,
        payment_id=f"pay_seed_{generate_receipt_number()}" if status == PaymentStatus.SUCCESS else None,
        receipt_number=generate_receipt_number(created_at),
        donor_name=donor.name if donor else "Guest",
        donor_email=(donor.email if donor else (email or "guest@example.com")).lower(),
        ip_address=ip_address,
        transaction_fee=fee,
        net_amount=net,
        risk_level=RiskLevel.LOW,
        created_at=created_at,
        updated_at=created_at,
    )
    db.add(donation)
    db.commit()
    return donation
