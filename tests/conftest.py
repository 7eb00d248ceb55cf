# tests/conftest.py
import hashlib
import hmac
import itertools
import json
import os
import tempfile

os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(tempfile.mkdtemp(prefix="billing-tests-"), "test.db")
os.environ.setdefault("SEED_DEFAULT_PLANS", "false")

import pytest
from fastapi.testclient import TestClient

from config import settings
from database import Base, SessionLocal, engine
from main import app
from auth.models import User
from auth.services import AuthService
from plan.models import Plan
from plan.services import PlanCatalog
from payment.gateway import get_gateway

KEY_ID = "rzp_test_key"
KEY_SECRET = "test_key_secret"
WEBHOOK_SECRET = "test_webhook_secret"


class FakeGateway:
    """Stands in for RazorpayClient; hands out sequential order ids."""

    def __init__(self):
        self.key_id = KEY_ID
        self.configured = True
        self.orders = []
        self._ids = itertools.count(1)

    def create_order(self, amount, currency, receipt, notes=None):
        order = {"id": f"order_test_{next(self._ids)}", "amount": amount, "currency": currency, "receipt": receipt}
        self.orders.append(order)
        return order


@pytest.fixture(autouse=True)
def razorpay_settings(monkeypatch):
    monkeypatch.setattr(settings, "RAZORPAY_KEY_ID", KEY_ID)
    monkeypatch.setattr(settings, "RAZORPAY_KEY_SECRET", KEY_SECRET)
    monkeypatch.setattr(settings, "RAZORPAY_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setattr(settings, "SMTP_SERVER", "")


@pytest.fixture(autouse=True)
def setup_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        PlanCatalog.seed_default_plans(db)
    finally:
        db.close()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def gateway():
    fake = FakeGateway()
    app.dependency_overrides[get_gateway] = lambda: fake
    yield fake
    app.dependency_overrides.pop(get_gateway, None)


@pytest.fixture
def client(gateway):
    return TestClient(app)


def make_user(db, email="user@example.com", role="user"):
    user = User(email=email, name=email.split("@")[0], role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def auth_headers(user):
    token = AuthService.create_access_token({"sub": user.email})
    return {"Authorization": f"Bearer {token}"}


def plan_by_name(db, name):
    return db.query(Plan).filter(Plan.name == name).one()


def checkout_signature(order_id, payment_id):
    return hmac.new(KEY_SECRET.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256).hexdigest()


def webhook_body(event, order_id, payment_id, amount, status="captured"):
    body = {
        "event": event,
        "payload": {
            "payment": {
                "entity": {
                    "id": payment_id,
                    "order_id": order_id,
                    "amount": amount,
                    "currency": "INR",
                    "status": status,
                }
            }
        },
    }
    raw = json.dumps(body).encode()
    signature = hmac.new(WEBHOOK_SECRET.encode(), raw, hashlib.sha256).hexdigest()
    return raw, signature


@pytest.fixture
def user(db):
    return make_user(db)
