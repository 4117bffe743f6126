"""Pytest fixtures for the shop API tests."""

import os

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SMTP_HOST"] = ""
os.environ["PAYMENT_WEBHOOK_SECRET"] = "whsec_test"

import pytest
from fastapi.testclient import TestClient

from database import Base, SessionLocal, engine
from main import app
from models.product import Product, Category
from models.users import User
from utils.hashing import get_password_hash
from utils.notifier import get_notifier
from utils.payment_client import PaymentClient, PaymentGatewayError, get_payment_client
from utils.tokenJWT import create_access_token


class FakeGateway(PaymentClient):
    """Payment client that records calls instead of reaching the network."""

    def __init__(self):
        super().__init__()
        self.fail = False
        self.created = []
        self.cancelled = []

    async def create_payment_intent(self, amount, currency, metadata=None):
        if self.fail:
            raise PaymentGatewayError("card declined")
        self.created.append({"amount": amount, "currency": currency, "metadata": metadata})
        return {
            "id": f"pi_test_{len(self.created)}",
            "status": "requires_payment_method",
            "client_secret": f"pi_test_{len(self.created)}_secret",
        }

    async def cancel_payment_intent(self, intent_id):
        self.cancelled.append(intent_id)


class RecordingNotifier:
    def __init__(self):
        self.fail = False
        self.sent = []

    def send(self, notice):
        if self.fail:
            raise ConnectionError("SMTP server unreachable")
        self.sent.append(notice)


@pytest.fixture(autouse=True)
def fresh_database():
    """Recreate every table so each test starts from an empty shop."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def client(gateway, notifier):
    app.dependency_overrides[get_payment_client] = lambda: gateway
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    """Create a user and return (user_id, auth headers)."""
    def _make(email="alice@mobileshop.com", role="customer", name="Alice"):
        user = User(email=email, password_hash=get_password_hash("secret123"), role=role, name=name)
        db.add(user)
        db.commit()
        token = create_access_token({"sub": user.email, "role": user.role})
        return user.id, {"Authorization": f"Bearer {token}"}
    return _make


@pytest.fixture
def customer(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(email="admin@mobileshop.com", role="admin", name="Admin")


@pytest.fixture
def make_product(db):
    counter = {"n": 0}

    def _make(name="Pixel 9", price=100.0, stock=5, discount_price=None, active=True, category=None):
        counter["n"] += 1
        product = Product(
            name=name,
            sku=f"SKU-{counter['n']:04d}",
            brand="Google",
            price=price,
            discount_price=discount_price,
            stock=stock,
            sold=0,
            active=active,
            category=category,
        )
        db.add(product)
        db.commit()
        return product.id
    return _make


@pytest.fixture
def make_category(db):
    def _make(name="Smartphones", slug="smartphones"):
        category = Category(name=name, slug=slug)
        db.add(category)
        db.commit()
        return category
    return _make


@pytest.fixture
def fetch(db):
    """Re-read a row from the database, bypassing the session cache."""
    def _fetch(model, pk):
        db.expire_all()
        return db.get(model, pk)
    return _fetch


SHIPPING = {
    "street": "1 Infinite Loop",
    "city": "Cupertino",
    "state": "CA",
    "country": "United States",
    "zip_code": "95014",
    "phone": "555-0100",
}


@pytest.fixture
def checkout(client):
    """Place an order for the given user with the default shipping address."""
    def _checkout(headers, payment_method="cod", **extra):
        body = {"shipping_address": SHIPPING, "payment_method": payment_method, **extra}
        return client.post("/orders", json=body, headers=headers)
    return _checkout
