import os
import tempfile

# Settings are read at import time, so the environment goes first
_DB_DIR = tempfile.mkdtemp(prefix="darktides-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'storefront.db')}"
os.environ["COINBASE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["COINBASE_COMMERCE_API_KEY"] = "cb_test_key"
os.environ["RESEND_API_KEY"] = "re_test_key"
os.environ["NOTIFICATION_EMAIL"] = "orders@darktides.test"
os.environ["CONTACT_EMAIL"] = "contact@darktides.test"
os.environ["NOTIFICATION_RETRY_DELAY_SECONDS"] = "0"
os.environ["ADMIN_USERNAME"] = "admin"
os.environ["ADMIN_PASSWORD"] = "s3cret-pass"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["RESERVATION_CLEANUP_ENABLED"] = "false"
os.environ["SHIPPING_COST"] = "0"

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from darktides.core_settings import get_settings
from darktides.domain.models import Base, Product, DiscountCode
from darktides.infrastructure.db import engine, SessionLocal
from darktides.application.errors import PaymentProviderError
from darktides.api.deps import get_notifier, get_payment_gateway
from darktides.main import app

class FakeNotifier:
    def __init__(self):
        self.orders = []
        self.contacts = []

    def send_order_notification(self, order, payment_confirmation=None):
        self.orders.append({"order": order, "payment_confirmation": payment_confirmation})
        return True

    def send_contact_message(self, name, email, subject, message):
        self.contacts.append({"name": name, "email": email, "subject": subject, "message": message})
        return True

class FakePaymentGateway:
    def __init__(self):
        self.charges = []
        self.fail = False

    def create_charge(self, order_number, amount, customer_email, customer_name, items=None):
        if self.fail:
            raise PaymentProviderError("processor down")
        code = f"CHG{len(self.charges) + 1:04d}"
        self.charges.append({"order_number": order_number, "amount": amount, "code": code})
        return {
            "code": code,
            "hosted_url": f"https://commerce.coinbase.com/charges/{code}",
            "expires_at": "2030-01-01T00:00:00Z",
        }

@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    yield

@pytest.fixture
def settings():
    return get_settings()

@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()

@pytest.fixture
def notifier():
    return FakeNotifier()

@pytest.fixture
def gateway():
    return FakePaymentGateway()

@pytest.fixture
def client(notifier, gateway):
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()

@pytest.fixture
def catalog(db):
    products = [
        Product(id="bpc157-10", name="BPC-157 10mg", short_name="BPC-157", dosage="10 MG",
                sku="DT-BPC-010", price=Decimal("40.00"), stock_quantity=5, display_order=1),
        Product(id="tb500-10", name="TB-500 10mg", short_name="TB-500", dosage="10 MG",
                sku="DT-TB5-010", price=Decimal("55.00"), stock_quantity=0, display_order=2),
        Product(id="ghkcu-50", name="GHK-Cu 50mg", short_name="GHK-Cu", dosage="50 MG",
                sku="DT-GHK-050", price=Decimal("35.00"), stock_quantity=10, is_active=False, display_order=3),
        Product(id="sema-5", name="Semaglutide 5mg", short_name="Semaglutide", dosage="5 MG",
                sku="DT-SEM-005", price=Decimal("8.00"), stock_quantity=3, display_order=4),
    ]
    db.add_all(products)
    db.add_all([
        DiscountCode(code="SAVE10", discount_type="fixed", discount_value=Decimal("10")),
        DiscountCode(code="TEN", discount_type="percentage", discount_value=Decimal("10")),
        DiscountCode(code="OLD", discount_type="fixed", discount_value=Decimal("5"), is_active=False),
    ])
    db.commit()
    return {p.id: p for p in products}

@pytest.fixture
def admin_headers(client):
    resp = client.post("/admin/token", json={"username": "admin", "password": "s3cret-pass"})
    assert resp.status_code == 200
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}

@pytest.fixture
def customer():
    return {
        "first_name": "Ada",
        "last_name": "Lovelace",
        "email": "ada@example.com",
        "phone": "555-0100",
        "address": "1 Analytical Way",
        "city": "London",
        "state": "CA",
        "zip": "90210",
    }
