# tests/conftest.py
"""
Pytest configuration and fixtures shared by the MercadoBoom test-suite.

The application is pointed at a throwaway SQLite file before it is imported.
Every test starts from empty tables plus the startup seed data (admin account,
payment methods, transfer discount). Email, SMS and the MercadoPago gateway
are replaced by in-memory stubs so nothing leaves the process.
"""
import itertools
import os
import tempfile

_TEST_ROOT = tempfile.mkdtemp(prefix="mercadoboom-tests-")
os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(_TEST_ROOT, "test.db")
os.environ["OBJECT_STORAGE_DIR"] = os.path.join(_TEST_ROOT, "storage")
os.environ["APP_ENV"] = "test"
os.environ["STRUCTURED_LOGS_ENABLED"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["APP_URL"] = "http://tienda.test"
os.environ["MERCADOPAGO_ACCESS_TOKEN"] = ""
os.environ["MERCADOPAGO_WEBHOOK_SECRET"] = ""
os.environ["RESEND_API_KEY"] = ""
os.environ["TWILIO_ACCOUNT_SID"] = ""
os.environ["TWILIO_AUTH_TOKEN"] = ""

from decimal import Decimal

import pytest
from werkzeug.security import generate_password_hash

from mercadoboom.database import Base, SessionLocal
from mercadoboom.main import app
from mercadoboom.models import Address, Category, Product, User
from mercadoboom.observability.metrics import reset_metrics
from mercadoboom.seed import seed_defaults
from mercadoboom.services.notification_service import NotificationService, set_notifier
from mercadoboom.services.payment_service import PaymentGatewayError, set_gateway


class StubEmailSender:
    """Collects outgoing emails instead of calling Resend."""

    configured = True

    def __init__(self):
        self.outbox = []
        self.fail = False

    def send(self, to, subject, html, text=None):
        self.outbox.append({"to": to, "subject": subject, "html": html, "text": text})
        if self.fail:
            return False, "Resend unavailable"
        return True, None


class StubSmsSender:
    configured = True

    def __init__(self):
        self.sms = []
        self.whatsapp = []
        self.fail = False

    def send_sms(self, to, body):
        self.sms.append({"to": to, "body": body})
        return (False, "Twilio 21211: invalid number") if self.fail else (True, None)

    def send_whatsapp(self, to, body):
        self.whatsapp.append({"to": to, "body": body})
        return (False, "Twilio 63003: channel unavailable") if self.fail else (True, None)


class StubGateway:
    """Stands in for MercadoPagoGateway; payments are registered by the test."""

    def __init__(self):
        self.preferences = []
        self.payments = {}
        self.error = None

    def add_payment(
        self,
        payment_id,
        external_reference,
        status="approved",
        payment_type_id="credit_card",
        payment_method_id="visa",
    ):
        self.payments[str(payment_id)] = {
            "id": payment_id,
            "status": status,
            "external_reference": external_reference,
            "payment_type_id": payment_type_id,
            "payment_method_id": payment_method_id,
        }

    def create_preference(self, preference_data):
        if self.error:
            raise self.error
        self.preferences.append(preference_data)
        number = len(self.preferences)
        return {
            "id": f"pref-{number}",
            "init_point": f"https://mercadopago.test/checkout/pref-{number}",
            "sandbox_init_point": f"https://sandbox.mercadopago.test/checkout/pref-{number}",
        }

    def get_payment(self, payment_id):
        if self.error:
            raise self.error
        payment = self.payments.get(str(payment_id))
        if payment is None:
            raise PaymentGatewayError("MercadoPago respondió con estado 404", status=404)
        return payment


@pytest.fixture(autouse=True)
def clean_database():
    """Empty every table and restore the startup data."""
    session = SessionLocal()
    try:
        for table in reversed(Base.metadata.sorted_tables):
            session.execute(table.delete())
        session.commit()
        seed_defaults(session)
    finally:
        session.close()
    reset_metrics()
    set_gateway(None)
    yield
    set_gateway(None)


@pytest.fixture(autouse=True)
def notifier():
    service = NotificationService(email_sender=StubEmailSender(), sms_sender=StubSmsSender())
    set_notifier(service)
    yield service
    set_notifier(None)


@pytest.fixture
def gateway():
    stub = StubGateway()
    set_gateway(stub)
    return stub


@pytest.fixture
def db_session():
    """Create a fresh database session for each test"""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def client():
    with app.test_client() as test_client:
        yield test_client


@pytest.fixture
def login(client):
    def _login(user):
        with client.session_transaction() as sess:
            sess["user_id"] = user.id
        return client

    return _login


@pytest.fixture
def make_user(db_session):
    counter = itertools.count(1)

    def _make(username=None, password="password123", is_admin=False, **fields):
        number = next(counter)
        username = username or f"cliente_{number}"
        user = User(
            username=username,
            email=fields.pop("email", f"{username}@example.com"),
            password_hash=generate_password_hash(password),
            full_name=fields.pop("full_name", f"Cliente {number}"),
            is_admin=is_admin,
            **fields,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture
def customer(make_user):
    return make_user("maria", full_name="María López", phone="+5215512345678")


@pytest.fixture
def other_customer(make_user):
    return make_user("jorge", full_name="Jorge Ruiz")


@pytest.fixture
def admin(make_user):
    return make_user("staff", full_name="Equipo MercadoBoom", is_admin=True)


@pytest.fixture
def category(db_session):
    category = Category(name="Electrónica", emoji="🔌")
    db_session.add(category)
    db_session.commit()
    return category


@pytest.fixture
def make_product(db_session):
    def _make(**fields):
        values = {
            "name": "Audífonos Boom",
            "description": "Audífonos inalámbricos con cancelación de ruido",
            "price": Decimal("500.00"),
            "stock": 10,
        }
        values.update(fields)
        product = Product(**values)
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture
def product(make_product):
    return make_product()


@pytest.fixture
def address(db_session, customer):
    address = Address(
        user_id=customer.id,
        title="Casa",
        street="Av. Reforma 222",
        city="Ciudad de México",
        state="CDMX",
        postal_code="06600",
        is_default=True,
    )
    db_session.add(address)
    db_session.commit()
    return address
