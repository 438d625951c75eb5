"""
Pytest fixtures for the storefront backend tests.

Provides the app on in-memory SQLite, a per-test table wipe, user/bundle/order
factories, and a recording notification dispatcher.
"""

from datetime import datetime, timedelta

import pytest

from storefront import create_app
from storefront.extensions import db
from storefront.models import Bundle, User
from storefront.services import order_service, payment_service, session_service, workflow_service
from storefront.services.auth_service import hash_password
from storefront.services.notification_service import NotificationDispatcher


CRON_SECRET = "test-cron-secret"
PASSWORD = "Password123!"

# Hashing once keeps bcrypt (cost 12) out of every fixture
PASSWORD_HASH = hash_password(PASSWORD)

# 2026-03-02 14:00 in Asia/Jakarta (UTC+7); inside Batch 1, before its cutoff
T0 = datetime(2026, 3, 2, 7, 0)


class RecordingDispatcher(NotificationDispatcher):
    """Keeps every delivered notification in memory."""

    def __init__(self):
        self.sent = []

    def send(self, recipient_id, event_type, payload):
        self.sent.append((recipient_id, event_type, payload))

    def events(self, event_type=None):
        return [s for s in self.sent if event_type is None or s[1] == event_type]


class FailingDispatcher(NotificationDispatcher):
    def __init__(self):
        self.attempts = 0

    def send(self, recipient_id, event_type, payload):
        self.attempts += 1
        raise RuntimeError("SMTP relay unavailable")


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(
        {
            'TESTING': True,
            'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
            'SQLALCHEMY_TRACK_MODIFICATIONS': False,
            'CRON_SECRET': CRON_SECRET,
            'VENUE_TIMEZONE': 'Asia/Jakarta',
            'PICKUP_VERIFY_BASE_URL': 'https://shop.test',
        },
        dispatcher=RecordingDispatcher(),
    )

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def dispatcher(app):
    """The app's recording dispatcher, emptied for this test."""
    recorder = app.extensions["notification_dispatcher"]
    recorder.sent.clear()
    return recorder


@pytest.fixture(scope='function')
def failing_dispatcher(app, monkeypatch):
    failing = FailingDispatcher()
    monkeypatch.setitem(app.extensions, "notification_dispatcher", failing)
    return failing


def _make_user(db_session, name, email, role):
    user = User(name=name, email=email, password_hash=PASSWORD_HASH, role=role, is_active=True)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def customer(db_session):
    return _make_user(db_session, "Ayu", "ayu@example.com", "CUSTOMER")


@pytest.fixture(scope='function')
def other_customer(db_session):
    return _make_user(db_session, "Budi", "budi@example.com", "CUSTOMER")


@pytest.fixture(scope='function')
def staff(db_session):
    return _make_user(db_session, "Counter", "counter@example.com", "STAFF")


@pytest.fixture(scope='function')
def admin(db_session):
    return _make_user(db_session, "Owner", "owner@example.com", "ADMIN")


@pytest.fixture(scope='function')
def bundle(db_session):
    bundle = Bundle(name="Family Box", price=150000, is_active=True)
    db_session.add(bundle)
    db_session.commit()
    return bundle


@pytest.fixture(scope='function')
def make_order(db_session, bundle):
    """Factory: place an order for `user` at `created_at` (default T0)."""
    def _make(user, quantity=1, created_at=T0):
        return order_service.create_order(
            user.id,
            [{"bundle_id": bundle.id, "quantity": quantity}],
            now=created_at,
        )
    return _make


@pytest.fixture(scope='function')
def make_paid_order(make_order, admin):
    """Factory: order with proof uploaded and payment PAID (order still PENDING)."""
    def _make(user, created_at=T0):
        order = make_order(user, created_at=created_at)
        payment_id = order.payment.id
        payment_service.attach_proof(
            payment_id, "https://storage.test/receipts/1.jpg", actor=user, now=created_at + timedelta(minutes=5),
        )
        payment_service.mark_paid(payment_id, actor=admin, now=created_at + timedelta(minutes=10))
        return order
    return _make


@pytest.fixture(scope='function')
def make_ready_order(make_order, admin, staff):
    """Factory: order driven to READY through proof, confirm, preparation."""
    def _make(user, created_at=T0, ready_at=None):
        order = make_order(user, created_at=created_at)
        payment_service.attach_proof(
            order.payment.id, "https://storage.test/receipts/2.jpg", actor=user, now=created_at + timedelta(minutes=5),
        )
        workflow_service.confirm_order(order.id, actor=admin, now=created_at + timedelta(minutes=10))
        order_service.start_preparation(order.id, actor=staff, now=created_at + timedelta(minutes=20))
        return order_service.mark_ready(
            order.id,
            "Front counter",
            "18:00-20:00",
            actor=staff,
            now=ready_at or created_at + timedelta(minutes=30),
        )
    return _make


def _headers_for(user):
    _, token = session_service.create_session(user.id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope='function')
def customer_headers(customer):
    return _headers_for(customer)


@pytest.fixture(scope='function')
def other_customer_headers(other_customer):
    return _headers_for(other_customer)


@pytest.fixture(scope='function')
def staff_headers(staff):
    return _headers_for(staff)


@pytest.fixture(scope='function')
def admin_headers(admin):
    return _headers_for(admin)


@pytest.fixture(scope='function')
def cron_headers():
    return {"Authorization": f"Bearer {CRON_SECRET}"}
