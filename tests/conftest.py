"""
Shared fixtures.

The environment is pinned before any homeserve import so settings, the
engine and the gateway secrets are the test ones.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "test_key_secret"
os.environ["RAZORPAY_WEBHOOK_SECRET"] = "test_webhook_secret"
os.environ["NOTIFICATION_SMS_PROVIDER"] = "console"
os.environ["EMAIL_ENABLED"] = "false"

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from homeserve.api.app import create_app
from homeserve.api.dependencies import get_notification_queue, get_payment_gateway
from homeserve.lib.db import SessionLocal, drop_db, engine, init_db
from homeserve.lib.metrics import reset_metrics
from homeserve.models.bookings import Booking
from homeserve.models.services import Service
from homeserve.models.users import User, UserRole
from homeserve.services.booking_service import BookingService
from homeserve.services.location_relay import LocationRelay

from tests.helpers import ADDRESS, FakeGateway, RecordingQueue


@pytest.fixture(autouse=True)
def clean_metrics():
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture
def db_session():
    """Fresh schema per test on the shared in-memory SQLite database."""
    init_db(engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        drop_db(engine)


def _make_user(session, name: str, role: UserRole, **kwargs) -> User:
    user = User(name=name, role=role, **kwargs)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture
def customer(db_session) -> User:
    return _make_user(db_session, "Asha Rao", UserRole.USER, email="asha@example.com", phone="+919800000001")


@pytest.fixture
def other_customer(db_session) -> User:
    return _make_user(db_session, "Ravi Kumar", UserRole.USER, email="ravi@example.com", phone="+919800000002")


@pytest.fixture
def worker(db_session) -> User:
    return _make_user(db_session, "Imran Shaikh", UserRole.PROVIDER, phone="+919800000003")


@pytest.fixture
def admin(db_session) -> User:
    return _make_user(db_session, "Ops Admin", UserRole.ADMIN, email="ops@example.com")


@pytest.fixture
def service(db_session) -> Service:
    svc = Service(name="Deep Cleaning", category="cleaning", price=Decimal("2999.00"), duration_minutes=180)
    db_session.add(svc)
    db_session.commit()
    db_session.refresh(svc)
    return svc


@pytest.fixture
def inactive_service(db_session) -> Service:
    svc = Service(name="Retired Service", price=Decimal("100.00"), is_active=False)
    db_session.add(svc)
    db_session.commit()
    db_session.refresh(svc)
    return svc


@pytest.fixture
def queue() -> RecordingQueue:
    return RecordingQueue()


@pytest.fixture
def relay() -> LocationRelay:
    return LocationRelay()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def ledger(db_session, queue, relay) -> BookingService:
    return BookingService(db_session, queue, relay)


@pytest.fixture
def scheduled_date() -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=2)


@pytest.fixture
def booking(ledger, customer, service, scheduled_date) -> Booking:
    return ledger.create_booking(
        customer=customer,
        service_id=service.id,
        scheduled_date=scheduled_date,
        service_address=dict(ADDRESS),
    )


@pytest.fixture
def app(db_session, queue, gateway):
    application = create_app()
    application.dependency_overrides[get_notification_queue] = lambda: queue
    application.dependency_overrides[get_payment_gateway] = lambda: gateway
    return application


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)
