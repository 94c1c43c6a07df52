"""Pytest configuration and shared fixtures."""

import os

# Settings are read at import time; keep the background sweeper out of tests.
os.environ.setdefault("SWEEPER_IN_PROCESS", "false")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")

import time
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from boxoffice.core.clock import utcnow
from boxoffice.core.security import create_access_token
from boxoffice.db.session import Base, get_db, make_engine
from boxoffice.api.deps import gateway_dep
from boxoffice.main import app
from boxoffice.models import allocation, attendee, audit_log, booking, booking_unit, event, hold, inventory_unit, unit_type  # noqa: F401
from boxoffice.services.errors import GatewayUnavailable
from boxoffice.services.inventory_service import define_event
from boxoffice.services.payment_gateway import PENDING, PaymentIntent, StripeGateway
from boxoffice.services.stripe_client import compute_signature

WEBHOOK_SECRET = "whsec_test"


class FakeGateway(StripeGateway):
    """In-memory gateway: one intent per booking, switchable outage and payment status."""

    def __init__(self):
        super().__init__(None, WEBHOOK_SECRET, tolerance=300)
        self.fail = False
        self.status = PENDING
        self.intents = {}
        self.refunds = []

    def create_payment_intent(self, booking):
        if self.fail:
            raise GatewayUnavailable("Stripe timeout after 10s")
        if booking.id not in self.intents:
            self.intents[booking.id] = f"pi_test_{len(self.intents) + 1}"
        ref = self.intents[booking.id]
        return PaymentIntent(payment_ref=ref, client_secret=f"{ref}_secret")

    def get_payment_status(self, payment_ref):
        if self.fail:
            raise GatewayUnavailable()
        return self.status

    def create_refund(self, payment_ref, booking_id):
        if self.fail:
            raise GatewayUnavailable()
        self.refunds.append(payment_ref)
        return {"id": f"re_{booking_id}", "status": "succeeded"}


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'boxoffice-test.db'}")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(session_factory, gateway):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[gateway_dep] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(user_id: str = "user-1", role: str = "customer") -> dict:
        return {"Authorization": f"Bearer {create_access_token(user_id, role=role)}"}
    return _headers


@pytest.fixture
def sign():
    def _sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
        ts = str(int(time.time()) if timestamp is None else timestamp)
        return f"t={ts},v1={compute_signature(secret, ts, payload)}"
    return _sign


@pytest.fixture
def seated_event(db):
    # A1-A2 VIP, A3-A5 and B1-B5 Standard
    return define_event(
        db,
        title="Test Concert",
        starts_at=utcnow() + timedelta(days=7),
        organizer_id="org-1",
        seat_types=[
            {"name": "VIP", "price": 5000, "quantity": 2},
            {"name": "Standard", "price": 2000, "quantity": 8},
        ],
        seats_per_row=5,
    )


@pytest.fixture
def ga_event(db):
    return define_event(
        db,
        title="Test Meetup",
        starts_at=utcnow() + timedelta(days=7),
        organizer_id="org-1",
        general_admission={"capacity": 5, "price": 1000},
    )
