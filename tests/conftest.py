"""Shared test fixtures for the paywall test suite.

Provides:
- app: Flask app configured for testing (temp store file, in-memory SQLite)
- client: Flask test client
- store: the app's PaymentStore
- db_session: clean database per test (tables dropped after)
- make_session: builds a fake Stripe Checkout Session payload
- checkout_event: builds a fake checkout.session.completed event
"""

import pytest

from paywall import create_app
from paywall.extensions import db as _db
from paywall.services.payment_store import JsonFileBackend, PaymentStore


@pytest.fixture
def store_path(tmp_path):
    return tmp_path / "payments.json"


@pytest.fixture
def app(store_path):
    """Create the Flask application configured for testing."""
    app = create_app("testing", overrides={"PAYMENT_STORE_PATH": str(store_path)})
    yield app


@pytest.fixture(autouse=True)
def db_session(request):
    """Drop all tables after each test that used the app."""
    if "app" not in request.fixturenames:
        yield None
        return

    app = request.getfixturevalue("app")
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def store(app):
    return app.extensions["payment_store"]


@pytest.fixture
def file_store(store_path):
    """A standalone JSON-backed store, no Flask app involved."""
    return PaymentStore(JsonFileBackend(str(store_path)))


@pytest.fixture
def make_session():
    """Factory for Checkout Session payloads as Stripe returns them."""

    def _make(session_id="cs_test_123", uid="user-1", payment_status="paid",
              email="buyer@example.com", customer="cus_test_1"):
        return {
            "id": session_id,
            "object": "checkout.session",
            "payment_status": payment_status,
            "status": "complete" if payment_status == "paid" else "open",
            "customer": customer,
            "customer_details": {"email": email} if email else None,
            "metadata": {"uid": uid} if uid is not None else {},
        }

    return _make


@pytest.fixture
def checkout_event(make_session):
    """Factory for checkout.session.completed events."""

    def _make(event_id="evt_checkout_001", **session_kwargs):
        return {
            "id": event_id,
            "type": "checkout.session.completed",
            "data": {"object": make_session(**session_kwargs)},
        }

    return _make
