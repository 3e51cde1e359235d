"""
Shared pytest fixtures for the Workshop Enrollment Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - gateway: stub for the payment-gateway singleton (records calls)
    - make_workshop / make_enrollment / make_entry: ORM factories
    - post_event: signs and POSTs a gateway event to the webhook endpoint
"""

import json
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app import create_app
from app.integrations.payment_gateway import GatewayResult, payment_gateway
from app.models import db as _db
from app.models.enrollment import Enrollment
from app.models.waitlist import WaitlistEntry
from app.models.workshop import PricingOption, Workshop
from app.services import webhook_service

ADMIN_HEADERS = {"X-API-Key": "test-admin-key"}
VIEWER_HEADERS = {"X-API-Key": "test-viewer-key"}
WEBHOOK_URL = "/api/v1/webhooks/payment"


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Payment gateway stub ─────────────────────────────────────────────────


class FakeGateway:
    """Stands in for the PaymentGateway singleton's outbound calls."""

    def __init__(self):
        self.sessions = []
        self.refunds = []
        self.fail_with = None

    def create_checkout_session(self, **kwargs):
        if self.fail_with:
            return GatewayResult(ok=False, status_code=503, data=None, error=self.fail_with,
                                 duration_ms=1, attempts=4)
        session_id = f"cs_test_{uuid.uuid4().hex[:12]}"
        self.sessions.append({"id": session_id, **kwargs})
        return GatewayResult(
            ok=True, status_code=200,
            data={"id": session_id, "url": f"https://pay.example.com/{session_id}"},
            error=None, duration_ms=1,
        )

    def create_refund(self, payment_intent_id, amount_cents=None, reason=""):
        if self.fail_with:
            return GatewayResult(ok=False, status_code=400, data=None, error=self.fail_with,
                                 duration_ms=1)
        refund_id = f"re_test_{len(self.refunds) + 1}"
        self.refunds.append({"id": refund_id, "payment_intent": payment_intent_id,
                             "amount_cents": amount_cents, "reason": reason})
        return GatewayResult(ok=True, status_code=200, data={"id": refund_id}, error=None, duration_ms=1)

    @property
    def last_session(self):
        return self.sessions[-1]


@pytest.fixture()
def gateway(monkeypatch):
    """Route checkout-session and refund calls to an in-memory FakeGateway."""
    fake = FakeGateway()
    monkeypatch.setattr(payment_gateway, "create_checkout_session", fake.create_checkout_session)
    monkeypatch.setattr(payment_gateway, "create_refund", fake.create_refund)
    return fake


# ── ORM factories ────────────────────────────────────────────────────────


@pytest.fixture()
def make_workshop():
    def _make(title="Intro to Pottery", capacity=10, price="50.00", waitlist=False,
              status="published", checkout_enabled=True, options=None):
        workshop = Workshop(
            title=title,
            capacity=capacity,
            base_price=Decimal(price),
            waitlist_enabled=waitlist,
            status=status,
            checkout_enabled=checkout_enabled,
        )
        for position, (option_id, label, option_price, is_default) in enumerate(options or []):
            workshop.pricing_options.append(PricingOption(
                option_id=option_id, label=label, price=Decimal(option_price),
                is_default=is_default, position=position,
            ))
        _db.session.add(workshop)
        _db.session.commit()
        return workshop
    return _make


@pytest.fixture()
def make_enrollment():
    def _make(workshop, status="completed", email="ada@example.com", amount=None,
              session_id=None, payment_intent=None, **fields):
        enrollment = Enrollment(
            workshop_id=workshop.id,
            customer_name=fields.pop("customer_name", "Ada Lovelace"),
            customer_email=email,
            amount=Decimal(str(amount if amount is not None else workshop.base_price)),
            status=status,
            gateway_session_id=session_id,
            gateway_payment_intent_id=payment_intent,
            completed_at=datetime.now(timezone.utc) if status == "completed" else None,
            **fields,
        )
        _db.session.add(enrollment)
        _db.session.commit()
        return enrollment
    return _make


@pytest.fixture()
def make_entry():
    def _make(workshop, email="grace@example.com", status="waiting", name="Grace Hopper",
              created_at=None):
        entry = WaitlistEntry(
            workshop_id=workshop.id,
            customer_email=email,
            customer_name=name,
            status=status,
            created_at=created_at or datetime.now(timezone.utc),
        )
        _db.session.add(entry)
        _db.session.commit()
        return entry
    return _make


def minutes_ago(minutes):
    return datetime.now(timezone.utc) - timedelta(minutes=minutes)


# ── Webhook helpers ──────────────────────────────────────────────────────


def build_event(event_type, obj, event_id=None):
    return {
        "id": event_id or f"evt_{uuid.uuid4().hex[:16]}",
        "type": event_type,
        "data": {"object": obj},
    }


@pytest.fixture()
def post_event(client, app):
    """Sign ``event`` with the configured secret and POST it to the webhook."""
    def _post(event, secret=None, header="Gateway-Signature"):
        payload = json.dumps(event).encode("utf-8")
        signature = webhook_service.sign_payload(payload, secret or app.config["WEBHOOK_SIGNING_SECRET"])
        return client.post(
            WEBHOOK_URL, data=payload,
            headers={header: signature, "Content-Type": "application/json"},
        )
    return _post


def completed_session(session_id, metadata=None, *, email="ada@example.com", name="Ada Lovelace",
                      amount_total=None, payment_intent="pi_test_1", payment_status="paid"):
    """A checkout.session.completed object as the gateway sends it."""
    obj = {
        "id": session_id,
        "object": "checkout.session",
        "payment_status": payment_status,
        "payment_intent": payment_intent,
        "customer": "cus_test_1",
        "currency": "usd",
        "customer_details": {"email": email, "name": name, "phone": "555-0100"},
        "metadata": metadata or {},
    }
    if amount_total is not None:
        obj["amount_total"] = amount_total
    return obj


def refunded_charge(payment_intent, amount_refunded, refund_id="re_1"):
    return {
        "id": "ch_test_1",
        "object": "charge",
        "payment_intent": payment_intent,
        "amount_refunded": amount_refunded,
        "refunds": {"data": [{"id": refund_id, "amount": amount_refunded}]},
    }
