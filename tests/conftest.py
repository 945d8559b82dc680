"""Shared test fixtures for the booking reconciliation test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, CSRF off)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- session_types: a free and a paid session type
- stripe_event / calendly_event: payload builders
- post_stripe / post_calendly: sign a payload and POST it to the webhook
- sent_emails: captures outbound email instead of touching SMTP
"""

import hashlib
import hmac
import json
import time
from unittest.mock import patch

import pytest

from booking_sync import create_app
from booking_sync.extensions import db as _db
from booking_sync.models.session_type import SessionType

STRIPE_SECRET = "whsec_test_fake"
CALENDLY_SECRET = "calendly_test_signing_key"

BUILDER_ID = "builder_001"
CLIENT_ID = "client_001"
FREE_SESSION_TYPE_ID = "st_free_intro"
PAID_SESSION_TYPE_ID = "st_paid_build"


def sign(payload, secret, timestamp=None):
    """Build a `t=...,v1=...` header the way Stripe and Calendly do."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    digest = hmac.new(
        secret.encode("utf-8"),
        f"{timestamp}.{payload}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return f"t={timestamp},v1={digest}"


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
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
def session_types(db_session):
    """A free intro call and a paid build session for BUILDER_ID."""
    free = SessionType(
        id=FREE_SESSION_TYPE_ID,
        builder_id=BUILDER_ID,
        title="Free intro call",
        price=0,
        duration_minutes=30,
        calendly_scheduling_url="https://calendly.com/builder-001/intro",
    )
    paid = SessionType(
        id=PAID_SESSION_TYPE_ID,
        builder_id=BUILDER_ID,
        title="AI app build session",
        price=9900,
        duration_minutes=60,
        calendly_scheduling_url="https://calendly.com/builder-001/build",
    )
    db_session.add_all([free, paid])
    db_session.commit()
    return {"free": free, "paid": paid}


@pytest.fixture
def sent_emails():
    """Record send_email calls made by the notification dispatcher."""
    with patch("booking_sync.services.notification_service.send_email") as mock_send:
        yield mock_send


@pytest.fixture
def calendly_event():
    """Build a Calendly webhook body (v2 shape)."""

    def _build(event="invitee.created", booking_ref="B1", invitee_id="inv_001",
               session_type_id=PAID_SESSION_TYPE_ID, client_id=CLIENT_ID,
               builder_id=BUILDER_ID, canceler_type="invitee", utm_content=None):
        if utm_content is None:
            parts = []
            if booking_ref:
                parts.append(f"booking_ref={booking_ref}")
            parts.append(f"client_id={client_id}")
            parts.append(f"builder_id={builder_id}")
            parts.append(f"session_type_id={session_type_id}")
            utm_content = "&".join(parts)

        payload = {
            "uri": f"https://api.calendly.com/scheduled_events/evt_{invitee_id}/invitees/{invitee_id}",
            "email": "client@example.com",
            "name": "Casey Client",
            "timezone": "America/New_York",
            "event": f"https://api.calendly.com/scheduled_events/evt_{invitee_id}",
            "scheduled_event": {
                "uri": f"https://api.calendly.com/scheduled_events/evt_{invitee_id}",
                "start_time": "2026-11-02T15:00:00.000000Z",
                "end_time": "2026-11-02T16:00:00.000000Z",
            },
            "tracking": {
                "utm_source": "buildappswith",
                "utm_campaign": "booking",
                "utm_content": utm_content,
            },
            "questions_and_answers": [],
        }
        if event == "invitee.canceled":
            payload["status"] = "canceled"
            payload["cancellation"] = {
                "canceled_by": "Casey Client",
                "reason": "Conflict came up",
                "canceler_type": canceler_type,
            }
        return {
            "event": event,
            "created_at": "2026-10-19T12:00:00.000000Z",
            "payload": payload,
        }

    return _build


@pytest.fixture
def stripe_event():
    """Build a Stripe event body."""

    def _build(event_id, event_type="checkout.session.completed", booking_ref="B1",
               payment_status="paid", payment_intent="pi_001"):
        metadata = {"booking_ref": booking_ref} if booking_ref else {}
        if event_type.startswith("payment_intent."):
            obj = {"id": payment_intent, "object": "payment_intent", "metadata": metadata}
            if event_type == "payment_intent.payment_failed":
                obj["last_payment_error"] = {"message": "Your card was declined."}
        else:
            obj = {
                "id": "cs_test_001",
                "object": "checkout.session",
                "payment_status": payment_status,
                "payment_intent": payment_intent,
                "metadata": metadata,
            }
        return {
            "id": event_id,
            "type": event_type,
            "created": 1792411200,
            "data": {"object": obj},
        }

    return _build


@pytest.fixture
def post_stripe(client):
    """Sign and POST a Stripe event to /webhooks/stripe."""

    def _post(event, secret=STRIPE_SECRET, signature=None):
        payload = event if isinstance(event, str) else json.dumps(event)
        headers = {"Stripe-Signature": signature or sign(payload, secret)}
        return client.post(
            "/webhooks/stripe",
            data=payload,
            content_type="application/json",
            headers=headers,
        )

    return _post


@pytest.fixture
def post_calendly(client):
    """Sign and POST a Calendly event to /webhooks/calendly."""

    def _post(event, secret=CALENDLY_SECRET, signature=None):
        payload = event if isinstance(event, str) else json.dumps(event)
        headers = {"Calendly-Webhook-Signature": signature or sign(payload, secret)}
        return client.post(
            "/webhooks/calendly",
            data=payload,
            content_type="application/json",
            headers=headers,
        )

    return _post
