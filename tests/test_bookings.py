"""Tests for the bookings blueprint — status, scheduling links and checkout."""

import json
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlsplit

import stripe

from booking_sync.models.booking import Booking

from conftest import BUILDER_ID, CLIENT_ID, FREE_SESSION_TYPE_ID, PAID_SESSION_TYPE_ID

START = datetime(2026, 11, 2, 15, 0, tzinfo=timezone.utc)


def _make_booking(db_session, ref, status=Booking.PENDING, session_type_id=PAID_SESSION_TYPE_ID):
    booking = Booking(
        id=str(uuid.uuid4()),
        correlation_key=ref,
        client_id=CLIENT_ID,
        builder_id=BUILDER_ID,
        session_type_id=session_type_id,
        start_time=START,
        end_time=START + timedelta(hours=1),
        status=status,
        client_email="client@example.com",
    )
    db_session.add(booking)
    db_session.commit()
    return booking


class TestBookingStatus:

    def test_get_booking(self, client, db_session, session_types):
        _make_booking(db_session, "B_GET")

        resp = client.get("/bookings/B_GET")
        assert resp.status_code == 200
        data = json.loads(resp.data)
        assert data["correlation_key"] == "B_GET"
        assert data["status"] == "PENDING"
        assert data["session_type_id"] == PAID_SESSION_TYPE_ID

    def test_unknown_booking_404(self, client):
        resp = client.get("/bookings/nope")
        assert resp.status_code == 404


class TestSchedulingLink:

    def test_issues_link_with_tracking(self, client, session_types):
        resp = client.post("/bookings/scheduling-link", json={
            "session_type_id": PAID_SESSION_TYPE_ID,
            "client_id": CLIENT_ID,
            "email": "client@example.com",
        })
        assert resp.status_code == 201
        data = json.loads(resp.data)
        assert data["booking_ref"].startswith("bk_")

        parts = urlsplit(data["url"])
        assert parts.netloc == "calendly.com"
        assert parts.path == "/builder-001/build"
        query = parse_qs(parts.query)
        assert query["utm_source"] == ["buildappswith"]
        assert query["email"] == ["client@example.com"]

        tracking = parse_qs(query["utm_content"][0])
        assert tracking["booking_ref"] == [data["booking_ref"]]
        assert tracking["builder_id"] == [BUILDER_ID]
        assert tracking["session_type_id"] == [PAID_SESSION_TYPE_ID]

    def test_link_round_trips_through_calendly_webhook(self, client, post_calendly,
                                                       calendly_event, session_types):
        """The booking_ref in the link is the one the webhook reconciles on."""
        resp = client.post("/bookings/scheduling-link", json={
            "session_type_id": PAID_SESSION_TYPE_ID,
            "client_id": CLIENT_ID,
        })
        data = json.loads(resp.data)
        utm_content = parse_qs(urlsplit(data["url"]).query)["utm_content"][0]

        assert post_calendly(calendly_event(utm_content=utm_content)).status_code == 200

        booking = Booking.query.filter_by(correlation_key=data["booking_ref"]).first()
        assert booking is not None
        assert booking.status == Booking.PENDING

    def test_missing_fields_400(self, client, session_types):
        resp = client.post("/bookings/scheduling-link", json={"client_id": CLIENT_ID})
        assert resp.status_code == 400

    def test_unknown_session_type_404(self, client, session_types):
        resp = client.post("/bookings/scheduling-link", json={
            "session_type_id": "st_missing",
            "client_id": CLIENT_ID,
        })
        assert resp.status_code == 404


class TestCheckout:

    def test_creates_checkout_session(self, client, db_session, session_types):
        _make_booking(db_session, "B_PAY")
        fake_session = MagicMock(id="cs_test_123", url="https://checkout.stripe.com/c/pay/cs_test_123")

        with patch("stripe.checkout.Session.create", return_value=fake_session) as mock_create:
            resp = client.post("/bookings/B_PAY/checkout")

        assert resp.status_code == 200
        assert json.loads(resp.data)["checkout_url"] == fake_session.url

        params = mock_create.call_args.kwargs
        assert params["mode"] == "payment"
        assert params["metadata"]["booking_ref"] == "B_PAY"
        assert params["payment_intent_data"]["metadata"]["booking_ref"] == "B_PAY"
        assert params["client_reference_id"] == "B_PAY"
        assert params["customer_email"] == "client@example.com"
        line_item = params["line_items"][0]["price_data"]
        assert line_item["unit_amount"] == 9900
        assert line_item["currency"] == "usd"

    def test_retry_after_payment_failure_allowed(self, client, db_session, session_types):
        _make_booking(db_session, "B_RETRY", status=Booking.PAYMENT_FAILED)
        fake_session = MagicMock(id="cs_test_456", url="https://checkout.stripe.com/c/pay/cs_test_456")

        with patch("stripe.checkout.Session.create", return_value=fake_session):
            resp = client.post("/bookings/B_RETRY/checkout")
        assert resp.status_code == 200

    def test_confirmed_booking_409(self, client, db_session, session_types):
        _make_booking(db_session, "B_DONE", status=Booking.CONFIRMED)

        with patch("stripe.checkout.Session.create") as mock_create:
            resp = client.post("/bookings/B_DONE/checkout")
        assert resp.status_code == 409
        mock_create.assert_not_called()

    def test_free_session_409(self, client, db_session, session_types):
        _make_booking(db_session, "B_FREE", session_type_id=FREE_SESSION_TYPE_ID)

        with patch("stripe.checkout.Session.create") as mock_create:
            resp = client.post("/bookings/B_FREE/checkout")
        assert resp.status_code == 409
        mock_create.assert_not_called()

    def test_stripe_error_502(self, client, db_session, session_types):
        _make_booking(db_session, "B_ERR")

        with patch("stripe.checkout.Session.create", side_effect=stripe.StripeError("API down")):
            resp = client.post("/bookings/B_ERR/checkout")
        assert resp.status_code == 502

    def test_unknown_booking_404(self, client):
        resp = client.post("/bookings/nope/checkout")
        assert resp.status_code == 404
