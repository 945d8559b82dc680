"""Stripe service — Checkout Sessions for paid bookings.

Responsible for:
- Creating a Stripe Checkout Session for a booking awaiting payment
- Embedding the booking correlation key in the session and payment intent
  metadata, so every payment webhook can be matched back to its booking

Webhook signature checks live in webhook_verifier.py; payment webhooks are
applied by booking_service.py.
"""

import logging

import stripe
from flask import current_app

from booking_sync.extensions import db
from booking_sync.models.booking import Booking
from booking_sync.models.session_type import SessionType
from booking_sync.services.event_normalizer import CORRELATION_FIELD

logger = logging.getLogger(__name__)

PAYABLE_STATUSES = (Booking.PENDING, Booking.PAYMENT_FAILED)


def booking_metadata(booking):
    """Metadata attached to every Stripe object created for a booking."""
    return {
        CORRELATION_FIELD: booking.correlation_key,
        "booking_id": booking.id,
        "builder_id": booking.builder_id,
        "client_id": booking.client_id,
        "session_type_id": booking.session_type_id,
    }


def create_checkout_session(booking):
    """Create a Stripe Checkout Session for `booking`.

    Returns the hosted checkout URL.
    Raises ValueError if the booking is not awaiting payment.
    Raises stripe.StripeError on API failures.
    """
    if booking.status not in PAYABLE_STATUSES:
        raise ValueError(f"Booking {booking.correlation_key} is {booking.status}, not awaiting payment")

    session_type = db.session.get(SessionType, booking.session_type_id)
    if session_type is None or not session_type.requires_payment:
        raise ValueError(f"Session type {booking.session_type_id} does not take payment")

    stripe.api_key = current_app.config["STRIPE_SECRET_KEY"]
    app_base_url = current_app.config["APP_BASE_URL"]
    metadata = booking_metadata(booking)

    description = None
    if booking.start_time:
        description = booking.start_time.strftime("%B %d, %Y at %H:%M UTC")

    product_data = {"name": session_type.title}
    if description:
        product_data["description"] = description

    params = {
        "mode": "payment",
        "line_items": [
            {
                "price_data": {
                    "currency": session_type.currency,
                    "product_data": product_data,
                    "unit_amount": session_type.price,
                },
                "quantity": 1,
            }
        ],
        "success_url": (
            f"{app_base_url}/booking/confirmation?booking_ref={booking.correlation_key}"
            f"&session_id={{CHECKOUT_SESSION_ID}}"
        ),
        "cancel_url": f"{app_base_url}/booking/recovery?booking_ref={booking.correlation_key}",
        "client_reference_id": booking.correlation_key,
        "metadata": metadata,
        # payment_intent.* webhooks only see the intent's own metadata
        "payment_intent_data": {"metadata": metadata},
    }
    if booking.client_email:
        params["customer_email"] = booking.client_email

    session = stripe.checkout.Session.create(**params)
    logger.info(f"Created checkout session {session.id} for booking {booking.correlation_key}")
    return session.url
