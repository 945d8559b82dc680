"""Bookings blueprint — /bookings

Read-only booking status for the marketplace/UI, plus the two calls that
start a booking flow and embed the correlation key in provider metadata:

    POST /bookings/scheduling-link         -> Calendly link with booking_ref
    GET  /bookings/<booking_ref>           -> booking status
    POST /bookings/<booking_ref>/checkout  -> Stripe Checkout URL

Bookings themselves are only ever written by the webhook reconciliation.
"""

import logging

import stripe
from flask import Blueprint, jsonify, request

from booking_sync.extensions import db, limiter
from booking_sync.models.session_type import SessionType
from booking_sync.services.booking_service import get_booking
from booking_sync.services.calendly_service import (
    build_scheduling_link,
    new_correlation_key,
)
from booking_sync.services.stripe_service import create_checkout_session

logger = logging.getLogger(__name__)

bookings_bp = Blueprint("bookings", __name__, url_prefix="/bookings")


@bookings_bp.route("/scheduling-link", methods=["POST"])
@limiter.limit("30 per minute")
def scheduling_link():
    """Issue a correlation key and the Calendly link that carries it."""
    data = request.get_json(silent=True) or {}
    session_type_id = data.get("session_type_id")
    client_id = data.get("client_id")

    if not session_type_id or not client_id:
        return jsonify({"error": "session_type_id and client_id are required"}), 400

    session_type = db.session.get(SessionType, session_type_id)
    if not session_type or not session_type.is_active:
        return jsonify({"error": "Session type not found"}), 404
    if not session_type.calendly_scheduling_url:
        return jsonify({"error": "Session type has no scheduling link"}), 409

    correlation_key = new_correlation_key()
    url = build_scheduling_link(
        session_type.calendly_scheduling_url,
        correlation_key,
        client_id=client_id,
        builder_id=session_type.builder_id,
        session_type_id=session_type.id,
        name=data.get("name"),
        email=data.get("email"),
    )
    logger.info(f"Issued booking_ref {correlation_key} for session type {session_type.id}")
    return jsonify({"booking_ref": correlation_key, "url": url}), 201


@bookings_bp.route("/<booking_ref>", methods=["GET"])
@limiter.limit("120 per minute")
def booking_status(booking_ref):
    """Current status of a booking, by correlation key."""
    booking = get_booking(booking_ref)
    if not booking:
        return jsonify({"error": "Booking not found"}), 404
    return jsonify(booking.to_dict()), 200


@bookings_bp.route("/<booking_ref>/checkout", methods=["POST"])
@limiter.limit("10 per minute")
def checkout(booking_ref):
    """Start (or retry) payment for a booking awaiting it."""
    booking = get_booking(booking_ref)
    if not booking:
        return jsonify({"error": "Booking not found"}), 404

    try:
        url = create_checkout_session(booking)
    except ValueError as e:
        return jsonify({"error": str(e)}), 409
    except stripe.StripeError as e:
        logger.error(f"Stripe checkout failed for booking {booking_ref}: {e}")
        return jsonify({"error": "Payment provider error"}), 502

    return jsonify({"checkout_url": url}), 200
