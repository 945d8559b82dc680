"""Webhooks blueprint — /webhooks/stripe, /webhooks/calendly

Receives provider webhook events. CSRF-exempt.
Raw body is required for signature verification.

Status codes (providers retry anything that is not 2xx):
    200  processed, replayed, or deliberately ignored
    400  bad or missing signature / body is not JSON (not worth retrying)
    409  booking not known yet (Calendly event still in flight)
    422  payload lacks the booking correlation key
    500  verification unavailable or persistence failed (rolled back)
    503  processing budget exceeded (rolled back)
"""

import json
import logging

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from booking_sync.errors import (
    AuthenticityError,
    BookingNotFoundError,
    NormalizationError,
    ProcessingTimeout,
)
from booking_sync.events import CALENDLY, STRIPE
from booking_sync.extensions import db
from booking_sync.models.notification import NotificationCommand
from booking_sync.services import notification_service
from booking_sync.services.booking_service import reconcile
from booking_sync.services.calendly_service import enrich_invitee_payload
from booking_sync.services.event_normalizer import normalize
from booking_sync.services.webhook_verifier import SIGNATURE_HEADERS, verify

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/webhooks")

# provider -> (primary secret config key, secondary secret config key)
SECRET_KEYS = {
    STRIPE: ("STRIPE_WEBHOOK_SECRET", "STRIPE_WEBHOOK_SECRET_SECONDARY"),
    CALENDLY: ("CALENDLY_WEBHOOK_SIGNING_KEY", "CALENDLY_WEBHOOK_SIGNING_KEY_SECONDARY"),
}


def _dispatch_after_commit(command_id):
    """Send the command the committed transition queued.

    The transition is already committed, so a send failure must not turn
    into a webhook failure; `flask dispatch-notifications` picks up
    anything left undispatched.
    """
    if not current_app.config.get("NOTIFICATIONS_DISPATCH_INLINE", True):
        return
    try:
        command = db.session.get(NotificationCommand, command_id)
        if command:
            notification_service.dispatch(command)
    except Exception as e:
        db.session.rollback()
        logger.error(f"Failed to dispatch notification {command_id}: {e}", exc_info=True)


def handle_webhook(provider):
    """Verify → normalize → reconcile one provider webhook.

    1. Get raw body (required for signature verification)
    2. Verify signature with the provider's signing secret
    3. Normalize into a booking event
    4. Reconcile (idempotent via processed_events ledger)
    5. Dispatch the queued notification, if any
    """
    payload = request.get_data(as_text=True)
    sig_header = request.headers.get(SIGNATURE_HEADERS[provider])
    primary_key, secondary_key = SECRET_KEYS[provider]

    # --- Verify signature ---
    try:
        authentic = verify(
            provider,
            payload,
            sig_header,
            current_app.config.get(primary_key),
            secondary_secret=current_app.config.get(secondary_key),
            tolerance=current_app.config.get("WEBHOOK_TOLERANCE_SECONDS", 300),
        )
    except AuthenticityError as e:
        logger.error(f"{provider} webhook verification unavailable: {e}")
        return jsonify({"error": "Verification unavailable"}), 500

    if not authentic:
        if not sig_header:
            logger.warning(f"{provider} webhook received without signature header")
            return jsonify({"error": "Missing signature"}), 400
        logger.warning(
            f"SECURITY: rejected {provider} webhook with invalid signature "
            f"from {request.remote_addr}"
        )
        return jsonify({"error": "Invalid signature"}), 400

    # --- Parse + normalize ---
    try:
        body = json.loads(payload)
    except ValueError:
        logger.warning(f"{provider} webhook body is not valid JSON")
        return jsonify({"error": "Invalid payload"}), 400

    if provider == CALENDLY and isinstance(body, dict):
        body = enrich_invitee_payload(body, current_app.config.get("CALENDLY_API_TOKEN"))

    try:
        event = normalize(provider, body)
    except NormalizationError as e:
        logger.warning(f"{provider} webhook could not be normalized: {e}")
        return jsonify({"error": str(e)}), 422

    # --- Reconcile (idempotent, atomic) ---
    try:
        result = reconcile(
            event,
            budget_seconds=current_app.config.get("WEBHOOK_PROCESSING_BUDGET_SECONDS"),
        )
    except BookingNotFoundError as e:
        logger.warning(f"{provider} webhook deferred: {e}")
        return jsonify({"error": "Booking not found"}), 409
    except ProcessingTimeout as e:
        logger.error(f"{provider} webhook rolled back: {e}")
        return jsonify({"error": "Processing timed out"}), 503
    except SQLAlchemyError as e:
        logger.error(f"{provider} webhook persistence failed: {e}", exc_info=True)
        return jsonify({"error": "Persistence failed"}), 500

    if result.command_id:
        _dispatch_after_commit(result.command_id)

    return jsonify({"status": result.status, "outcome": result.outcome}), 200


@webhooks_bp.route("/stripe", methods=["POST"])
def stripe_webhook():
    """Receive Stripe payment events."""
    return handle_webhook(STRIPE)


@webhooks_bp.route("/calendly", methods=["POST"])
def calendly_webhook():
    """Receive Calendly invitee events."""
    return handle_webhook(CALENDLY)
