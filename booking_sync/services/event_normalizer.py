"""Event normalizer — provider payloads to internal booking events.

Responsible for:
- Mapping Calendly invitee.created / invitee.canceled to SessionBooked /
  SessionCanceled
- Mapping Stripe checkout / payment_intent events to PaymentSucceeded /
  PaymentFailed
- Extracting the booking correlation key ("booking_ref") each flow embeds
  when it starts (Calendly utm_content, Stripe metadata)
- Returning Ignored for event types we do not act on

A supported event without a correlation key raises NormalizationError: the
webhook must fail so the provider retries, rather than being acknowledged
and lost.
"""

import logging
from datetime import datetime, timezone
from urllib.parse import parse_qs

from booking_sync.errors import NormalizationError
from booking_sync.events import (
    CALENDLY,
    STRIPE,
    Ignored,
    PaymentFailed,
    PaymentSucceeded,
    SessionBooked,
    SessionCanceled,
)

logger = logging.getLogger(__name__)

CORRELATION_FIELD = "booking_ref"


def _parse_iso(value):
    """Parse a Calendly ISO-8601 timestamp ("...Z") into an aware datetime."""
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _from_unix(ts):
    if ts is None:
        return None
    try:
        return datetime.fromtimestamp(int(ts), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def _object(value, where):
    """Return `value` as a dict; missing is empty, any other shape is rejected."""
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise NormalizationError(f"{where} is not a JSON object")
    return value


# ──────────────────────────────────────────────
# Calendly
# ──────────────────────────────────────────────

def parse_tracking_params(invitee):
    """Read our booking parameters from a Calendly invitee.

    The scheduling link puts them in utm_content as a query string
    (booking_ref=...&client_id=...). Falls back to custom questions whose
    text names the parameter, as older links did.
    """
    params = {}

    tracking = _object(invitee.get("tracking"), "Calendly payload.tracking")
    utm_content = tracking.get("utm_content")
    if utm_content:
        if not isinstance(utm_content, str):
            raise NormalizationError("Calendly tracking.utm_content is not a string")
        for key, values in parse_qs(utm_content).items():
            if values and values[0]:
                params[key] = values[0]

    questions = invitee.get("questions_and_answers") or []
    if not isinstance(questions, list):
        raise NormalizationError("Calendly payload.questions_and_answers is not a list")

    for qa in questions:
        qa = _object(qa, "Calendly questions_and_answers entry")
        question = qa.get("question") or ""
        answer = qa.get("answer") or ""
        if not isinstance(question, str) or not isinstance(answer, str):
            raise NormalizationError("Calendly questions_and_answers entry is not text")
        answer = answer.strip()
        if not answer:
            continue
        for key in (CORRELATION_FIELD, "client_id", "builder_id", "session_type_id"):
            if key in question and key not in params:
                params[key] = answer

    return params


def _calendly_event_id(event_type, invitee, body):
    # Calendly deliveries carry no delivery id. An invitee is created and
    # cancelled at most once, so (event, invitee uri) identifies the event.
    invitee_uri = invitee.get("uri") or body.get("created_at") or ""
    return f"{event_type}:{invitee_uri}"


def _require(params, key, event_type):
    value = params.get(key)
    if not value:
        raise NormalizationError(f"Calendly {event_type} is missing {key}")
    return value


def normalize_calendly(body):
    event_type = body.get("event")
    if not event_type or not isinstance(event_type, str):
        raise NormalizationError("Calendly payload has no event type")

    invitee = _object(body.get("payload"), "Calendly payload")
    event_id = _calendly_event_id(event_type, invitee, body)
    occurred_at = _parse_iso(body.get("created_at"))

    if event_type not in ("invitee.created", "invitee.canceled"):
        return Ignored(
            provider=CALENDLY,
            external_event_id=event_id,
            correlation_key=None,
            raw_type=event_type,
            occurred_at=occurred_at,
        )

    if not invitee.get("uri") or not isinstance(invitee.get("uri"), str):
        raise NormalizationError(f"Calendly {event_type} has no invitee uri")

    params = parse_tracking_params(invitee)
    correlation_key = _require(params, CORRELATION_FIELD, event_type)
    scheduled_event = _object(invitee.get("scheduled_event"), "Calendly payload.scheduled_event")

    if event_type == "invitee.created":
        start_time = _parse_iso(scheduled_event.get("start_time"))
        end_time = _parse_iso(scheduled_event.get("end_time"))
        if start_time is None or end_time is None:
            raise NormalizationError("Calendly invitee.created has no scheduled start/end time")

        return SessionBooked(
            provider=CALENDLY,
            external_event_id=event_id,
            correlation_key=correlation_key,
            raw_type=event_type,
            occurred_at=occurred_at,
            client_id=_require(params, "client_id", event_type),
            builder_id=_require(params, "builder_id", event_type),
            session_type_id=_require(params, "session_type_id", event_type),
            start_time=start_time,
            end_time=end_time,
            scheduling_reference=invitee.get("uri"),
            scheduling_event_uri=scheduled_event.get("uri") or invitee.get("event"),
            client_email=invitee.get("email"),
            client_name=invitee.get("name"),
            client_timezone=invitee.get("timezone"),
        )

    cancellation = _object(invitee.get("cancellation"), "Calendly payload.cancellation")
    canceler_type = cancellation.get("canceler_type")
    return SessionCanceled(
        provider=CALENDLY,
        external_event_id=event_id,
        correlation_key=correlation_key,
        raw_type=event_type,
        occurred_at=occurred_at,
        reason=cancellation.get("reason") or "Cancelled via Calendly",
        cancelled_by="BUILDER" if canceler_type == "host" else "CLIENT",
    )


# ──────────────────────────────────────────────
# Stripe
# ──────────────────────────────────────────────

STRIPE_SUCCEEDED_TYPES = (
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
    "payment_intent.succeeded",
)
STRIPE_FAILED_TYPES = (
    "checkout.session.async_payment_failed",
    "payment_intent.payment_failed",
)


def _payment_reference(obj):
    """Prefer the payment intent id; checkout sessions carry it as a field."""
    payment_intent = obj.get("payment_intent")
    if isinstance(payment_intent, dict):
        payment_intent = payment_intent.get("id")
    reference = payment_intent or obj.get("id")
    return reference if isinstance(reference, str) else None


def normalize_stripe(event):
    event_id = event.get("id")
    event_type = event.get("type")
    if not (isinstance(event_id, str) and event_id and isinstance(event_type, str) and event_type):
        raise NormalizationError("Stripe event is missing id or type")

    occurred_at = _from_unix(event.get("created"))
    data = _object(event.get("data"), "Stripe event data")
    obj = _object(data.get("object"), "Stripe data.object")
    metadata = _object(obj.get("metadata"), "Stripe object metadata")

    def ignored():
        return Ignored(
            provider=STRIPE,
            external_event_id=event_id,
            correlation_key=metadata.get(CORRELATION_FIELD),
            raw_type=event_type,
            occurred_at=occurred_at,
        )

    if event_type not in STRIPE_SUCCEEDED_TYPES + STRIPE_FAILED_TYPES:
        return ignored()

    # Delayed payment methods complete the checkout before the money moves;
    # the async_payment_* event decides the outcome.
    if event_type == "checkout.session.completed" and obj.get("payment_status") not in ("paid", "no_payment_required"):
        logger.info(f"Checkout {obj.get('id')} completed with payment_status={obj.get('payment_status')}, awaiting async result")
        return ignored()

    correlation_key = metadata.get(CORRELATION_FIELD)
    if not correlation_key:
        raise NormalizationError(f"Stripe {event_type} ({event_id}) has no metadata.{CORRELATION_FIELD}")

    if event_type in STRIPE_SUCCEEDED_TYPES:
        return PaymentSucceeded(
            provider=STRIPE,
            external_event_id=event_id,
            correlation_key=correlation_key,
            raw_type=event_type,
            occurred_at=occurred_at,
            payment_reference=_payment_reference(obj),
        )

    last_error = _object(obj.get("last_payment_error"), "Stripe last_payment_error")
    return PaymentFailed(
        provider=STRIPE,
        external_event_id=event_id,
        correlation_key=correlation_key,
        raw_type=event_type,
        occurred_at=occurred_at,
        payment_reference=_payment_reference(obj),
        failure_message=last_error.get("message"),
    )


# ──────────────────────────────────────────────
# Dispatch
# ──────────────────────────────────────────────

NORMALIZERS = {
    STRIPE: normalize_stripe,
    CALENDLY: normalize_calendly,
}


def normalize(provider, payload):
    """Convert a verified, JSON-decoded payload into a BookingEvent variant."""
    normalizer = NORMALIZERS.get(provider)
    if normalizer is None:
        raise NormalizationError(f"Unknown provider {provider!r}")
    if not isinstance(payload, dict):
        raise NormalizationError(f"{provider} payload is not a JSON object")
    return normalizer(payload)
