"""Booking service — applies normalized provider events to bookings.

Responsible for:
- Duplicate suppression against the processed-event ledger
- Loading (and row-locking) the booking an event refers to
- Running the state machine and writing the result
- Queuing the notification command for a transition

One event is one transaction: the booking write, the ledger entry and the
notification command commit together or not at all. Any failure rolls the
whole unit back and propagates, so the webhook answers non-2xx and the
provider retries.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Optional

from booking_sync.errors import (
    BookingNotFoundError,
    DuplicateKeyError,
    ProcessingTimeout,
)
from booking_sync.events import (
    Ignored,
    PaymentFailed,
    PaymentSucceeded,
    SessionBooked,
    SessionCanceled,
)
from booking_sync.extensions import db
from booking_sync.models.booking import Booking
from booking_sync.models.session_type import SessionType
from booking_sync.services import notification_service, reconciliation_store
from booking_sync.services.state_machine import transition

logger = logging.getLogger(__name__)

PROCESSED = "processed"
ALREADY_PROCESSED = "already_processed"
IGNORED_EVENT = "ignored_event"
IGNORED_TRANSITION = "ignored_transition"


@dataclass
class ReconcileResult:
    status: str  # processed | already_processed | ignored_event | ignored_transition
    booking_id: Optional[str] = None
    outcome: Optional[str] = None
    command_id: Optional[str] = None


def _requires_payment(session_type_id):
    session_type = db.session.get(SessionType, session_type_id)
    if session_type is None:
        logger.warning(f"Unknown session type {session_type_id}, treating as paid")
        return True
    return session_type.requires_payment


def _budget_exceeded(deadline):
    return deadline is not None and time.monotonic() > deadline


def _load_booking(correlation_key):
    # FOR UPDATE serialises concurrent events on the same booking where the
    # database supports it (ignored on SQLite).
    return (
        Booking.query
        .filter_by(correlation_key=correlation_key)
        .with_for_update()
        .first()
    )


def _new_booking(event):
    return Booking(
        id=str(uuid.uuid4()),
        correlation_key=event.correlation_key,
        client_id=event.client_id,
        builder_id=event.builder_id,
        session_type_id=event.session_type_id,
        start_time=event.start_time,
        end_time=event.end_time,
        scheduling_reference=event.scheduling_reference,
        scheduling_event_uri=event.scheduling_event_uri,
        client_email=event.client_email,
        client_name=event.client_name,
        client_timezone=event.client_timezone,
    )


def _apply_event_fields(booking, event):
    if isinstance(event, (PaymentSucceeded, PaymentFailed)) and event.payment_reference:
        booking.payment_reference = event.payment_reference
    elif isinstance(event, SessionCanceled):
        booking.cancellation_reason = event.reason
        booking.cancelled_by = event.cancelled_by


def _apply(event):
    """Run one event inside the open transaction. Does not commit."""
    provider = event.provider
    event_id = event.external_event_id

    if isinstance(event, Ignored):
        reconciliation_store.record_processed(
            provider, event_id, event.raw_type, IGNORED_EVENT
        )
        logger.info(f"Ignored unsupported {provider} event type {event.raw_type} ({event_id})")
        return ReconcileResult(status=IGNORED_EVENT, outcome=IGNORED_EVENT)

    booking = _load_booking(event.correlation_key)
    if booking is None and not isinstance(event, SessionBooked):
        raise BookingNotFoundError(
            f"No booking for {event.correlation_key} ({provider} {event.raw_type})"
        )

    current = booking.status if booking else None
    requires_payment = True
    if booking is None:
        requires_payment = _requires_payment(event.session_type_id)

    result = transition(current, event, requires_payment)

    if not result.changed:
        if booking.is_terminal and isinstance(event, PaymentSucceeded):
            logger.warning(
                f"Payment {event.payment_reference} succeeded for cancelled booking "
                f"{event.correlation_key}; refund may be required"
            )
        else:
            logger.info(
                f"No-op {event.raw_type} for booking {event.correlation_key} in state {current}"
            )
        reconciliation_store.record_processed(
            provider, event_id, event.raw_type, result.outcome, booking.id
        )
        return ReconcileResult(
            status=IGNORED_TRANSITION, booking_id=booking.id, outcome=result.outcome
        )

    if booking is None:
        booking = _new_booking(event)

    # Ledger first: a concurrent delivery of the same event fails here,
    # before the booking write is sent.
    reconciliation_store.record_processed(
        provider, event_id, event.raw_type, result.outcome, booking.id
    )

    booking.status = result.next
    _apply_event_fields(booking, event)
    db.session.add(booking)

    command = None
    if result.command:
        command = notification_service.enqueue(booking, result.command, event)

    db.session.flush()
    logger.info(
        f"Booking {booking.correlation_key}: {result.outcome} on {provider} {event.raw_type}"
    )
    return ReconcileResult(
        status=PROCESSED,
        booking_id=booking.id,
        outcome=result.outcome,
        command_id=command.id if command else None,
    )


def reconcile(event, budget_seconds=None):
    """Apply `event` exactly once. Commits on success; rolls back and re-raises on failure.

    A replay (already in the ledger, or losing the insert race) returns
    ALREADY_PROCESSED with no side effect.
    """
    deadline = time.monotonic() + budget_seconds if budget_seconds else None

    try:
        if reconciliation_store.has_processed(event.provider, event.external_event_id):
            logger.info(f"Duplicate {event.provider} event {event.external_event_id}, skipping")
            db.session.rollback()
            return ReconcileResult(status=ALREADY_PROCESSED)

        result = _apply(event)
        if _budget_exceeded(deadline):
            raise ProcessingTimeout(
                f"{event.provider} event {event.external_event_id} exceeded "
                f"{budget_seconds}s processing budget"
            )
        db.session.commit()
    except DuplicateKeyError:
        db.session.rollback()
        logger.info(f"Lost ledger race for {event.provider} event {event.external_event_id}, treating as processed")
        return ReconcileResult(status=ALREADY_PROCESSED)
    except Exception:
        db.session.rollback()
        raise

    return result


def get_booking(correlation_key):
    return Booking.query.filter_by(correlation_key=correlation_key).first()
