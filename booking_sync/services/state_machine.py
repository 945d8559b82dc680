"""Booking state machine.

Pure transition function: (current status, event) -> (next status, command).
No database access, no I/O; booking_service.py applies the result.

    (none)          --SessionBooked-->     PENDING, or CONFIRMED if the session is free
    PENDING         --PaymentSucceeded-->  CONFIRMED
    PENDING         --PaymentFailed-->     PAYMENT_FAILED
    PAYMENT_FAILED  --PaymentSucceeded-->  CONFIRMED        (provider retried the payment)
    any but CANCELLED --SessionCanceled--> CANCELLED        (terminal)

Everything else is an absorbed no-op. Out-of-order and duplicate delivery is
normal provider behaviour, so an "illegal" pair is never an error. Provider
timestamps play no part: a cancellation wins over a payment no matter which
arrives first, because nothing leaves CANCELLED.
"""

from dataclasses import dataclass
from typing import Optional

from booking_sync.events import (
    BookingEvent,
    PaymentFailed,
    PaymentSucceeded,
    SessionBooked,
    SessionCanceled,
)
from booking_sync.models.booking import Booking
from booking_sync.models.notification import NotificationCommand

PENDING = Booking.PENDING
CONFIRMED = Booking.CONFIRMED
CANCELLED = Booking.CANCELLED
PAYMENT_FAILED = Booking.PAYMENT_FAILED


@dataclass(frozen=True)
class Transition:
    previous: Optional[str]
    next: Optional[str]
    command: Optional[str] = None  # NotificationCommand kind to emit, if any

    @property
    def changed(self):
        return self.next != self.previous

    @property
    def outcome(self):
        """Ledger summary, e.g. "PENDING->CONFIRMED" or "ignored_transition"."""
        if not self.changed:
            return "ignored_transition"
        return f"{self.previous or 'NEW'}->{self.next}"


def _noop(current):
    return Transition(previous=current, next=current)


def transition(current: Optional[str], event: BookingEvent, requires_payment: bool = True) -> Transition:
    """Return the transition `event` causes from `current` (None: no booking yet).

    `requires_payment` only matters for SessionBooked on a new booking.
    """
    if current is None:
        if isinstance(event, SessionBooked):
            if requires_payment:
                return Transition(previous=None, next=PENDING)
            return Transition(
                previous=None,
                next=CONFIRMED,
                command=NotificationCommand.SEND_BOOKING_CONFIRMATION,
            )
        return _noop(current)

    if current == CANCELLED:
        return _noop(current)

    if isinstance(event, SessionCanceled):
        return Transition(
            previous=current,
            next=CANCELLED,
            command=NotificationCommand.SEND_BOOKING_CANCELLATION,
        )

    if isinstance(event, PaymentSucceeded) and current in (PENDING, PAYMENT_FAILED):
        return Transition(
            previous=current,
            next=CONFIRMED,
            command=NotificationCommand.SEND_BOOKING_CONFIRMATION,
        )

    if isinstance(event, PaymentFailed) and current == PENDING:
        return Transition(
            previous=current,
            next=PAYMENT_FAILED,
            command=NotificationCommand.SEND_PAYMENT_FAILURE_NOTICE,
        )

    return _noop(current)
