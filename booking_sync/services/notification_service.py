"""Notification service — the dispatcher side of the command outbox.

Responsible for:
- Building NotificationCommand rows for a booking transition (called inside
  the reconciliation transaction, never commits)
- Dispatching committed commands: claim the row, render, hand to email
- Flushing commands left undispatched (`flask dispatch-notifications`)

A command is claimed by stamping dispatched_at with a conditional UPDATE
before anything is sent, so two dispatchers racing on the same row send it
at most once. Delivery failures after the claim are the mail transport's
problem, not a reason to send twice.
"""

import logging
from datetime import datetime, timezone

from flask import current_app

from booking_sync.extensions import db
from booking_sync.models.notification import NotificationCommand
from booking_sync.models.session_type import SessionType
from booking_sync.services.email_service import send_email, send_email_sync

logger = logging.getLogger(__name__)

# kind -> (subject template, email template)
TEMPLATES = {
    NotificationCommand.SEND_BOOKING_CONFIRMATION: (
        "Your session is confirmed — {session_title}",
        "emails/booking_confirmed.html",
    ),
    NotificationCommand.SEND_BOOKING_CANCELLATION: (
        "Your session has been cancelled — {session_title}",
        "emails/booking_cancelled.html",
    ),
    NotificationCommand.SEND_PAYMENT_FAILURE_NOTICE: (
        "Payment failed for your session — {session_title}",
        "emails/payment_failed.html",
    ),
}


def _fmt(dt):
    return dt.strftime("%A, %B %d, %Y at %H:%M UTC") if dt else ""


def build_context(booking, event=None):
    """Render data for a booking email. Plain JSON types only (stored on the row)."""
    session_type = db.session.get(SessionType, booking.session_type_id)
    base_url = current_app.config["APP_BASE_URL"]
    context = {
        "client_name": booking.client_name or "",
        "session_title": session_type.title if session_type else "your session",
        "start_time": _fmt(booking.start_time),
        "end_time": _fmt(booking.end_time),
        "client_timezone": booking.client_timezone or "",
        "booking_url": f"{base_url}/bookings/{booking.correlation_key}",
        "cancellation_reason": booking.cancellation_reason or "",
    }
    failure_message = getattr(event, "failure_message", None)
    if failure_message:
        context["failure_message"] = failure_message
    return context


def enqueue(booking, kind, event):
    """Add a command for `booking` to the current transaction.

    Uniqueness on (provider, external_event_id) means a replayed event can
    never add a second one.
    """
    command = NotificationCommand(
        booking_id=booking.id,
        kind=kind,
        recipient=booking.client_email,
        context=build_context(booking, event),
        provider=event.provider,
        external_event_id=event.external_event_id,
    )
    db.session.add(command)
    return command


def _claim(command_id):
    """Stamp dispatched_at if nobody has. True if this caller won the row."""
    claimed = (
        NotificationCommand.query
        .filter_by(id=command_id, dispatched_at=None)
        .update(
            {"dispatched_at": datetime.now(timezone.utc)},
            synchronize_session=False,
        )
    )
    db.session.commit()
    return claimed == 1


def dispatch(command, sync=False):
    """Deliver one committed command. Returns True if it was sent by this call.

    With sync=True the SMTP result is known, and a rejected send returns
    False. The command stays claimed either way.
    """
    if not _claim(command.id):
        logger.info(f"Notification {command.id} already dispatched, skipping")
        return False

    if not command.recipient:
        logger.warning(f"Notification {command.kind} for booking {command.booking_id} has no recipient")
        return False

    subject_tpl, template = TEMPLATES[command.kind]
    context = dict(command.context or {})
    subject = subject_tpl.format(session_title=context.get("session_title", "your session"))
    headers = {"X-Booking-Ref": command.booking.correlation_key}

    if sync:
        if not send_email_sync(to=command.recipient, subject=subject, template=template,
                               context=context, headers=headers):
            logger.warning(f"Notification {command.id} ({command.kind}) was not delivered")
            return False
    else:
        send_email(to=command.recipient, subject=subject, template=template,
                   context=context, headers=headers)

    logger.info(f"Dispatched {command.kind} for booking {command.booking_id} to {command.recipient}")
    return True


def dispatch_pending(limit=100):
    """Dispatch commands that committed but were never sent. Returns the send count."""
    pending = (
        NotificationCommand.query
        .filter(NotificationCommand.dispatched_at.is_(None))
        .order_by(NotificationCommand.created_at)
        .limit(limit)
        .all()
    )
    sent = 0
    for command in pending:
        if dispatch(command, sync=True):
            sent += 1
    return sent
