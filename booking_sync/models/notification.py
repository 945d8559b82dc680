"""Notification command model (outbox).

The command channel to the notification dispatcher. A row is written in the
same transaction as the booking status change and its ledger entry, so a
command exists if and only if the transition committed.

Unique per (provider, external_event_id): one webhook event can issue at
most one command.
"""

import uuid

from booking_sync.extensions import db


class NotificationCommand(db.Model):
    __tablename__ = "notification_commands"
    __table_args__ = (
        db.UniqueConstraint(
            "provider", "external_event_id", name="uq_notification_commands_event"
        ),
    )

    # -- Command kinds --
    SEND_BOOKING_CONFIRMATION = "SendBookingConfirmation"
    SEND_BOOKING_CANCELLATION = "SendBookingCancellation"
    SEND_PAYMENT_FAILURE_NOTICE = "SendPaymentFailureNotice"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    booking_id = db.Column(
        db.String(36), db.ForeignKey("bookings.id"), nullable=False
    )
    kind = db.Column(db.String(64), nullable=False)
    recipient = db.Column(db.String(255), nullable=True)  # None -> nothing to send
    context = db.Column(db.JSON, default=dict)  # template render data
    provider = db.Column(db.String(32), nullable=False)
    external_event_id = db.Column(db.String(512), nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    dispatched_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # --- Relationships ---
    booking = db.relationship("Booking", back_populates="notifications")

    def __repr__(self):
        return f"<NotificationCommand {self.kind} booking={self.booking_id}>"
