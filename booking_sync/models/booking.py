"""Booking model.

The authoritative record of a client-builder session and its
confirmation/payment status. Written only by the reconciliation service
(booking_sync/services/booking_service.py); read by the marketplace/UI layers.

Bookings are never deleted — cancellation is a status.
"""

import uuid

from booking_sync.extensions import db


class Booking(db.Model):
    __tablename__ = "bookings"

    # -- Valid statuses (see services/state_machine.py for transitions) --
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    PAYMENT_FAILED = "PAYMENT_FAILED"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    correlation_key = db.Column(
        db.String(64), unique=True, nullable=False
    )  # "booking_ref" embedded in Calendly utm_content + Stripe metadata
    client_id = db.Column(db.String(64), nullable=False)
    builder_id = db.Column(db.String(64), nullable=False)
    session_type_id = db.Column(db.String(64), nullable=False)
    start_time = db.Column(db.DateTime(timezone=True), nullable=False)
    end_time = db.Column(db.DateTime(timezone=True), nullable=False)
    status = db.Column(
        db.String(20), nullable=False, default=PENDING
    )  # PENDING | CONFIRMED | CANCELLED | PAYMENT_FAILED

    # --- Provider references ---
    scheduling_reference = db.Column(
        db.String(512), nullable=True
    )  # Calendly invitee URI
    scheduling_event_uri = db.Column(db.String(512), nullable=True)
    payment_reference = db.Column(
        db.String(255), nullable=True
    )  # Stripe payment intent / checkout session id, set once a payment event lands

    # --- Invitee details (needed to address notifications) ---
    client_email = db.Column(db.String(255), nullable=True)
    client_name = db.Column(db.String(255), nullable=True)
    client_timezone = db.Column(db.String(64), nullable=True)

    # --- Cancellation ---
    cancellation_reason = db.Column(db.Text, nullable=True)
    cancelled_by = db.Column(db.String(20), nullable=True)  # CLIENT | BUILDER

    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    notifications = db.relationship(
        "NotificationCommand", back_populates="booking", lazy="dynamic"
    )

    @property
    def is_terminal(self):
        return self.status == self.CANCELLED

    def to_dict(self):
        """Public view exposed to the marketplace/UI layers."""
        return {
            "id": self.id,
            "correlation_key": self.correlation_key,
            "status": self.status,
            "client_id": self.client_id,
            "builder_id": self.builder_id,
            "session_type_id": self.session_type_id,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "payment_reference": self.payment_reference,
            "scheduling_reference": self.scheduling_reference,
        }

    def __repr__(self):
        return f"<Booking {self.correlation_key} ({self.status})>"
