"""Session type model.

A bookable offering from a builder. Only `price` matters to reconciliation:
free sessions are confirmed as soon as Calendly reports them booked, paid
ones wait for a Stripe payment.
"""

import uuid

from booking_sync.extensions import db


class SessionType(db.Model):
    __tablename__ = "session_types"

    id = db.Column(
        db.String(64), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    builder_id = db.Column(db.String(64), nullable=False, index=True)
    title = db.Column(db.String(255), nullable=False)
    price = db.Column(db.Integer, nullable=False, default=0)  # minor units (cents)
    currency = db.Column(db.String(3), nullable=False, default="usd")
    duration_minutes = db.Column(db.Integer, nullable=False, default=60)
    calendly_scheduling_url = db.Column(
        db.String(512), nullable=True
    )  # e.g. https://calendly.com/jane-builder/consultation
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    @property
    def requires_payment(self):
        return (self.price or 0) > 0

    def __repr__(self):
        return f"<SessionType {self.title} ({self.price} {self.currency})>"
