"""Processed event model (reconciliation ledger).

Every webhook event that reaches the state machine is recorded by its
(provider, external_event_id) pair. The unique constraint on that pair is
what gives at-most-once side effects: a second insert of the same pair
fails, and the loser treats the event as already handled.

Rows are never updated. Old rows may be pruned (see `flask prune-ledger`).
"""

import uuid

from booking_sync.extensions import db


class ProcessedEvent(db.Model):
    __tablename__ = "processed_events"
    __table_args__ = (
        db.UniqueConstraint(
            "provider", "external_event_id", name="uq_processed_events_provider_event"
        ),
    )

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    provider = db.Column(db.String(32), nullable=False)  # stripe | calendly
    external_event_id = db.Column(
        db.String(512), nullable=False
    )  # e.g. "evt_1Abc..." or "invitee.created:https://api.calendly.com/..."
    event_type = db.Column(
        db.String(255), nullable=False
    )  # e.g. "checkout.session.completed"
    booking_id = db.Column(
        db.String(36), nullable=True, index=True
    )  # back-reference only, no FK ownership
    outcome = db.Column(
        db.String(255), nullable=False
    )  # e.g. "PENDING->CONFIRMED", "ignored_transition", "ignored_event"
    processed_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<ProcessedEvent {self.provider}:{self.external_event_id} ({self.outcome})>"
