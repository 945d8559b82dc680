"""Reconciliation store — the processed-event ledger.

Responsible for:
- Answering "have we already handled (provider, event id)?"
- Recording a handled event, inside the caller's transaction
- Pruning old ledger rows (housekeeping CLI)

record_processed() flushes immediately so a concurrent insert of the same
pair fails here, with DuplicateKeyError, before any other write of the unit
is sent. The caller owns the commit/rollback.
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError

from booking_sync.errors import DuplicateKeyError
from booking_sync.extensions import db
from booking_sync.models.processed_event import ProcessedEvent

logger = logging.getLogger(__name__)


def has_processed(provider, external_event_id):
    """True if this provider event is already in the ledger."""
    return db.session.query(
        ProcessedEvent.query.filter_by(
            provider=provider, external_event_id=external_event_id
        ).exists()
    ).scalar()


def record_processed(provider, external_event_id, event_type, outcome, booking_id=None):
    """Insert a ledger entry. Raises DuplicateKeyError if the pair already exists."""
    entry = ProcessedEvent(
        provider=provider,
        external_event_id=external_event_id,
        event_type=event_type,
        outcome=outcome,
        booking_id=booking_id,
    )
    db.session.add(entry)
    try:
        db.session.flush()
    except IntegrityError as e:
        raise DuplicateKeyError(
            f"{provider} event {external_event_id} already recorded"
        ) from e
    return entry


def prune_processed(older_than_days):
    """Delete ledger rows older than `older_than_days`. Returns the row count.

    Only safe once the providers have stopped retrying those events
    (Stripe retries for up to 3 days).
    """
    cutoff = datetime.now(timezone.utc) - timedelta(days=older_than_days)
    deleted = ProcessedEvent.query.filter(
        ProcessedEvent.processed_at < cutoff
    ).delete(synchronize_session=False)
    db.session.commit()
    logger.info(f"Pruned {deleted} ledger entries older than {older_than_days} days")
    return deleted
