"""Exceptions raised by the webhook reconciliation pipeline.

The webhooks blueprint maps each of these to a response status; see
booking_sync/blueprints/webhooks.py.
"""


class ReconciliationError(Exception):
    """Base class for errors raised while handling a provider webhook."""


class AuthenticityError(ReconciliationError):
    """Signature verification could not be performed (e.g. secret not configured).

    Distinct from a signature that simply does not match, which is a normal
    False result from the verifier.
    """


class NormalizationError(ReconciliationError):
    """Payload is missing a field the event contract requires (e.g. booking_ref)."""


class DuplicateKeyError(ReconciliationError):
    """Ledger insert lost a race: the (provider, event id) pair already exists."""


class BookingNotFoundError(ReconciliationError):
    """Event references a correlation key with no booking yet."""


class ProcessingTimeout(ReconciliationError):
    """Reconciliation did not finish within the configured processing budget."""
