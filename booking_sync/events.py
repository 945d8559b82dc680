"""Internal booking events.

Provider payloads are converted into exactly one of these variants at the
edge (services/event_normalizer.py). Nothing past the normalizer looks at
raw Stripe or Calendly dictionaries.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

STRIPE = "stripe"
CALENDLY = "calendly"
PROVIDERS = (STRIPE, CALENDLY)


@dataclass(frozen=True)
class BookingEvent:
    provider: str
    external_event_id: str
    correlation_key: Optional[str]
    raw_type: str
    occurred_at: Optional[datetime]  # advisory only, never used for ordering


@dataclass(frozen=True)
class SessionBooked(BookingEvent):
    client_id: str = ""
    builder_id: str = ""
    session_type_id: str = ""
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    scheduling_reference: Optional[str] = None  # invitee URI
    scheduling_event_uri: Optional[str] = None
    client_email: Optional[str] = None
    client_name: Optional[str] = None
    client_timezone: Optional[str] = None


@dataclass(frozen=True)
class SessionCanceled(BookingEvent):
    reason: Optional[str] = None
    cancelled_by: Optional[str] = None  # CLIENT | BUILDER


@dataclass(frozen=True)
class PaymentSucceeded(BookingEvent):
    payment_reference: Optional[str] = None


@dataclass(frozen=True)
class PaymentFailed(BookingEvent):
    payment_reference: Optional[str] = None
    failure_message: Optional[str] = None


@dataclass(frozen=True)
class Ignored(BookingEvent):
    """Unsupported event type. Acknowledged and recorded, never acted on."""
