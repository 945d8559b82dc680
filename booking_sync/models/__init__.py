# Models package: import all models here so Alembic can discover them.

from booking_sync.models.booking import Booking  # noqa: F401
from booking_sync.models.session_type import SessionType  # noqa: F401
from booking_sync.models.processed_event import ProcessedEvent  # noqa: F401
from booking_sync.models.notification import NotificationCommand  # noqa: F401
