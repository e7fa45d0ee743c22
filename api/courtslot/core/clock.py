"""Venue-local time helpers.

Slot dates and HH:MM times are wall-clock values in the venue timezone, while
audit timestamps are stored in UTC.
"""

from datetime import UTC, date, datetime
from zoneinfo import ZoneInfo

from courtslot.core.config import settings

LOCAL_TZ = ZoneInfo(settings.timezone)


def utcnow() -> datetime:
    return datetime.now(UTC)


def local_today() -> date:
    return datetime.now(LOCAL_TZ).date()
