"""Customer trust score (0-100).

compute_trust_score is a pure function of a CustomerHistory and a reference
time, so an auto-approval decision can be recomputed later from the same data.
score_customer loads the history from the database.
"""

from datetime import UTC, datetime
from typing import NamedTuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from courtslot.core.clock import utcnow
from courtslot.models.booking import Booking, BookingStatus
from courtslot.models.member import User

NEUTRAL_SCORE = 50

MAX_ACCOUNT_AGE_POINTS = 10
DAYS_PER_AGE_POINT = 30
PHONE_VERIFIED_POINTS = 15
EMAIL_VERIFIED_POINTS = 10
POINTS_PER_CONFIRMED_BOOKING = 5
MAX_BOOKING_POINTS = 25
MAX_CANCELLATION_PENALTY = 20

# Completed bookings were confirmed before the day passed
CONFIRMED_HISTORY_STATUSES = (BookingStatus.CONFIRMED, BookingStatus.COMPLETED)


class CustomerHistory(NamedTuple):
    created_at: datetime
    is_phone_verified: bool
    is_email_verified: bool
    confirmed_bookings: int
    cancelled_bookings: int


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def compute_trust_score(history: CustomerHistory, now: datetime) -> int:
    score = NEUTRAL_SCORE

    days_old = (_as_utc(now) - _as_utc(history.created_at)).days
    score += min(MAX_ACCOUNT_AGE_POINTS, max(0, days_old // DAYS_PER_AGE_POINT))

    if history.is_phone_verified:
        score += PHONE_VERIFIED_POINTS
    if history.is_email_verified:
        score += EMAIL_VERIFIED_POINTS

    score += min(MAX_BOOKING_POINTS, history.confirmed_bookings * POINTS_PER_CONFIRMED_BOOKING)

    total = history.confirmed_bookings + history.cancelled_bookings
    if total > 0:
        # Integer floor of 20 * cancelled / total, without float rounding surprises
        score -= (MAX_CANCELLATION_PENALTY * history.cancelled_bookings) // total

    return max(0, min(100, score))


async def load_history(db: AsyncSession, customer_id: int) -> CustomerHistory | None:
    result = await db.execute(select(User).where(User.id == customer_id))
    user = result.scalar_one_or_none()
    if user is None:
        return None

    counts = await db.execute(
        select(Booking.status, func.count(Booking.id))
        .where(Booking.customer_id == customer_id)
        .group_by(Booking.status)
    )
    by_status = {status: count for status, count in counts.all()}

    return CustomerHistory(
        created_at=user.created_at,
        is_phone_verified=user.is_phone_verified,
        is_email_verified=user.is_email_verified,
        confirmed_bookings=sum(by_status.get(s, 0) for s in CONFIRMED_HISTORY_STATUSES),
        cancelled_bookings=by_status.get(BookingStatus.CANCELLED, 0),
    )


async def score_customer(db: AsyncSession, customer_id: int, now: datetime | None = None) -> int:
    """Trust score for a customer; an unknown customer gets the neutral score."""
    history = await load_history(db, customer_id)
    if history is None:
        return NEUTRAL_SCORE
    return compute_trust_score(history, now or utcnow())
