"""Booking status transitions.

The transition table is the whole lifecycle:

    pending   -> confirmed | rejected | cancelled
    confirmed -> cancelled | completed

Nothing re-enters pending and rejected/cancelled/completed are terminal.
Each move is a compare-and-set on the current status, so an owner approving
and a customer cancelling the same booking at once cannot both succeed.
"""

import logging

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from courtslot.core.clock import utcnow
from courtslot.models.booking import ApprovalMethod, Booking, BookingStatus
from courtslot.services.errors import InvalidTransition

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.REJECTED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.CANCELLED, BookingStatus.COMPLETED}),
}


def can_transition(from_status: BookingStatus, to_status: BookingStatus) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, frozenset())


async def transition(db: AsyncSession, booking: Booking, to_status: BookingStatus, **values) -> Booking:
    """Move a booking to to_status, writing any extra column values in the same statement."""
    from_status = booking.status
    if not can_transition(from_status, to_status):
        raise InvalidTransition(f"Cannot change a {from_status.value} booking to {to_status.value}")

    result = await db.execute(
        update(Booking)
        .where(Booking.id == booking.id, Booking.status == from_status)
        .values(status=to_status, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InvalidTransition(
            "Booking was changed by someone else. Reload it and try again.", rule="stale_booking"
        )

    set_committed_value(booking, "status", to_status)
    for key, value in values.items():
        set_committed_value(booking, key, value)

    logger.info("Booking %s: %s -> %s", booking.code, from_status.value, to_status.value)
    return booking


async def confirm(db: AsyncSession, booking: Booking, method: ApprovalMethod) -> Booking:
    """pending -> confirmed. Slots were reserved at creation and stay booked."""
    return await transition(
        db,
        booking,
        BookingStatus.CONFIRMED,
        confirmed_at=utcnow(),
        approval_method=method,
    )
