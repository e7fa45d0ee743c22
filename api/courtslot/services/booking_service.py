"""Booking state machine.

Creates bookings and moves them through their lifecycle, keeping the slot
ledger in step: pending and confirmed bookings hold their slots booked,
rejection and cancellation release them.

Nothing here commits. Callers own the transaction, and must roll back when a
BookingError escapes so that partial work (a reserved slot, a counted booking)
is undone. Notifications are returned on the BookingOutcome for the caller to
dispatch after commit.
"""

import logging
import secrets
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from courtslot.core.clock import local_today, utcnow
from courtslot.core.config import settings
from courtslot.models.booking import (
    ApprovalMethod,
    Booking,
    BookingSlot,
    BookingSource,
    BookingStatus,
    CancelledBy,
)
from courtslot.models.member import User, UserRole
from courtslot.models.slot import Slot
from courtslot.models.venue import Court, Venue
from courtslot.schemas import ApprovalResult, AutoApprovalPolicy, BookingCreate, BookingOut, OfflineBookingCreate
from courtslot.services import auto_approval, lifecycle, quota, slot_ledger
from courtslot.services.errors import InvalidRequest, InvalidTransition, NotFound, QuotaExceeded
from courtslot.services.notifications import NotificationEvent, PendingNotification, Recipient

logger = logging.getLogger(__name__)

CUSTOMER_CANCEL_CONFIRMED_MESSAGE = "Cannot cancel confirmed booking. Please contact venue owner."

_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


@dataclass
class BookingOutcome:
    """Result of a state-changing operation."""

    booking: Booking
    message: str
    approval: ApprovalResult | None = None
    notifications: list[PendingNotification] = field(default_factory=list)


def _to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_booking_code(now: datetime | None = None) -> str:
    """BK + base-36 millisecond timestamp + 5 random base-36 characters."""
    millis = int((now or utcnow()).timestamp() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(5))
    return f"BK{_to_base36(millis)}{suffix}"


# --- Notification helpers ---


def _schedule(slots: list[Slot]) -> str:
    if not slots:
        return "N/A"
    ordered = sorted(slots, key=lambda s: (s.slot_date, s.start_time))
    first, last = ordered[0], ordered[-1]
    return f"{first.slot_date:%d %b %Y}, {first.start_time}-{last.end_time}"


def _notification(
    event: NotificationEvent,
    recipient: User,
    booking: Booking,
    venue: Venue,
    slots: list[Slot],
    reason: str | None = None,
) -> PendingNotification:
    return PendingNotification(
        event=event,
        recipient=Recipient.from_user(recipient),
        booking=BookingOut.model_validate(booking),
        owner_id=venue.owner_id,
        venue_name=venue.name,
        schedule=_schedule(slots),
        reason=reason,
    )


async def _notify(
    db: AsyncSession,
    event: NotificationEvent,
    booking: Booking,
    recipient_id: int,
    reason: str | None = None,
) -> list[PendingNotification]:
    """Build a notification for an existing booking, loading what the message needs."""
    recipient = await db.get(User, recipient_id)
    venue = await db.get(Venue, booking.venue_id)
    if recipient is None or venue is None:
        return []
    slots = await slot_ledger.load_slots(db, booking.slot_ids)
    return [_notification(event, recipient, booking, venue, slots, reason)]


# --- Creation ---


async def _load_target(db: AsyncSession, venue_id: int, court_id: int, sport_id: int) -> tuple[Venue, Court]:
    result = await db.execute(select(Venue).where(Venue.id == venue_id, Venue.is_active.is_(True)))
    venue = result.scalar_one_or_none()
    if venue is None:
        raise NotFound("Venue not found")

    result = await db.execute(select(Court).where(Court.id == court_id, Court.is_active.is_(True)))
    court = result.scalar_one_or_none()
    if court is None:
        raise NotFound("Court not found")

    if court.venue_id != venue.id:
        raise InvalidRequest("Court does not belong to this venue", rule="court_mismatch")
    if court.sport_id != sport_id:
        raise InvalidRequest("Court is not available for this sport", rule="sport_mismatch")
    return venue, court


def _check_slots_match(slots: list[Slot], court: Court) -> None:
    for slot in slots:
        if slot.court_id != court.id or slot.venue_id != court.venue_id or slot.sport_id != court.sport_id:
            raise InvalidRequest(f"Slot {slot.id} does not belong to this court", rule="slot_mismatch")


async def _admit(
    db: AsyncSession,
    venue: Venue,
    court: Court,
    slot_ids: list[int],
    **booking_fields,
) -> tuple[Booking, list[Slot]]:
    """Quota check, slot reservation, booking row, booking counter: the shared creation path."""
    decision = await quota.can_create_booking(db, venue.owner_id)
    if not decision.allowed:
        raise QuotaExceeded(decision.reason or quota.BOOKING_LIMIT_MESSAGE)

    slots = await slot_ledger.load_slots(db, slot_ids)
    _check_slots_match(slots, court)

    await slot_ledger.reserve(db, slot_ids)

    booking = Booking(
        code=generate_booking_code(),
        venue_id=venue.id,
        court_id=court.id,
        sport_id=court.sport_id,
        slot_links=[BookingSlot(slot_id=sid, position=i) for i, sid in enumerate(slot_ids)],
        **booking_fields,
    )
    db.add(booking)
    await db.flush()

    await quota.increment_booking_count(db, venue.owner_id)
    return booking, slots


async def _owner_wants_auto_approval_notice(db: AsyncSession, owner_id: int) -> bool:
    row = await auto_approval.get_or_create_settings(db, owner_id)
    return AutoApprovalPolicy.model_validate(row.policy).notify_on_auto_approval


async def create_booking(db: AsyncSession, customer: User, request: BookingCreate) -> BookingOutcome:
    """Online booking request: reserve the slots, then let the owner's policy decide."""
    venue, court = await _load_target(db, request.venue_id, request.court_id, request.sport_id)
    booking, slots = await _admit(
        db,
        venue,
        court,
        request.slot_ids,
        customer_id=customer.id,
        amount_paise=request.amount_paise,
        payment_proof_ref=request.payment_proof_ref,
        transaction_ref=request.transaction_ref,
        status=BookingStatus.PENDING,
        source=BookingSource.ONLINE,
    )
    logger.info("Booking %s created by customer %d for %d slot(s)", booking.code, customer.id, len(slots))

    approval = await auto_approval.evaluate_booking(db, booking, venue.owner_id)

    owner = await db.get(User, venue.owner_id)
    notifications: list[PendingNotification] = []
    if approval.approved:
        message = f"✅ Booking confirmed instantly! {len(slots)} slot(s) booked."
        notifications.append(_notification(NotificationEvent.BOOKING_CONFIRMED, customer, booking, venue, slots))
        notify_owner = await _owner_wants_auto_approval_notice(db, venue.owner_id)
    else:
        message = f"Successfully booked {len(slots)} slot(s). Waiting for owner approval."
        notifications.append(_notification(NotificationEvent.BOOKING_CREATED, customer, booking, venue, slots))
        notify_owner = True

    if owner is not None and notify_owner:
        notifications.append(_notification(NotificationEvent.NEW_BOOKING_REQUEST, owner, booking, venue, slots))

    return BookingOutcome(booking=booking, message=message, approval=approval, notifications=notifications)


async def _find_or_create_walk_in(db: AsyncSession, name: str, phone: str) -> User:
    # Only an active customer account may be reused; staff sharing the number are not
    result = await db.execute(
        select(User)
        .where(User.phone == phone, User.role == UserRole.CUSTOMER, User.is_active.is_(True))
        .order_by(User.id)
        .limit(1)
    )
    customer = result.scalar_one_or_none()
    if customer is not None:
        return customer

    # Owner saw the customer in person
    customer = User(name=name, phone=phone, role=UserRole.CUSTOMER, is_phone_verified=True)
    db.add(customer)
    await db.flush()
    logger.info("Created walk-in customer %d", customer.id)
    return customer


async def create_offline_booking(db: AsyncSession, owner: User, request: OfflineBookingCreate) -> BookingOutcome:
    """Walk-in booking recorded by the owner: confirmed immediately, no auto-approval."""
    venue, court = await _load_target(db, request.venue_id, request.court_id, request.sport_id)
    if venue.owner_id != owner.id:
        raise NotFound("Venue not found")

    customer = await _find_or_create_walk_in(db, request.customer_name, request.customer_phone)
    booking, slots = await _admit(
        db,
        venue,
        court,
        request.slot_ids,
        customer_id=customer.id,
        amount_paise=request.amount_paise,
        status=BookingStatus.CONFIRMED,
        source=BookingSource.OFFLINE,
        approval_method=ApprovalMethod.MANUAL,
        confirmed_at=utcnow(),
    )
    logger.info("Offline booking %s recorded by owner %d", booking.code, owner.id)

    return BookingOutcome(
        booking=booking,
        message=f"Offline booking confirmed. {len(slots)} slot(s) booked.",
        notifications=[_notification(NotificationEvent.BOOKING_CONFIRMED, customer, booking, venue, slots)],
    )


# --- Transitions ---


async def _get_owner_booking(db: AsyncSession, owner_id: int, booking_id: int) -> Booking:
    result = await db.execute(
        select(Booking)
        .join(Venue, Venue.id == Booking.venue_id)
        .where(Booking.id == booking_id, Venue.owner_id == owner_id)
    )
    booking = result.scalar_one_or_none()
    if booking is None:
        raise NotFound("Booking not found")
    return booking


async def approve_booking(db: AsyncSession, owner: User, booking_id: int) -> BookingOutcome:
    booking = await _get_owner_booking(db, owner.id, booking_id)
    await lifecycle.confirm(db, booking, ApprovalMethod.MANUAL)
    return BookingOutcome(
        booking=booking,
        message="Booking approved successfully",
        notifications=await _notify(db, NotificationEvent.BOOKING_CONFIRMED, booking, booking.customer_id),
    )


async def reject_booking(db: AsyncSession, owner: User, booking_id: int, reason: str | None = None) -> BookingOutcome:
    booking = await _get_owner_booking(db, owner.id, booking_id)
    await lifecycle.transition(db, booking, BookingStatus.REJECTED, rejection_reason=reason)
    released = await slot_ledger.release(db, booking.slot_ids)
    logger.info("Booking %s rejected, %d slot(s) released", booking.code, released)
    return BookingOutcome(
        booking=booking,
        message="Booking rejected",
        notifications=await _notify(db, NotificationEvent.BOOKING_REJECTED, booking, booking.customer_id, reason),
    )


async def _cancel(
    db: AsyncSession, booking: Booking, cancelled_by: CancelledBy, reason: str | None, now: datetime | None = None
) -> int:
    await lifecycle.transition(
        db,
        booking,
        BookingStatus.CANCELLED,
        cancelled_at=now or utcnow(),
        cancelled_by=cancelled_by,
        cancellation_reason=reason,
    )
    return await slot_ledger.release(db, booking.slot_ids)


async def cancel_booking(db: AsyncSession, actor: User, booking_id: int, reason: str | None = None) -> BookingOutcome:
    """Cancel a booking and free its slots.

    Owners may cancel pending or confirmed bookings at their venues. Customers
    may only withdraw their own pending requests.
    """
    if actor.role == UserRole.OWNER:
        booking = await _get_owner_booking(db, actor.id, booking_id)
        cancelled_by = CancelledBy.OWNER
        recipient_id = booking.customer_id
    else:
        result = await db.execute(select(Booking).where(Booking.id == booking_id, Booking.customer_id == actor.id))
        booking = result.scalar_one_or_none()
        if booking is None:
            raise NotFound("Booking not found")
        if booking.status == BookingStatus.CONFIRMED:
            raise InvalidTransition(CUSTOMER_CANCEL_CONFIRMED_MESSAGE, rule="owner_must_cancel")
        cancelled_by = CancelledBy.CUSTOMER
        venue = await db.get(Venue, booking.venue_id)
        recipient_id = venue.owner_id

    released = await _cancel(db, booking, cancelled_by, reason)
    logger.info("Booking %s cancelled by %s, %d slot(s) released", booking.code, cancelled_by.value, released)
    return BookingOutcome(
        booking=booking,
        message="Booking cancelled successfully",
        notifications=await _notify(db, NotificationEvent.BOOKING_CANCELLED, booking, recipient_id, reason),
    )


# --- Periodic maintenance ---


async def complete_past_bookings(db: AsyncSession, today: date | None = None) -> int:
    """Mark confirmed bookings whose last slot day is over as completed. Slots stay booked."""
    today = today or local_today()
    finished = (
        select(BookingSlot.booking_id)
        .join(Slot, Slot.id == BookingSlot.slot_id)
        .group_by(BookingSlot.booking_id)
        .having(func.max(Slot.slot_date) < today)
    )
    result = await db.execute(
        update(Booking)
        .where(Booking.status == BookingStatus.CONFIRMED, Booking.id.in_(finished))
        .values(status=BookingStatus.COMPLETED)
        .returning(Booking.id)
        .execution_options(synchronize_session=False)
    )
    completed = len(result.scalars().all())
    if completed:
        logger.info("Completed %d past booking(s)", completed)
    return completed


async def expire_stale_pending(db: AsyncSession, now: datetime | None = None) -> list[BookingOutcome]:
    """Cancel pending requests the owner has not reviewed in time and free their slots."""
    now = now or utcnow()
    ttl = settings.pending_booking_ttl_hours
    result = await db.execute(
        select(Booking)
        .where(Booking.status == BookingStatus.PENDING, Booking.created_at < now - timedelta(hours=ttl))
        .order_by(Booking.id)
    )
    reason = f"Not reviewed within {ttl} hours"

    outcomes = []
    for booking in result.scalars().all():
        try:
            await _cancel(db, booking, CancelledBy.SYSTEM, reason, now)
        except InvalidTransition:
            # Approved or cancelled since we selected it
            logger.info("Booking %s changed before it could expire; skipped", booking.code)
            continue
        outcomes.append(
            BookingOutcome(
                booking=booking,
                message=reason,
                notifications=await _notify(
                    db, NotificationEvent.BOOKING_CANCELLED, booking, booking.customer_id, reason
                ),
            )
        )

    if outcomes:
        logger.info("Expired %d stale pending booking(s)", len(outcomes))
    return outcomes


# --- Queries ---


async def get_booking(db: AsyncSession, user: User, booking_id: int) -> Booking:
    """A booking visible to user: their own, one at their venue, or any for an admin."""
    stmt = select(Booking).where(Booking.id == booking_id)
    if user.role == UserRole.OWNER:
        stmt = stmt.join(Venue, Venue.id == Booking.venue_id).where(Venue.owner_id == user.id)
    elif user.role != UserRole.ADMIN:
        stmt = stmt.where(Booking.customer_id == user.id)

    result = await db.execute(stmt)
    booking = result.scalar_one_or_none()
    if booking is None:
        raise NotFound("Booking not found")
    return booking


async def list_customer_bookings(db: AsyncSession, customer_id: int, limit: int = 50) -> list[Booking]:
    result = await db.execute(
        select(Booking)
        .where(Booking.customer_id == customer_id)
        .order_by(Booking.created_at.desc(), Booking.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def list_owner_bookings(
    db: AsyncSession,
    owner_id: int,
    status: BookingStatus | None = None,
    limit: int = 100,
) -> list[Booking]:
    stmt = (
        select(Booking)
        .join(Venue, Venue.id == Booking.venue_id)
        .where(Venue.owner_id == owner_id)
        .order_by(Booking.created_at.desc(), Booking.id.desc())
        .limit(limit)
    )
    if status is not None:
        stmt = stmt.where(Booking.status == status)
    result = await db.execute(stmt)
    return list(result.scalars().all())
