"""Slot ledger: the only code that changes a slot's status.

Every transition is a single conditional UPDATE ("set booked where status is
available") so the database, not Python, decides who wins a race for a slot.
Nothing here reads a status and writes it back in a second statement.
"""

import logging
from collections.abc import Collection
from datetime import date

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from courtslot.core.config import settings
from courtslot.models.slot import Slot, SlotStatus
from courtslot.models.venue import Court, Venue
from courtslot.services.errors import InvalidRequest, NotFound, SlotUnavailable

logger = logging.getLogger(__name__)


async def load_slots(db: AsyncSession, slot_ids: list[int]) -> list[Slot]:
    """Fetch slots in request order. Raises NotFound if any id is unknown."""
    result = await db.execute(select(Slot).where(Slot.id.in_(slot_ids)))
    by_id = {slot.id: slot for slot in result.scalars().all()}
    missing = [sid for sid in slot_ids if sid not in by_id]
    if missing:
        raise NotFound(f"Some slots not found: {', '.join(map(str, missing))}")
    return [by_id[sid] for sid in slot_ids]


async def _transition(
    db: AsyncSession, slot_ids: Collection[int], from_status: SlotStatus, to_status: SlotStatus
) -> set[int]:
    """Compare-and-set every listed slot. Returns the ids that actually changed."""
    if not slot_ids:
        return set()
    result = await db.execute(
        update(Slot)
        .where(Slot.id.in_(list(slot_ids)), Slot.status == from_status)
        .values(status=to_status)
        .returning(Slot.id)
        .execution_options(synchronize_session=False)
    )
    return set(result.scalars().all())


async def reserve(db: AsyncSession, slot_ids: list[int]) -> None:
    """Atomically move every slot from available to booked, or none of them.

    If any slot in the batch is not available, the slots this call did flip are
    put back and SlotUnavailable is raised listing the ones that were taken.
    """
    if not slot_ids:
        raise InvalidRequest("Please provide at least one slot")
    if len(set(slot_ids)) != len(slot_ids):
        raise InvalidRequest("The same slot was requested more than once")

    flipped = await _transition(db, slot_ids, SlotStatus.AVAILABLE, SlotStatus.BOOKED)
    if len(flipped) == len(slot_ids):
        return

    # Partial batch: undo our own flips before reporting the conflict
    await _transition(db, flipped, SlotStatus.BOOKED, SlotStatus.AVAILABLE)
    taken = [sid for sid in slot_ids if sid not in flipped]
    logger.info("Reservation conflict on slots %s (released %d partial reservations)", taken, len(flipped))
    raise SlotUnavailable(slot_ids=taken)


async def release(db: AsyncSession, slot_ids: list[int]) -> int:
    """Move booked slots back to available. Idempotent: returns how many changed."""
    released = await _transition(db, slot_ids, SlotStatus.BOOKED, SlotStatus.AVAILABLE)
    return len(released)


async def _get_owned_slot(db: AsyncSession, owner_id: int, slot_id: int) -> Slot:
    result = await db.execute(
        select(Slot)
        .join(Venue, Venue.id == Slot.venue_id)
        .where(Slot.id == slot_id, Venue.owner_id == owner_id)
    )
    slot = result.scalar_one_or_none()
    if slot is None:
        raise NotFound("Slot not found")
    return slot


async def block(db: AsyncSession, owner_id: int, slot_id: int) -> Slot:
    """Take an available slot off sale. Blocking a blocked slot is a no-op."""
    slot = await _get_owned_slot(db, owner_id, slot_id)
    changed = await _transition(db, [slot_id], SlotStatus.AVAILABLE, SlotStatus.BLOCKED)
    await db.refresh(slot)
    if not changed and slot.status == SlotStatus.BOOKED:
        raise InvalidRequest("Cannot block a booked slot", rule="slot_booked")
    return slot


async def unblock(db: AsyncSession, owner_id: int, slot_id: int) -> Slot:
    """Put a blocked slot back on sale. Unblocking an available slot is a no-op."""
    slot = await _get_owned_slot(db, owner_id, slot_id)
    changed = await _transition(db, [slot_id], SlotStatus.BLOCKED, SlotStatus.AVAILABLE)
    await db.refresh(slot)
    if not changed and slot.status == SlotStatus.BOOKED:
        raise InvalidRequest("Cannot unblock a booked slot", rule="slot_booked")
    return slot


async def generate_day_slots(
    db: AsyncSession,
    owner_id: int,
    court_id: int,
    slot_date: date,
    price_paise: int | None = None,
) -> list[Slot]:
    """Create the hourly slots of one court for one day (owner action)."""
    result = await db.execute(
        select(Court)
        .join(Venue, Venue.id == Court.venue_id)
        .where(Court.id == court_id, Venue.owner_id == owner_id)
    )
    court = result.scalar_one_or_none()
    if court is None:
        raise NotFound("Court not found")

    existing = await db.execute(
        select(func.count(Slot.id)).where(Slot.court_id == court_id, Slot.slot_date == slot_date)
    )
    if existing.scalar_one() > 0:
        raise InvalidRequest("Slots already exist for this date and court", rule="slots_exist")

    # A court price of 0 is a free court, not a missing price
    price = price_paise
    if price is None:
        price = court.price_paise if court.price_paise is not None else settings.default_slot_price_paise
    slots = [
        Slot(
            court_id=court.id,
            venue_id=court.venue_id,
            sport_id=court.sport_id,
            slot_date=slot_date,
            start_time=f"{hour:02d}:00",
            end_time=f"{hour + 1:02d}:00",
            price_paise=price,
            status=SlotStatus.AVAILABLE,
        )
        for hour in range(settings.slot_day_start_hour, settings.slot_day_end_hour)
    ]
    db.add_all(slots)
    try:
        await db.flush()
    except IntegrityError as exc:
        raise InvalidRequest("Slots already exist for this date and court", rule="slots_exist") from exc

    logger.info("Generated %d slots for court %d on %s", len(slots), court_id, slot_date)
    return slots
