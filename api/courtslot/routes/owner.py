"""Owner routes: booking review, walk-in bookings, slot administration, plan usage."""

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from courtslot.core.database import get_db
from courtslot.core.dependencies import require_owner
from courtslot.models.booking import BookingStatus
from courtslot.models.member import User
from courtslot.schemas import (
    BookingCreatedOut,
    BookingOut,
    CancelRequest,
    GenerateSlotsRequest,
    OfflineBookingCreate,
    QuotaUsageOut,
    RejectRequest,
    SlotOut,
)
from courtslot.services import booking_service, quota, slot_ledger
from courtslot.services.notifications import dispatch_notifications

router = APIRouter(prefix="/owner", tags=["owner"])


# ---------------------------------------------------------------------------
# Bookings
# ---------------------------------------------------------------------------


@router.get("/bookings", response_model=list[BookingOut])
async def list_bookings(
    status_filter: BookingStatus | None = Query(None, alias="status"),
    owner: User = Depends(require_owner),
    db: AsyncSession = Depends(get_db),
):
    return await booking_service.list_owner_bookings(db, owner.id, status=status_filter)


@router.post("/bookings/offline", response_model=BookingCreatedOut, status_code=status.HTTP_201_CREATED)
async def create_offline_booking(
    body: OfflineBookingCreate,
    background_tasks: BackgroundTasks,
    owner: User = Depends(require_owner),
    db: AsyncSession = Depends(get_db),
):
    outcome = await booking_service.create_offline_booking(db, owner, body)
    await db.commit()
    background_tasks.add_task(dispatch_notifications, outcome.notifications)
    return BookingCreatedOut(
        booking=BookingOut.model_validate(outcome.booking),
        auto_approved=False,
        message=outcome.message,
    )


@router.post("/bookings/{booking_id}/approve", response_model=BookingOut)
async def approve_booking(
    booking_id: int,
    background_tasks: BackgroundTasks,
    owner: User = Depends(require_owner),
    db: AsyncSession = Depends(get_db),
):
    outcome = await booking_service.approve_booking(db, owner, booking_id)
    await db.commit()
    background_tasks.add_task(dispatch_notifications, outcome.notifications)
    return outcome.booking


@router.post("/bookings/{booking_id}/reject", response_model=BookingOut)
async def reject_booking(
    booking_id: int,
    background_tasks: BackgroundTasks,
    body: RejectRequest | None = None,
    owner: User = Depends(require_owner),
    db: AsyncSession = Depends(get_db),
):
    outcome = await booking_service.reject_booking(db, owner, booking_id, body.reason if body else None)
    await db.commit()
    background_tasks.add_task(dispatch_notifications, outcome.notifications)
    return outcome.booking


@router.post("/bookings/{booking_id}/cancel", response_model=BookingOut)
async def cancel_booking(
    booking_id: int,
    background_tasks: BackgroundTasks,
    body: CancelRequest | None = None,
    owner: User = Depends(require_owner),
    db: AsyncSession = Depends(get_db),
):
    outcome = await booking_service.cancel_booking(db, owner, booking_id, body.reason if body else None)
    await db.commit()
    background_tasks.add_task(dispatch_notifications, outcome.notifications)
    return outcome.booking


# ---------------------------------------------------------------------------
# Slots
# ---------------------------------------------------------------------------


@router.post("/slots/generate", response_model=list[SlotOut], status_code=status.HTTP_201_CREATED)
async def generate_slots(
    body: GenerateSlotsRequest,
    owner: User = Depends(require_owner),
    db: AsyncSession = Depends(get_db),
):
    return await slot_ledger.generate_day_slots(db, owner.id, body.court_id, body.slot_date, body.price_paise)


@router.post("/slots/{slot_id}/block", response_model=SlotOut)
async def block_slot(slot_id: int, owner: User = Depends(require_owner), db: AsyncSession = Depends(get_db)):
    return await slot_ledger.block(db, owner.id, slot_id)


@router.post("/slots/{slot_id}/unblock", response_model=SlotOut)
async def unblock_slot(slot_id: int, owner: User = Depends(require_owner), db: AsyncSession = Depends(get_db)):
    return await slot_ledger.unblock(db, owner.id, slot_id)


# ---------------------------------------------------------------------------
# Plan usage
# ---------------------------------------------------------------------------


@router.get("/quota", response_model=QuotaUsageOut)
async def get_quota(owner: User = Depends(require_owner), db: AsyncSession = Depends(get_db)):
    return await quota.get_usage(db, owner.id)
