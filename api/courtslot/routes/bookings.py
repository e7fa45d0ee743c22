"""Customer booking routes: request, list, view, withdraw.

Handlers commit before queueing notifications so a message never describes a
booking that was rolled back.
"""

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from courtslot.core.database import get_db
from courtslot.core.dependencies import get_current_user, require_customer
from courtslot.models.member import User
from courtslot.schemas import BookingCreate, BookingCreatedOut, BookingOut, CancelRequest
from courtslot.services import booking_service
from courtslot.services.notifications import dispatch_notifications

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post("", response_model=BookingCreatedOut, status_code=status.HTTP_201_CREATED)
async def create_booking(
    body: BookingCreate,
    background_tasks: BackgroundTasks,
    include_checks: bool = Query(False, description="Include the auto-approval audit trail"),
    user: User = Depends(require_customer),
    db: AsyncSession = Depends(get_db),
):
    outcome = await booking_service.create_booking(db, user, body)
    await db.commit()
    background_tasks.add_task(dispatch_notifications, outcome.notifications)

    return BookingCreatedOut(
        booking=BookingOut.model_validate(outcome.booking),
        auto_approved=outcome.approval.approved,
        message=outcome.message,
        checks=outcome.approval.checks if include_checks else None,
    )


@router.get("", response_model=list[BookingOut])
async def list_my_bookings(
    user: User = Depends(require_customer),
    db: AsyncSession = Depends(get_db),
):
    return await booking_service.list_customer_bookings(db, user.id)


@router.get("/{booking_id}", response_model=BookingOut)
async def get_booking(
    booking_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await booking_service.get_booking(db, user, booking_id)


@router.post("/{booking_id}/cancel", response_model=BookingOut)
async def cancel_booking(
    booking_id: int,
    background_tasks: BackgroundTasks,
    body: CancelRequest | None = None,
    user: User = Depends(require_customer),
    db: AsyncSession = Depends(get_db),
):
    outcome = await booking_service.cancel_booking(db, user, booking_id, body.reason if body else None)
    await db.commit()
    background_tasks.add_task(dispatch_notifications, outcome.notifications)
    return outcome.booking
