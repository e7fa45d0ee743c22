"""Maintenance jobs run by Celery beat."""

from sqlalchemy import select

from courtslot import worker
from courtslot.models import Booking, BookingStatus
from courtslot.schemas import BookingCreate
from courtslot.services import booking_service


def test_beat_schedule_points_at_registered_tasks():
    scheduled = {entry["task"] for entry in worker.celery_app.conf.beat_schedule.values()}
    assert scheduled == {
        "courtslot.worker.expire_stale_pending_bookings",
        "courtslot.worker.complete_past_bookings",
    }
    assert scheduled <= set(worker.celery_app.tasks)


async def test_complete_past_job_marks_played_bookings(db, venue_setup):
    request = BookingCreate(
        venue_id=venue_setup.venue.id,
        court_id=venue_setup.court.id,
        sport_id=venue_setup.sport.id,
        slot_ids=[venue_setup.slots["18:00"].id],
        amount_paise=50_000,
    )
    created = await booking_service.create_booking(db, venue_setup.customer, request)
    await booking_service.approve_booking(db, venue_setup.owner, created.booking.id)
    booking_id = created.booking.id
    await db.commit()

    # The slot day lies in the past, so the booking has been played
    assert await worker._complete_past() == 1

    result = await db.execute(select(Booking.status).where(Booking.id == booking_id))
    assert result.scalar_one() == BookingStatus.COMPLETED


async def test_expire_job_leaves_fresh_pending_bookings(db, venue_setup, mock_email):
    request = BookingCreate(
        venue_id=venue_setup.venue.id,
        court_id=venue_setup.court.id,
        sport_id=venue_setup.sport.id,
        slot_ids=[venue_setup.slots["18:00"].id],
        amount_paise=50_000,
    )
    await booking_service.create_booking(db, venue_setup.customer, request)
    await db.commit()

    assert await worker._expire_stale_pending() == 0
    mock_email.assert_not_awaited()
