"""Celery worker and beat schedule for booking maintenance.

Tasks are synchronous Celery functions that drive the async services with
asyncio.run on a session of their own, committing before any notification
goes out.
"""

import asyncio
import logging

from celery import Celery
from celery.schedules import crontab

from courtslot.core.config import settings
from courtslot.core.database import async_session_factory, engine
from courtslot.services import booking_service
from courtslot.services.notifications import NotificationDispatcher

logger = logging.getLogger(__name__)

celery_app = Celery(
    "courtslot",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone=settings.timezone,
    enable_utc=True,
    beat_schedule={
        "expire-stale-pending-bookings": {
            "task": "courtslot.worker.expire_stale_pending_bookings",
            "schedule": crontab(minute=5),
        },
        "complete-past-bookings": {
            "task": "courtslot.worker.complete_past_bookings",
            "schedule": crontab(hour=0, minute=15),
        },
    },
)


async def _expire_stale_pending() -> int:
    try:
        async with async_session_factory() as db:
            outcomes = await booking_service.expire_stale_pending(db)
            await db.commit()

        notifications = [n for outcome in outcomes for n in outcome.notifications]
        await NotificationDispatcher().dispatch_all(notifications)
        return len(outcomes)
    finally:
        # Pooled connections belong to this event loop, which asyncio.run closes
        await engine.dispose()


async def _complete_past() -> int:
    try:
        async with async_session_factory() as db:
            completed = await booking_service.complete_past_bookings(db)
            await db.commit()
        return completed
    finally:
        await engine.dispose()


@celery_app.task(name="courtslot.worker.expire_stale_pending_bookings")
def expire_stale_pending_bookings() -> int:
    expired = asyncio.run(_expire_stale_pending())
    logger.info("expire_stale_pending_bookings: %d booking(s) expired", expired)
    return expired


@celery_app.task(name="courtslot.worker.complete_past_bookings")
def complete_past_bookings() -> int:
    completed = asyncio.run(_complete_past())
    logger.info("complete_past_bookings: %d booking(s) completed", completed)
    return completed
