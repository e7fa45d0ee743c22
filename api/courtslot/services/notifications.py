"""Notification dispatcher.

Booking transitions queue PendingNotifications on their outcome; the caller
dispatches them after its transaction has committed. Delivery is best effort:
a failed send is logged and dropped, it never touches the booking.

Every message counts against the venue owner's message quota, which is checked
before sending and incremented only once the message is out.
"""

import enum
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from courtslot.core.config import settings
from courtslot.core.database import async_session_factory
from courtslot.core.money import format_rupees
from courtslot.models.member import User
from courtslot.schemas import BookingOut
from courtslot.services import quota
from courtslot.services.email import send_email

logger = logging.getLogger(__name__)


class NotificationEvent(enum.StrEnum):
    BOOKING_CREATED = "booking_created"          # Customer: request received, awaiting review
    BOOKING_CONFIRMED = "booking_confirmed"      # Customer: confirmed (auto or by owner)
    BOOKING_REJECTED = "booking_rejected"        # Customer: owner said no
    BOOKING_CANCELLED = "booking_cancelled"      # Customer or owner, whoever did not cancel
    NEW_BOOKING_REQUEST = "new_booking_request"  # Owner: a booking came in


@dataclass(frozen=True)
class Recipient:
    user_id: int
    name: str
    email: str | None

    @classmethod
    def from_user(cls, user: User) -> "Recipient":
        return cls(user_id=user.id, name=user.name, email=user.email)


@dataclass(frozen=True)
class PendingNotification:
    event: NotificationEvent
    recipient: Recipient
    booking: BookingOut
    owner_id: int      # Whose message quota pays for it
    venue_name: str
    schedule: str      # e.g. "01 Jun 2024, 18:00-20:00"
    reason: str | None = None


def render(notification: PendingNotification) -> tuple[str, str]:
    """Subject and plain-text body for a notification."""
    b = notification.booking
    details = (
        f"Venue: {notification.venue_name}\n"
        f"When: {notification.schedule}\n"
        f"Amount: {format_rupees(b.amount_paise)}\n"
        f"Code: {b.code}\n"
    )
    greeting = f"Hi {notification.recipient.name},\n\n"
    sign_off = f"\n- {settings.app_name}"

    match notification.event:
        case NotificationEvent.BOOKING_CREATED:
            subject = f"Booking request received ({b.code})"
            body = (
                f"{greeting}Your booking request has been received and is under review.\n\n"
                f"{details}\nYou'll receive confirmation within "
                f"{settings.pending_booking_ttl_hours} hours.\n"
            )
        case NotificationEvent.BOOKING_CONFIRMED:
            subject = f"Booking confirmed ({b.code})"
            body = f"{greeting}Your booking is confirmed.\n\n{details}\nShow this code at the venue.\n"
        case NotificationEvent.BOOKING_REJECTED:
            subject = f"Booking not approved ({b.code})"
            reason = f"Reason: {notification.reason}\n" if notification.reason else ""
            body = f"{greeting}Sorry, the venue could not accept your booking.\n\n{details}{reason}"
        case NotificationEvent.BOOKING_CANCELLED:
            subject = f"Booking cancelled ({b.code})"
            reason = f"Reason: {notification.reason}\n" if notification.reason else ""
            body = f"{greeting}This booking has been cancelled.\n\n{details}{reason}"
        case NotificationEvent.NEW_BOOKING_REQUEST:
            state = "confirmed automatically" if b.status == "confirmed" else "waiting for your approval"
            subject = f"New booking {b.code} ({state})"
            body = f"{greeting}A new booking has come in and is {state}.\n\n{details}"
        case _:
            raise ValueError(f"Unknown notification event: {notification.event}")

    return subject, body + sign_off


Sender = Callable[[str, str, str], Awaitable[None]]


class NotificationDispatcher:
    """Sends queued notifications on a session of its own."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = async_session_factory,
        sender: Sender | None = None,
    ):
        self.session_factory = session_factory
        self.sender = sender

    async def dispatch(self, notification: PendingNotification) -> bool:
        """Deliver one notification. Returns True if it was sent; never raises."""
        recipient = notification.recipient
        if not recipient.email:
            logger.warning(
                "Skipping %s for booking %s: user %d has no email address",
                notification.event.value, notification.booking.code, recipient.user_id,
            )
            return False

        try:
            async with self.session_factory() as db:
                decision = await quota.can_send_message(db, notification.owner_id)
                if not decision.allowed:
                    logger.warning(
                        "Skipping %s for booking %s: %s",
                        notification.event.value, notification.booking.code, decision.reason,
                    )
                    return False

                subject, body = render(notification)
                send = self.sender or send_email
                await send(recipient.email, subject, body)

                await quota.increment_message_count(db, notification.owner_id)
                await db.commit()
        except Exception:
            logger.exception(
                "Failed to send %s for booking %s to user %d",
                notification.event.value, notification.booking.code, recipient.user_id,
            )
            return False

        logger.info(
            "Sent %s for booking %s to user %d",
            notification.event.value, notification.booking.code, recipient.user_id,
        )
        return True

    async def dispatch_all(self, notifications: Iterable[PendingNotification]) -> int:
        """Deliver notifications in order. Returns how many were sent."""
        sent = 0
        for notification in notifications:
            if await self.dispatch(notification):
                sent += 1
        return sent


async def dispatch_notifications(notifications: list[PendingNotification]) -> None:
    """Background task entry point used by the routes."""
    await NotificationDispatcher().dispatch_all(notifications)
