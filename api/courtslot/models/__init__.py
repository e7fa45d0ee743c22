"""All models imported here so metadata.create_all sees every table."""

from courtslot.models.auto_approval import AutoApprovalSettings
from courtslot.models.base import Base
from courtslot.models.booking import ApprovalMethod, Booking, BookingSlot, BookingSource, BookingStatus, CancelledBy
from courtslot.models.member import User, UserRole
from courtslot.models.slot import Slot, SlotStatus
from courtslot.models.subscription import Plan, Subscription, SubscriptionStatus
from courtslot.models.venue import Court, Sport, Venue

__all__ = [
    "Base",
    "User",
    "UserRole",
    "Sport",
    "Venue",
    "Court",
    "Slot",
    "SlotStatus",
    "Booking",
    "BookingSlot",
    "BookingStatus",
    "BookingSource",
    "ApprovalMethod",
    "CancelledBy",
    "Plan",
    "Subscription",
    "SubscriptionStatus",
    "AutoApprovalSettings",
]
