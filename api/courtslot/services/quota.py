"""Quota gate: subscription limits and plan capabilities.

Admission checks (can_*) are read-only and answer with a QuotaDecision.
Counter increments are separate and happen only after the counted action has
succeeded. They are single UPDATE statements, and the booking counter re-checks
the limit in the same statement so two concurrent bookings cannot both slip in
under the last unit of quota.
"""

import enum
import logging
from datetime import date

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from courtslot.core.clock import local_today
from courtslot.core.config import settings
from courtslot.models.subscription import Plan, Subscription, SubscriptionStatus
from courtslot.schemas import QuotaDecision, QuotaUsageOut
from courtslot.services.errors import QuotaExceeded

logger = logging.getLogger(__name__)

BOOKING_LIMIT_MESSAGE = "Booking limit reached for this venue. Please contact owner to upgrade plan."
MESSAGE_LIMIT_MESSAGE = "Message limit reached for this venue."


class Capability(enum.StrEnum):
    """Plan features that gate parts of the pipeline."""

    AUTO_CONFIRMATION = "autoConfirmation"
    AI_INSIGHTS = "aiInsights"


_KNOWN_CAPABILITIES = {c.value: c for c in Capability}


def plan_capabilities(plan: Plan | None) -> frozenset[Capability]:
    """Resolve a plan's feature keys into a typed capability set. Unknown keys are ignored."""
    if plan is None:
        return frozenset()
    return frozenset(_KNOWN_CAPABILITIES[key] for key in (plan.features or []) if key in _KNOWN_CAPABILITIES)


async def get_current_subscription(
    db: AsyncSession,
    owner_id: int,
    today: date | None = None,
    active_only: bool = False,
) -> Subscription | None:
    """The owner's current subscription: active (or pending) and not past its end date."""
    today = today or local_today()
    statuses = [SubscriptionStatus.ACTIVE]
    if not active_only:
        statuses.append(SubscriptionStatus.PENDING)

    result = await db.execute(
        select(Subscription).where(
            Subscription.owner_id == owner_id,
            Subscription.status.in_(statuses),
            Subscription.end_date >= today,
        )
    )
    return result.scalar_one_or_none()


async def owner_capabilities(db: AsyncSession, owner_id: int) -> frozenset[Capability]:
    """Capabilities granted by the owner's active subscription (pending plans grant none)."""
    subscription = await get_current_subscription(db, owner_id, active_only=True)
    return plan_capabilities(subscription.plan if subscription else None)


def _without_subscription() -> QuotaDecision:
    # Owners created before subscriptions existed have no row at all.
    if settings.quota_allow_without_subscription:
        return QuotaDecision(allowed=True)
    return QuotaDecision(allowed=False, reason="No active subscription. Please subscribe to a plan.")


async def can_create_booking(db: AsyncSession, owner_id: int) -> QuotaDecision:
    subscription = await get_current_subscription(db, owner_id)
    if subscription is None:
        return _without_subscription()

    plan = subscription.plan
    if plan.is_unlimited_bookings:
        return QuotaDecision(allowed=True)
    if subscription.bookings_count >= plan.max_bookings:
        logger.warning("Owner %d at booking limit (%d/%d)", owner_id, subscription.bookings_count, plan.max_bookings)
        return QuotaDecision(allowed=False, reason=BOOKING_LIMIT_MESSAGE)
    return QuotaDecision(allowed=True)


async def can_send_message(db: AsyncSession, owner_id: int) -> QuotaDecision:
    subscription = await get_current_subscription(db, owner_id)
    if subscription is None:
        return _without_subscription()

    plan = subscription.plan
    if plan.is_unlimited_messages:
        return QuotaDecision(allowed=True)
    if subscription.messages_count >= plan.max_messages:
        return QuotaDecision(allowed=False, reason=MESSAGE_LIMIT_MESSAGE)
    return QuotaDecision(allowed=True)


async def can_add_venue(db: AsyncSession, owner_id: int, current_count: int) -> QuotaDecision:
    subscription = await get_current_subscription(db, owner_id)
    if subscription is None:
        return _without_subscription()

    plan = subscription.plan
    if current_count >= plan.max_venues:
        return QuotaDecision(
            allowed=False,
            reason=f"Venue limit reached. Your {plan.name} plan allows only {plan.max_venues} venue(s).",
        )
    return QuotaDecision(allowed=True)


async def can_add_court(db: AsyncSession, owner_id: int, current_count: int) -> QuotaDecision:
    subscription = await get_current_subscription(db, owner_id)
    if subscription is None:
        return _without_subscription()

    plan = subscription.plan
    if current_count >= plan.max_courts:
        return QuotaDecision(
            allowed=False,
            reason=f"Court limit reached. Your {plan.name} plan allows only {plan.max_courts} court(s) per venue.",
        )
    return QuotaDecision(allowed=True)


async def _increment(
    db: AsyncSession,
    subscription: Subscription,
    counter: str,
    limit: int | None,
    message: str,
) -> int:
    """Add one to a usage counter in a single statement, optionally bounded by limit."""
    column = getattr(Subscription, counter)
    stmt = (
        update(Subscription)
        .where(Subscription.id == subscription.id)
        .values({counter: column + 1})
        .returning(column)
        .execution_options(synchronize_session=False)
    )
    if limit is not None:
        stmt = stmt.where(column < limit)

    result = await db.execute(stmt)
    new_value = result.scalar_one_or_none()
    if new_value is None:
        raise QuotaExceeded(message)
    set_committed_value(subscription, counter, new_value)
    return new_value


async def increment_booking_count(db: AsyncSession, owner_id: int) -> int | None:
    """Count a persisted booking against the owner's plan.

    Raises QuotaExceeded if a concurrent booking used the last unit first; the
    caller's transaction must then be rolled back. Returns the new count, or
    None when the owner has no subscription.
    """
    subscription = await get_current_subscription(db, owner_id)
    if subscription is None:
        return None
    plan = subscription.plan
    limit = None if plan.is_unlimited_bookings else plan.max_bookings
    return await _increment(db, subscription, "bookings_count", limit, BOOKING_LIMIT_MESSAGE)


async def increment_message_count(db: AsyncSession, owner_id: int) -> int | None:
    """Count a message that has already been delivered. Never refuses: the message is out."""
    subscription = await get_current_subscription(db, owner_id)
    if subscription is None:
        return None
    return await _increment(db, subscription, "messages_count", None, MESSAGE_LIMIT_MESSAGE)


async def get_usage(db: AsyncSession, owner_id: int) -> QuotaUsageOut:
    """Current plan usage for the owner dashboard."""
    subscription = await get_current_subscription(db, owner_id)
    if subscription is None:
        return QuotaUsageOut(has_subscription=False)

    plan = subscription.plan
    capabilities = plan_capabilities(plan) if subscription.status == SubscriptionStatus.ACTIVE else frozenset()
    return QuotaUsageOut(
        has_subscription=True,
        plan_name=plan.name,
        subscription_status=subscription.status.value,
        end_date=subscription.end_date,
        bookings_count=subscription.bookings_count,
        max_bookings=None if plan.is_unlimited_bookings else plan.max_bookings,
        is_unlimited_bookings=plan.is_unlimited_bookings,
        messages_count=subscription.messages_count,
        max_messages=None if plan.is_unlimited_messages else plan.max_messages,
        is_unlimited_messages=plan.is_unlimited_messages,
        capabilities=sorted(c.value for c in capabilities),
    )
