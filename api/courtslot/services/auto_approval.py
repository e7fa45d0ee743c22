"""Auto-approval engine.

Decides whether a freshly created pending booking can be confirmed without the
owner looking at it. The owner's policy switches rules on and off; each rule
that is switched on contributes exactly one CheckResult to the audit trail, and
the booking is approved only if every one of them passed.

Rules are small objects with a name and an evaluate(context) method, built per
booking by build_rules(). Data a rule needs from the database (customer flags,
booking history, trust score) is loaded once, and only if some registered rule
asks for it.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from courtslot.core.clock import utcnow
from courtslot.core.money import format_rupees
from courtslot.models.auto_approval import AutoApprovalSettings
from courtslot.models.booking import ApprovalMethod, Booking, BookingStatus
from courtslot.models.member import User
from courtslot.models.slot import Slot
from courtslot.models.venue import Venue
from courtslot.schemas import ApprovalResult, AutoApprovalPolicy, AutoApprovalStatsOut, CheckResult
from courtslot.services import lifecycle, slot_ledger
from courtslot.services.quota import Capability, owner_capabilities
from courtslot.services.trust_score import CONFIRMED_HISTORY_STATUSES, score_customer

logger = logging.getLogger(__name__)

NOT_IN_PLAN_REASON = "Auto-approval not available in current plan"
DISABLED_REASON = "Auto-approval disabled by owner"
APPROVED_REASON = "All auto-approval checks passed"
DEFERRED_REASON = "Some approval conditions not met"

# What a rule may ask the engine to load before evaluation
NEEDS_CUSTOMER = "customer"
NEEDS_HISTORY = "history"
NEEDS_TRUST_SCORE = "trust_score"


def _hour(hhmm: str) -> int:
    return int(hhmm.split(":", 1)[0])


@dataclass
class ApprovalContext:
    """Everything the rules look at for one booking."""

    booking: Booking
    slots: list[Slot]
    customer: User | None = None
    prior_confirmed: int = 0
    trust_score: int | None = None

    @property
    def first_slot(self) -> Slot | None:
        return self.slots[0] if self.slots else None


# --- Rules ---


class ApprovalRule:
    name: str = ""
    needs: frozenset[str] = frozenset()

    def evaluate(self, ctx: ApprovalContext) -> CheckResult:
        raise NotImplementedError

    def _result(self, passed: bool, reason: str) -> CheckResult:
        return CheckResult(name=self.name, passed=passed, reason=reason)


class PaymentProofRule(ApprovalRule):
    name = "Payment Proof"

    def evaluate(self, ctx: ApprovalContext) -> CheckResult:
        if ctx.booking.payment_proof_ref:
            return self._result(True, "Payment proof uploaded")
        return self._result(False, "Payment proof missing")


class AmountLimitRule(ApprovalRule):
    name = "Amount Limit"

    def __init__(self, max_amount_paise: int | None):
        self.max_amount_paise = max_amount_paise

    def evaluate(self, ctx: ApprovalContext) -> CheckResult:
        amount = ctx.booking.amount_paise
        if self.max_amount_paise is None or amount <= self.max_amount_paise:
            return self._result(True, f"Amount {format_rupees(amount)} within limit")
        return self._result(
            False, f"Amount {format_rupees(amount)} exceeds limit of {format_rupees(self.max_amount_paise)}"
        )


class RepeatCustomerRule(ApprovalRule):
    name = "Repeat Customer"
    needs = frozenset({NEEDS_HISTORY})

    def __init__(self, minimum_previous_bookings: int):
        self.minimum = minimum_previous_bookings

    def evaluate(self, ctx: ApprovalContext) -> CheckResult:
        count = ctx.prior_confirmed
        if count >= self.minimum:
            return self._result(True, f"Customer has {count} previous bookings")
        return self._result(False, f"Customer needs {self.minimum} previous bookings, has {count}")


class PhoneVerifiedRule(ApprovalRule):
    name = "Phone Verified"
    needs = frozenset({NEEDS_CUSTOMER})

    def evaluate(self, ctx: ApprovalContext) -> CheckResult:
        if ctx.customer is not None and ctx.customer.is_phone_verified:
            return self._result(True, "Phone verified")
        return self._result(False, "Phone not verified")


class EmailVerifiedRule(ApprovalRule):
    name = "Email Verified"
    needs = frozenset({NEEDS_CUSTOMER})

    def evaluate(self, ctx: ApprovalContext) -> CheckResult:
        if ctx.customer is not None and ctx.customer.is_email_verified:
            return self._result(True, "Email verified")
        return self._result(False, "Email not verified")


class AllowedDayRule(ApprovalRule):
    name = "Allowed Day"

    def __init__(self, allowed_days: list[int]):
        self.allowed_days = frozenset(allowed_days)

    def evaluate(self, ctx: ApprovalContext) -> CheckResult:
        slot = ctx.first_slot
        # isoweekday: Monday=1 .. Sunday=7
        if slot is not None and slot.slot_date.isoweekday() in self.allowed_days:
            return self._result(True, "Booking day allowed")
        return self._result(False, "Booking day not allowed")


class BusinessHoursRule(ApprovalRule):
    name = "Business Hours"

    def __init__(self, start: str, end: str):
        self.start = start
        self.end = end

    def evaluate(self, ctx: ApprovalContext) -> CheckResult:
        hour = _hour(ctx.first_slot.start_time)
        if _hour(self.start) <= hour < _hour(self.end):
            return self._result(True, "Within business hours")
        return self._result(False, f"Outside business hours ({self.start}-{self.end})")


class PeakHoursRule(ApprovalRule):
    name = "Peak Hours"

    def __init__(self, peak_hours: list[str]):
        self.peak_hours = frozenset(_hour(h) for h in peak_hours)

    def evaluate(self, ctx: ApprovalContext) -> CheckResult:
        clashes = sorted({s.start_time for s in ctx.slots if _hour(s.start_time) in self.peak_hours})
        if clashes:
            return self._result(False, f"Peak hour slots need owner review ({', '.join(clashes)})")
        return self._result(True, "No peak hour slots")


class CourtRule(ApprovalRule):
    name = "Court Rules"

    def __init__(self, specific_courts: list[int], exclude_courts: list[int]):
        self.specific_courts = frozenset(specific_courts)
        self.exclude_courts = frozenset(exclude_courts)

    def evaluate(self, ctx: ApprovalContext) -> CheckResult:
        court_id = ctx.booking.court_id
        if court_id in self.exclude_courts:
            return self._result(False, "Court excluded from auto-approval")
        if self.specific_courts and court_id not in self.specific_courts:
            return self._result(False, "Court not enabled for auto-approval")
        return self._result(True, "Court eligible for auto-approval")


class TrustScoreRule(ApprovalRule):
    name = "AI Trust Score"
    needs = frozenset({NEEDS_TRUST_SCORE})

    def __init__(self, threshold: int):
        self.threshold = threshold

    def evaluate(self, ctx: ApprovalContext) -> CheckResult:
        score = ctx.trust_score if ctx.trust_score is not None else 0
        return self._result(score >= self.threshold, f"Trust score: {score}/100 (minimum: {self.threshold})")


def build_rules(
    policy: AutoApprovalPolicy,
    capabilities: frozenset[Capability],
    ctx: ApprovalContext,
) -> list[ApprovalRule]:
    """The ordered checklist for one booking under one policy."""
    rules: list[ApprovalRule] = []

    if policy.require_payment_proof:
        rules.append(PaymentProofRule())

    if policy.amount_rules.enabled:
        rules.append(AmountLimitRule(policy.amount_rules.max_auto_approve_amount_paise))

    customer_rules = policy.customer_rules
    if customer_rules.enabled:
        rules.append(RepeatCustomerRule(customer_rules.minimum_previous_bookings))
        if customer_rules.require_verified_phone:
            rules.append(PhoneVerifiedRule())
        if customer_rules.require_verified_email:
            rules.append(EmailVerifiedRule())

    time_rules = policy.time_rules
    if time_rules.enabled:
        rules.append(AllowedDayRule(time_rules.allowed_days))
        first = ctx.first_slot
        if time_rules.business_hours is not None and first is not None and first.start_time:
            rules.append(BusinessHoursRule(time_rules.business_hours.start, time_rules.business_hours.end))
        if time_rules.block_peak_hours and time_rules.peak_hours:
            rules.append(PeakHoursRule(time_rules.peak_hours))

    if policy.slot_rules.enabled:
        rules.append(CourtRule(policy.slot_rules.specific_courts, policy.slot_rules.exclude_courts))

    if policy.ai_settings.enabled and Capability.AI_INSIGHTS in capabilities:
        rules.append(TrustScoreRule(policy.ai_settings.trust_score_threshold))

    return rules


async def _load_requirements(db: AsyncSession, ctx: ApprovalContext, rules: list[ApprovalRule]) -> None:
    needs = frozenset().union(*(rule.needs for rule in rules))
    customer_id = ctx.booking.customer_id

    if NEEDS_CUSTOMER in needs:
        result = await db.execute(select(User).where(User.id == customer_id))
        ctx.customer = result.scalar_one_or_none()

    if NEEDS_HISTORY in needs:
        result = await db.execute(
            select(func.count(Booking.id)).where(
                Booking.customer_id == customer_id,
                Booking.status.in_(CONFIRMED_HISTORY_STATUSES),
                Booking.id != ctx.booking.id,
            )
        )
        ctx.prior_confirmed = result.scalar_one()

    if NEEDS_TRUST_SCORE in needs:
        ctx.trust_score = await score_customer(db, customer_id)


def _manual(reason: str, checks: list[CheckResult] | None = None) -> ApprovalResult:
    return ApprovalResult(approved=False, method=ApprovalMethod.MANUAL.value, reason=reason, checks=checks or [])


async def evaluate_booking(db: AsyncSession, booking: Booking, owner_id: int) -> ApprovalResult:
    """Run the owner's policy against a pending booking and confirm it if every check passes.

    Rule failures are reported in the returned audit trail, never raised.
    """
    capabilities = await owner_capabilities(db, owner_id)
    if Capability.AUTO_CONFIRMATION not in capabilities:
        return _manual(NOT_IN_PLAN_REASON)

    settings_row = await get_or_create_settings(db, owner_id)
    policy = AutoApprovalPolicy.model_validate(settings_row.policy)
    if not policy.enabled:
        return _manual(DISABLED_REASON)

    ctx = ApprovalContext(booking=booking, slots=await slot_ledger.load_slots(db, booking.slot_ids))
    rules = build_rules(policy, capabilities, ctx)
    await _load_requirements(db, ctx, rules)
    checks = [rule.evaluate(ctx) for rule in rules]

    if all(check.passed for check in checks):
        await lifecycle.confirm(db, booking, ApprovalMethod.AUTOMATIC)
        await _bump_counter(db, owner_id, "total_auto_approved")
        logger.info("Booking %s auto-approved (%d checks passed)", booking.code, len(checks))
        return ApprovalResult(
            approved=True, method=ApprovalMethod.AUTOMATIC.value, reason=APPROVED_REASON, checks=checks
        )

    await _bump_counter(db, owner_id, "total_manual_reviews")
    failed = [check.name for check in checks if not check.passed]
    logger.info("Booking %s left for manual review: failed %s", booking.code, ", ".join(failed))
    return _manual(DEFERRED_REASON, checks)


async def _bump_counter(db: AsyncSession, owner_id: int, counter: str) -> None:
    column = getattr(AutoApprovalSettings, counter)
    await db.execute(
        update(AutoApprovalSettings)
        .where(AutoApprovalSettings.owner_id == owner_id)
        .values({counter: column + 1})
        .execution_options(synchronize_session=False)
    )


# --- Settings ---


def default_policy() -> dict:
    return AutoApprovalPolicy().model_dump(mode="json")


async def _select_settings(db: AsyncSession, owner_id: int) -> AutoApprovalSettings | None:
    result = await db.execute(
        select(AutoApprovalSettings)
        .where(AutoApprovalSettings.owner_id == owner_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_or_create_settings(db: AsyncSession, owner_id: int) -> AutoApprovalSettings:
    """The owner's settings row, inserted with the default policy on first use.

    Two requests racing to create the row both end up reading the same one.
    """
    row = await _select_settings(db, owner_id)
    if row is not None:
        return row

    dialect = db.get_bind().dialect.name
    values = {"owner_id": owner_id, "policy": default_policy()}
    if dialect == "postgresql":
        stmt = pg_insert(AutoApprovalSettings).values(**values).on_conflict_do_nothing(index_elements=["owner_id"])
    elif dialect == "sqlite":
        stmt = sqlite_insert(AutoApprovalSettings).values(**values).on_conflict_do_nothing(
            index_elements=["owner_id"]
        )
    else:
        db.add(AutoApprovalSettings(**values))
        await db.flush()
        return await _select_settings(db, owner_id)

    await db.execute(stmt)
    logger.info("Created default auto-approval settings for owner %d", owner_id)
    return await _select_settings(db, owner_id)


async def update_policy(db: AsyncSession, owner_id: int, policy: AutoApprovalPolicy) -> AutoApprovalSettings:
    """Replace the owner's whole policy document."""
    row = await get_or_create_settings(db, owner_id)
    row.policy = policy.model_dump(mode="json")
    await db.flush()
    logger.info("Owner %d updated auto-approval policy (enabled=%s)", owner_id, policy.enabled)
    return row


async def get_auto_approval_stats(
    db: AsyncSession,
    owner_id: int,
    days: int = 30,
    now: datetime | None = None,
) -> AutoApprovalStatsOut:
    """Booking outcomes at the owner's venues over the last `days` days."""
    since = (now or utcnow()) - timedelta(days=days)
    result = await db.execute(
        select(Booking.status, Booking.approval_method, func.count(Booking.id))
        .join(Venue, Venue.id == Booking.venue_id)
        .where(Venue.owner_id == owner_id, Booking.created_at >= since)
        .group_by(Booking.status, Booking.approval_method)
    )

    total = auto = manual = pending = rejected = 0
    for status, method, count in result.all():
        total += count
        # Approvals that were later cancelled do not count as approved
        if status in CONFIRMED_HISTORY_STATUSES:
            if method == ApprovalMethod.AUTOMATIC:
                auto += count
            elif method == ApprovalMethod.MANUAL:
                manual += count
        elif status == BookingStatus.PENDING:
            pending += count
        elif status == BookingStatus.REJECTED:
            rejected += count

    rate = round(auto / total * 100, 1) if total else 0.0
    return AutoApprovalStatsOut(
        period=f"Last {days} days",
        total_bookings=total,
        auto_approved=auto,
        manual_approved=manual,
        pending=pending,
        rejected=rejected,
        auto_approval_rate=rate,
    )
