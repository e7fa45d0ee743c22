"""Auto-approval engine: preconditions, each rule, audit trail, settings and stats."""

from datetime import date

from sqlalchemy import select

from courtslot.models import ApprovalMethod, AutoApprovalSettings, Booking, BookingSlot, BookingStatus, Slot
from courtslot.schemas import AutoApprovalPolicy
from courtslot.services import auto_approval
from courtslot.services.auto_approval import (
    DISABLED_REASON,
    NOT_IN_PLAN_REASON,
    ApprovalContext,
    build_rules,
)
from courtslot.services.quota import Capability

AUTO = ["autoConfirmation"]
AUTO_AND_AI = ["autoConfirmation", "aiInsights"]


async def _pending_booking(db, setup, amount_paise=150_000, proof=None, times=("18:00",), code="BKTEST1"):
    booking = Booking(
        code=code,
        customer_id=setup.customer.id,
        venue_id=setup.venue.id,
        court_id=setup.court.id,
        sport_id=setup.sport.id,
        amount_paise=amount_paise,
        payment_proof_ref=proof,
        status=BookingStatus.PENDING,
        slot_links=[BookingSlot(slot_id=setup.slots[t].id, position=i) for i, t in enumerate(times)],
    )
    db.add(booking)
    await db.flush()
    return booking


async def _set_policy(db, owner_id, **changes) -> AutoApprovalPolicy:
    policy = AutoApprovalPolicy.model_validate({**AutoApprovalPolicy().model_dump(), **changes})
    await auto_approval.update_policy(db, owner_id, policy)
    return policy


def _context(court_id=1, amount_paise=100_000, proof="proof.jpg", slot_day=date(2024, 6, 1), times=("18:00",)):
    booking = Booking(code="BKCTX", court_id=court_id, amount_paise=amount_paise, payment_proof_ref=proof)
    slots = [Slot(slot_date=slot_day, start_time=t, end_time=f"{int(t[:2]) + 1:02d}:00") for t in times]
    return ApprovalContext(booking=booking, slots=slots)


# ---------------------------------------------------------------------------
# Preconditions
# ---------------------------------------------------------------------------


async def test_plan_without_auto_confirmation_defers(db, venue_setup, subscribe):
    await subscribe(venue_setup.owner, features=[])
    booking = await _pending_booking(db, venue_setup, proof="upi.png")

    result = await auto_approval.evaluate_booking(db, booking, venue_setup.owner.id)

    assert result.approved is False
    assert result.method == "manual"
    assert result.reason == NOT_IN_PLAN_REASON
    assert result.checks == []
    assert booking.status == BookingStatus.PENDING


async def test_owner_disabled_auto_approval_defers(db, venue_setup, subscribe):
    await subscribe(venue_setup.owner, features=AUTO)
    await _set_policy(db, venue_setup.owner.id, enabled=False)
    booking = await _pending_booking(db, venue_setup, proof="upi.png")

    result = await auto_approval.evaluate_booking(db, booking, venue_setup.owner.id)

    assert result.approved is False
    assert result.reason == DISABLED_REASON
    assert result.checks == []


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------


async def test_missing_payment_proof_defers_with_one_failed_check(db, venue_setup, subscribe):
    await subscribe(venue_setup.owner, features=AUTO)
    booking = await _pending_booking(db, venue_setup, proof=None)

    result = await auto_approval.evaluate_booking(db, booking, venue_setup.owner.id)

    assert result.approved is False
    assert [(c.name, c.passed) for c in result.checks] == [("Payment Proof", False)]
    assert result.checks[0].reason == "Payment proof missing"
    assert booking.status == BookingStatus.PENDING


async def test_amount_within_ceiling_is_approved(db, venue_setup, subscribe):
    await subscribe(venue_setup.owner, features=AUTO)
    await _set_policy(
        db,
        venue_setup.owner.id,
        require_payment_proof=False,
        amount_rules={"enabled": True, "max_auto_approve_amount_paise": 200_000},
    )
    booking = await _pending_booking(db, venue_setup, amount_paise=150_000)

    result = await auto_approval.evaluate_booking(db, booking, venue_setup.owner.id)

    assert result.approved is True
    assert result.method == "automatic"
    assert [(c.name, c.passed, c.reason) for c in result.checks] == [
        ("Amount Limit", True, "Amount ₹1500 within limit"),
    ]
    assert booking.status == BookingStatus.CONFIRMED
    assert booking.approval_method == ApprovalMethod.AUTOMATIC
    assert booking.confirmed_at is not None


async def test_amount_over_ceiling_is_deferred(db, venue_setup, subscribe):
    await subscribe(venue_setup.owner, features=AUTO)
    await _set_policy(
        db,
        venue_setup.owner.id,
        require_payment_proof=False,
        amount_rules={"enabled": True, "max_auto_approve_amount_paise": 100_000},
    )
    booking = await _pending_booking(db, venue_setup, amount_paise=150_000)

    result = await auto_approval.evaluate_booking(db, booking, venue_setup.owner.id)

    assert result.approved is False
    assert result.checks[0].reason == "Amount ₹1500 exceeds limit of ₹1000"


async def test_empty_checklist_approves(db, venue_setup, subscribe):
    await subscribe(venue_setup.owner, features=AUTO)
    await _set_policy(db, venue_setup.owner.id, require_payment_proof=False)
    booking = await _pending_booking(db, venue_setup)

    result = await auto_approval.evaluate_booking(db, booking, venue_setup.owner.id)

    assert result.approved is True
    assert result.checks == []


async def test_audit_trail_has_one_entry_per_enabled_rule(db, venue_setup, subscribe):
    await subscribe(venue_setup.owner, features=AUTO_AND_AI)
    await _set_policy(
        db,
        venue_setup.owner.id,
        amount_rules={"enabled": True, "max_auto_approve_amount_paise": 500_000},
        customer_rules={
            "enabled": True,
            "minimum_previous_bookings": 0,
            "require_verified_phone": True,
            "require_verified_email": True,
        },
        time_rules={"enabled": True, "block_peak_hours": True, "peak_hours": ["19:00"]},
        slot_rules={"enabled": True, "exclude_courts": [999]},
        ai_settings={"enabled": True, "trust_score_threshold": 40},
    )
    booking = await _pending_booking(db, venue_setup, proof="upi.png")

    result = await auto_approval.evaluate_booking(db, booking, venue_setup.owner.id)

    assert [c.name for c in result.checks] == [
        "Payment Proof",
        "Amount Limit",
        "Repeat Customer",
        "Phone Verified",
        "Email Verified",
        "Allowed Day",
        "Business Hours",
        "Peak Hours",
        "Court Rules",
        "AI Trust Score",
    ]
    failed = {c.name for c in result.checks if not c.passed}
    assert failed == {"Phone Verified", "Email Verified"}
    assert result.approved is False


async def test_trust_score_rule_needs_ai_capability(db, venue_setup, subscribe):
    await subscribe(venue_setup.owner, features=AUTO)
    await _set_policy(
        db, venue_setup.owner.id, require_payment_proof=False, ai_settings={"enabled": True, "trust_score_threshold": 90}
    )
    booking = await _pending_booking(db, venue_setup)

    result = await auto_approval.evaluate_booking(db, booking, venue_setup.owner.id)

    # No aiInsights on the plan: the rule is not registered at all
    assert result.checks == []
    assert result.approved is True


async def test_trust_score_below_threshold_defers(db, venue_setup, subscribe):
    await subscribe(venue_setup.owner, features=AUTO_AND_AI)
    await _set_policy(
        db, venue_setup.owner.id, require_payment_proof=False, ai_settings={"enabled": True, "trust_score_threshold": 60}
    )
    booking = await _pending_booking(db, venue_setup)

    result = await auto_approval.evaluate_booking(db, booking, venue_setup.owner.id)

    assert result.approved is False
    assert result.checks[0].reason == "Trust score: 50/100 (minimum: 60)"


async def test_repeat_customer_excludes_current_booking(db, venue_setup, subscribe):
    await subscribe(venue_setup.owner, features=AUTO)
    await _set_policy(
        db,
        venue_setup.owner.id,
        require_payment_proof=False,
        customer_rules={"enabled": True, "minimum_previous_bookings": 1},
    )
    earlier = await _pending_booking(db, venue_setup, times=("06:00",), code="BKEARLY")
    earlier.status = BookingStatus.COMPLETED
    await db.flush()
    booking = await _pending_booking(db, venue_setup, code="BKNOW")

    result = await auto_approval.evaluate_booking(db, booking, venue_setup.owner.id)

    assert result.checks[0].reason == "Customer has 1 previous bookings"
    assert result.approved is True


async def test_decisions_update_settings_counters(db, venue_setup, subscribe):
    await subscribe(venue_setup.owner, features=AUTO)
    deferred = await _pending_booking(db, venue_setup, code="BKNOPROOF")
    await auto_approval.evaluate_booking(db, deferred, venue_setup.owner.id)
    approved = await _pending_booking(db, venue_setup, proof="upi.png", times=("19:00",), code="BKPROOF")
    await auto_approval.evaluate_booking(db, approved, venue_setup.owner.id)
    await db.commit()

    row = await auto_approval.get_or_create_settings(db, venue_setup.owner.id)
    assert (row.total_auto_approved, row.total_manual_reviews) == (1, 1)


# ---------------------------------------------------------------------------
# Individual rules (no database)
# ---------------------------------------------------------------------------


def _policy(**changes) -> AutoApprovalPolicy:
    return AutoApprovalPolicy.model_validate({**AutoApprovalPolicy().model_dump(), **changes})


def _evaluate(policy, ctx, capabilities=frozenset({Capability.AUTO_CONFIRMATION})):
    return [rule.evaluate(ctx) for rule in build_rules(policy, capabilities, ctx)]


def test_default_policy_only_checks_payment_proof():
    checks = _evaluate(_policy(), _context(proof="upi.png"))
    assert [(c.name, c.passed, c.reason) for c in checks] == [("Payment Proof", True, "Payment proof uploaded")]


def test_allowed_day_uses_iso_weekday_of_first_slot():
    policy = _policy(require_payment_proof=False, time_rules={"enabled": True, "allowed_days": [1, 2, 3, 4, 5]})

    saturday = _evaluate(policy, _context(slot_day=date(2024, 6, 1)))
    monday = _evaluate(policy, _context(slot_day=date(2024, 6, 3)))

    assert (saturday[0].name, saturday[0].passed) == ("Allowed Day", False)
    assert monday[0].passed is True


def test_business_hours_window_is_half_open():
    policy = _policy(
        require_payment_proof=False,
        time_rules={"enabled": True, "business_hours": {"start": "08:00", "end": "18:00"}},
    )

    inside = _evaluate(policy, _context(times=("08:00",)))
    at_close = _evaluate(policy, _context(times=("18:00",)))

    assert inside[1].passed is True
    assert (at_close[1].name, at_close[1].passed) == ("Business Hours", False)
    assert at_close[1].reason == "Outside business hours (08:00-18:00)"


def test_business_hours_skipped_without_configured_hours():
    policy = _policy(require_payment_proof=False, time_rules={"enabled": True, "business_hours": None})
    assert [c.name for c in _evaluate(policy, _context())] == ["Allowed Day"]


def test_peak_hours_block_any_matching_slot():
    policy = _policy(
        require_payment_proof=False,
        time_rules={"enabled": True, "block_peak_hours": True, "peak_hours": ["19:00", "20:00"]},
    )

    checks = _evaluate(policy, _context(times=("18:00", "19:00")))

    peak = next(c for c in checks if c.name == "Peak Hours")
    assert peak.passed is False
    assert "19:00" in peak.reason


def test_court_rules():
    only_two = _policy(require_payment_proof=False, slot_rules={"enabled": True, "specific_courts": [2]})
    exclude_one = _policy(require_payment_proof=False, slot_rules={"enabled": True, "exclude_courts": [1]})

    assert _evaluate(only_two, _context(court_id=2))[0].passed is True
    assert _evaluate(only_two, _context(court_id=1))[0].passed is False
    assert _evaluate(exclude_one, _context(court_id=1))[0].passed is False
    assert _evaluate(exclude_one, _context(court_id=3))[0].passed is True


def test_amount_rule_without_ceiling_passes():
    policy = _policy(require_payment_proof=False, amount_rules={"enabled": True})
    assert _evaluate(policy, _context(amount_paise=10_000_000))[0].passed is True


# ---------------------------------------------------------------------------
# Settings and stats
# ---------------------------------------------------------------------------


async def test_get_or_create_settings_is_idempotent(db, venue_setup):
    first = await auto_approval.get_or_create_settings(db, venue_setup.owner.id)
    second = await auto_approval.get_or_create_settings(db, venue_setup.owner.id)
    await db.commit()

    assert first.id == second.id
    assert AutoApprovalPolicy.model_validate(first.policy) == AutoApprovalPolicy()
    rows = await db.execute(select(AutoApprovalSettings).where(AutoApprovalSettings.owner_id == venue_setup.owner.id))
    assert len(rows.scalars().all()) == 1


async def test_update_policy_replaces_document(db, venue_setup):
    await _set_policy(db, venue_setup.owner.id, require_payment_proof=False, amount_rules={"enabled": True})
    await db.commit()

    row = await auto_approval.get_or_create_settings(db, venue_setup.owner.id)
    policy = AutoApprovalPolicy.model_validate(row.policy)
    assert policy.require_payment_proof is False
    assert policy.amount_rules.enabled is True
    assert policy.amount_rules.max_auto_approve_amount_paise is None


async def test_stats_split_auto_and_manual(db, venue_setup):
    statuses = [
        (BookingStatus.CONFIRMED, ApprovalMethod.AUTOMATIC),
        (BookingStatus.CONFIRMED, ApprovalMethod.AUTOMATIC),
        (BookingStatus.CONFIRMED, ApprovalMethod.MANUAL),
        (BookingStatus.PENDING, None),
        (BookingStatus.REJECTED, None),
    ]
    for i, (status, method) in enumerate(statuses):
        booking = await _pending_booking(db, venue_setup, times=(f"{8 + i:02d}:00",), code=f"BKSTAT{i}")
        booking.status = status
        booking.approval_method = method
    await db.commit()

    stats = await auto_approval.get_auto_approval_stats(db, venue_setup.owner.id)

    assert stats.period == "Last 30 days"
    assert (stats.total_bookings, stats.auto_approved, stats.manual_approved) == (5, 2, 1)
    assert (stats.pending, stats.rejected) == (1, 1)
    assert stats.auto_approval_rate == 40.0


async def test_stats_ignore_approvals_later_cancelled(db, venue_setup):
    statuses = [
        (BookingStatus.CANCELLED, ApprovalMethod.AUTOMATIC),
        (BookingStatus.CANCELLED, ApprovalMethod.MANUAL),
        (BookingStatus.COMPLETED, ApprovalMethod.AUTOMATIC),
        (BookingStatus.CONFIRMED, ApprovalMethod.MANUAL),
    ]
    for i, (status, method) in enumerate(statuses):
        booking = await _pending_booking(db, venue_setup, times=(f"{8 + i:02d}:00",), code=f"BKCXL{i}")
        booking.status = status
        booking.approval_method = method
    await db.commit()

    stats = await auto_approval.get_auto_approval_stats(db, venue_setup.owner.id)

    assert (stats.total_bookings, stats.auto_approved, stats.manual_approved) == (4, 1, 1)
    assert stats.auto_approval_rate == 25.0
