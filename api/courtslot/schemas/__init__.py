"""Pydantic schemas for API serialisation and the auto-approval policy document."""

import re
from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

_HHMM = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")


def _check_hhmm(value: str) -> str:
    if not _HHMM.match(value):
        raise ValueError("time must be in HH:MM format")
    return value


# --- Booking ---


class BookingCreate(BaseModel):
    venue_id: int
    court_id: int
    sport_id: int
    slot_ids: list[int] = Field(min_length=1)
    amount_paise: int = Field(ge=0)
    payment_proof_ref: str | None = None
    transaction_ref: str | None = None


class OfflineBookingCreate(BaseModel):
    venue_id: int
    court_id: int
    sport_id: int
    slot_ids: list[int] = Field(min_length=1)
    amount_paise: int = Field(ge=0)
    customer_name: str = Field(min_length=1)
    customer_phone: str = Field(min_length=6)


class BookingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    customer_id: int
    venue_id: int
    court_id: int
    sport_id: int
    slot_ids: list[int]
    amount_paise: int
    payment_proof_ref: str | None
    transaction_ref: str | None
    status: str
    source: str
    approval_method: str | None
    rejection_reason: str | None
    confirmed_at: datetime | None
    cancelled_at: datetime | None
    created_at: datetime


class RejectRequest(BaseModel):
    reason: str | None = None


class CancelRequest(BaseModel):
    reason: str | None = None


# --- Auto-approval audit trail ---


class CheckResult(BaseModel):
    name: str
    passed: bool
    reason: str | None = None


class ApprovalResult(BaseModel):
    approved: bool
    method: str  # "automatic" | "manual"
    reason: str | None = None
    checks: list[CheckResult] = []


class BookingCreatedOut(BaseModel):
    booking: BookingOut
    auto_approved: bool
    message: str
    checks: list[CheckResult] | None = None


# --- Auto-approval policy (stored as JSON on AutoApprovalSettings.policy) ---


class AmountRules(BaseModel):
    enabled: bool = False
    max_auto_approve_amount_paise: int | None = Field(default=None, ge=0)


class CustomerRules(BaseModel):
    enabled: bool = False
    minimum_previous_bookings: int = Field(default=2, ge=0)
    require_verified_phone: bool = False
    require_verified_email: bool = False


class BusinessHours(BaseModel):
    start: str = "06:00"
    end: str = "23:00"

    @field_validator("start", "end")
    @classmethod
    def _times_format(cls, value: str) -> str:
        return _check_hhmm(value)


class TimeRules(BaseModel):
    enabled: bool = False
    business_hours: BusinessHours | None = Field(default_factory=BusinessHours)
    allowed_days: list[int] = Field(default_factory=lambda: [1, 2, 3, 4, 5, 6, 7])  # 1=Mon..7=Sun
    block_peak_hours: bool = False
    peak_hours: list[str] = []

    @field_validator("allowed_days")
    @classmethod
    def _days_in_range(cls, days: list[int]) -> list[int]:
        if any(d < 1 or d > 7 for d in days):
            raise ValueError("allowed_days must be between 1 (Monday) and 7 (Sunday)")
        return days

    @field_validator("peak_hours")
    @classmethod
    def _peak_hours_format(cls, hours: list[str]) -> list[str]:
        return [_check_hhmm(h) for h in hours]


class SlotRules(BaseModel):
    enabled: bool = False
    specific_courts: list[int] = []
    exclude_courts: list[int] = []


class AiSettings(BaseModel):
    enabled: bool = False
    trust_score_threshold: int = Field(default=60, ge=0, le=100)
    # Stored for the owner dashboard; no rule consumes them yet
    fraud_detection_enabled: bool = False
    auto_learn_from_approvals: bool = False


class AutoApprovalPolicy(BaseModel):
    """An owner's auto-approval policy.

    The defaults are the policy every owner starts with: auto-approval on,
    payment proof required, every optional sub-policy off.
    """

    enabled: bool = True
    require_payment_proof: bool = True
    notify_on_auto_approval: bool = True
    amount_rules: AmountRules = Field(default_factory=AmountRules)
    customer_rules: CustomerRules = Field(default_factory=CustomerRules)
    time_rules: TimeRules = Field(default_factory=TimeRules)
    slot_rules: SlotRules = Field(default_factory=SlotRules)
    ai_settings: AiSettings = Field(default_factory=AiSettings)


class AutoApprovalSettingsOut(BaseModel):
    owner_id: int
    policy: AutoApprovalPolicy
    total_auto_approved: int
    total_manual_reviews: int


class AutoApprovalStatsOut(BaseModel):
    period: str
    total_bookings: int
    auto_approved: int
    manual_approved: int
    pending: int
    rejected: int
    auto_approval_rate: float


# --- Quota ---


class QuotaDecision(BaseModel):
    allowed: bool
    reason: str | None = None


class QuotaUsageOut(BaseModel):
    has_subscription: bool
    plan_name: str | None = None
    subscription_status: str | None = None
    end_date: date | None = None
    bookings_count: int = 0
    max_bookings: int | None = None
    is_unlimited_bookings: bool = False
    messages_count: int = 0
    max_messages: int | None = None
    is_unlimited_messages: bool = False
    capabilities: list[str] = []


# --- Slots ---


class SlotOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    court_id: int
    venue_id: int
    slot_date: date
    start_time: str
    end_time: str
    price_paise: int
    status: str


class GenerateSlotsRequest(BaseModel):
    court_id: int
    slot_date: date
    price_paise: int | None = Field(default=None, ge=0)
