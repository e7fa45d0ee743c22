"""Booking pipeline errors.

Every failure the pipeline reports to a caller is a BookingError carrying a
machine-readable rule key and a human-readable message. Auto-approval rule
failures are not errors: they come back as CheckResults.
"""


class BookingError(Exception):
    """Base class for business errors raised by the booking pipeline."""

    rule = "booking_error"

    def __init__(self, message: str, rule: str | None = None):
        self.message = message
        if rule is not None:
            self.rule = rule
        super().__init__(message)


class SlotUnavailable(BookingError):
    """One or more requested slots are not currently reservable."""

    rule = "slot_unavailable"

    def __init__(self, message: str = "Some slots are not available", slot_ids: list[int] | None = None):
        self.slot_ids = slot_ids or []
        super().__init__(message)


class QuotaExceeded(BookingError):
    """The owner's plan limit has been reached."""

    rule = "quota_exceeded"


class InvalidRequest(BookingError):
    """Missing fields or mismatched venue/court/slot references."""

    rule = "invalid_request"


class InvalidTransition(InvalidRequest):
    """The booking's current status does not allow the requested action."""

    rule = "invalid_transition"


class NotFound(BookingError):
    """A referenced booking, slot, court or venue does not exist (or is not yours)."""

    rule = "not_found"
