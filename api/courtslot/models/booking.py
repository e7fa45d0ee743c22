"""Booking model.

A booking is a customer's claim on one or more slots of a single court. It is
the core transactional entity: never deleted, only moved through its
lifecycle by the booking state machine.
"""

import enum
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from courtslot.models.base import Base, TimestampMixin


class BookingStatus(enum.StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class BookingSource(enum.StrEnum):
    ONLINE = "online"      # Customer self-service request
    OFFLINE = "offline"    # Walk-in recorded by the owner


class ApprovalMethod(enum.StrEnum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"


class CancelledBy(enum.StrEnum):
    CUSTOMER = "customer"
    OWNER = "owner"
    SYSTEM = "system"      # Stale pending request expired


def _enum(enum_cls: type[enum.Enum], name: str) -> Enum:
    return Enum(enum_cls, name=name, values_callable=lambda e: [x.value for x in e])


class Booking(TimestampMixin, Base):
    __tablename__ = "bookings"

    id: Mapped[int] = mapped_column(primary_key=True)
    code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    customer_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)

    # Denormalised from the slots for query convenience
    venue_id: Mapped[int] = mapped_column(ForeignKey("venues.id"), nullable=False)
    court_id: Mapped[int] = mapped_column(ForeignKey("courts.id"), nullable=False)
    sport_id: Mapped[int] = mapped_column(ForeignKey("sports.id"), nullable=False)

    # Payment (recorded, not processed)
    amount_paise: Mapped[int] = mapped_column(Integer, nullable=False)
    payment_proof_ref: Mapped[str | None] = mapped_column(String(500))
    transaction_ref: Mapped[str | None] = mapped_column(String(100))

    # Lifecycle
    status: Mapped[BookingStatus] = mapped_column(
        _enum(BookingStatus, "booking_status"), default=BookingStatus.PENDING, nullable=False
    )
    source: Mapped[BookingSource] = mapped_column(
        _enum(BookingSource, "booking_source"), default=BookingSource.ONLINE, nullable=False
    )
    approval_method: Mapped[ApprovalMethod | None] = mapped_column(_enum(ApprovalMethod, "approval_method"))
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    rejection_reason: Mapped[str | None] = mapped_column(Text)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_by: Mapped[CancelledBy | None] = mapped_column(_enum(CancelledBy, "cancelled_by"))
    cancellation_reason: Mapped[str | None] = mapped_column(Text)

    # Ordered slot references (weak: slot lifecycle is independent)
    slot_links: Mapped[list["BookingSlot"]] = relationship(
        order_by="BookingSlot.position",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint("amount_paise >= 0", name="ck_bookings_amount_non_negative"),
        Index("ix_bookings_customer", "customer_id", "created_at"),
        Index("ix_bookings_venue_status", "venue_id", "status"),
    )

    @property
    def slot_ids(self) -> list[int]:
        return [link.slot_id for link in self.slot_links]

    def __repr__(self) -> str:
        return f"<Booking {self.code} {self.status.value} court={self.court_id}>"


class BookingSlot(Base):
    """Association row: one slot claimed by a booking, in request order."""

    __tablename__ = "booking_slots"

    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id"), primary_key=True)
    slot_id: Mapped[int] = mapped_column(ForeignKey("slots.id"), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (Index("ix_booking_slots_slot", "slot_id"),)
