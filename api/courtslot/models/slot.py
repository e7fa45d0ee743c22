"""Slot model.

A slot is one bookable hour of one court on one date. The unique index on
(court_id, slot_date, start_time) is the only thing standing between two
customers and the same court cell; status changes go through the slot ledger.
"""

import enum
from datetime import date

from sqlalchemy import CheckConstraint, Date, Enum, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from courtslot.models.base import Base, TimestampMixin


class SlotStatus(enum.StrEnum):
    AVAILABLE = "available"
    BOOKED = "booked"
    BLOCKED = "blocked"


class Slot(TimestampMixin, Base):
    __tablename__ = "slots"

    id: Mapped[int] = mapped_column(primary_key=True)
    court_id: Mapped[int] = mapped_column(ForeignKey("courts.id"), nullable=False)
    venue_id: Mapped[int] = mapped_column(ForeignKey("venues.id"), nullable=False)
    sport_id: Mapped[int] = mapped_column(ForeignKey("sports.id"), nullable=False)

    # When (venue-local wall clock, HH:MM)
    slot_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)

    price_paise: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[SlotStatus] = mapped_column(
        Enum(SlotStatus, name="slot_status", values_callable=lambda e: [x.value for x in e]),
        default=SlotStatus.AVAILABLE,
        nullable=False,
    )

    __table_args__ = (
        # Prevent double-booking: one slot per court cell
        Index("ix_slots_court_cell", "court_id", "slot_date", "start_time", unique=True),
        Index("ix_slots_venue_date", "venue_id", "slot_date"),
        CheckConstraint("price_paise >= 0", name="ck_slots_price_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Slot court={self.court_id} {self.slot_date} {self.start_time} {self.status.value}>"
