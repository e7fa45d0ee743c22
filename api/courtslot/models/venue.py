"""Venue directory models.

Sport = a bookable discipline (badminton, football, pickleball...).
Venue = a physical location run by one owner.
Court = an individual bookable court at a venue, dedicated to one sport.

These are managed by the venue CRUD service; the booking pipeline only reads them.
"""

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from courtslot.models.base import Base, TimestampMixin


class Sport(TimestampMixin, Base):
    __tablename__ = "sports"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Sport {self.name}>"


class Venue(TimestampMixin, Base):
    __tablename__ = "venues"

    id: Mapped[int] = mapped_column(primary_key=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    city: Mapped[str | None] = mapped_column(String(100))
    address: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Venue {self.name} owner={self.owner_id}>"


class Court(TimestampMixin, Base):
    __tablename__ = "courts"

    id: Mapped[int] = mapped_column(primary_key=True)
    venue_id: Mapped[int] = mapped_column(ForeignKey("venues.id"), nullable=False)
    sport_id: Mapped[int] = mapped_column(ForeignKey("sports.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Default hourly price used when generating slots (paise)
    price_paise: Mapped[int | None] = mapped_column(Integer)

    __table_args__ = (Index("ix_courts_venue", "venue_id"),)

    def __repr__(self) -> str:
        return f"<Court {self.name} @ venue {self.venue_id}>"
