"""Plan and subscription models.

Plan = a purchasable tier with usage limits and feature flags.
Subscription = one owner's instance of a plan with running usage counters.
"""

import enum
from datetime import date

from sqlalchemy import JSON, Boolean, Date, Enum, ForeignKey, Index, Integer, String, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from courtslot.models.base import Base, TimestampMixin


class SubscriptionStatus(enum.StrEnum):
    PENDING = "pending"    # Purchased, awaiting payment approval
    ACTIVE = "active"
    EXPIRED = "expired"


class Plan(TimestampMixin, Base):
    __tablename__ = "plans"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    price_paise: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    duration_days: Mapped[int] = mapped_column(Integer, default=30, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Limits
    max_venues: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    max_courts: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    max_bookings: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_messages: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_unlimited_bookings: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_unlimited_messages: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Capability keys, e.g. ["autoConfirmation", "aiInsights"]
    features: Mapped[list] = mapped_column(JSON().with_variant(JSONB, "postgresql"), default=list)

    def __repr__(self) -> str:
        return f"<Plan {self.name}>"


class Subscription(TimestampMixin, Base):
    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(primary_key=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    plan_id: Mapped[int] = mapped_column(ForeignKey("plans.id"), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[SubscriptionStatus] = mapped_column(
        Enum(SubscriptionStatus, name="subscription_status", values_callable=lambda e: [x.value for x in e]),
        default=SubscriptionStatus.PENDING,
        nullable=False,
    )

    # Usage counters, only ever incremented
    bookings_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    messages_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    plan: Mapped["Plan"] = relationship(lazy="selectin")

    __table_args__ = (
        # At most one current (active or pending) subscription per owner
        Index(
            "ix_subscriptions_one_current",
            "owner_id",
            unique=True,
            postgresql_where=text("status IN ('active', 'pending')"),
            sqlite_where=text("status IN ('active', 'pending')"),
        ),
        Index("ix_subscriptions_end_date", "end_date"),
    )

    def __repr__(self) -> str:
        return f"<Subscription owner={self.owner_id} plan={self.plan_id} {self.status.value}>"
