"""Per-owner auto-approval settings.

The policy itself is a nested JSON document validated by
courtslot.schemas.AutoApprovalPolicy; rows are created lazily by
services.auto_approval.get_or_create_settings.
"""

from sqlalchemy import JSON, ForeignKey, Integer
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from courtslot.models.base import Base, TimestampMixin


class AutoApprovalSettings(TimestampMixin, Base):
    __tablename__ = "auto_approval_settings"

    id: Mapped[int] = mapped_column(primary_key=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id"), unique=True, nullable=False)
    policy: Mapped[dict] = mapped_column(JSON().with_variant(JSONB, "postgresql"), nullable=False)

    # Decision counters
    total_auto_approved: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_manual_reviews: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    def __repr__(self) -> str:
        return f"<AutoApprovalSettings owner={self.owner_id}>"
