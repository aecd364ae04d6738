"""Subscription model — a user's plan entitlement with a snapshot of the plan bought."""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vistream.database import Base, TimestampMixin, UUIDPrimaryKeyMixin

SUB_PENDING = "pending"
SUB_ACTIVE = "active"
SUB_INACTIVE = "inactive"
SUB_CANCELLED = "cancelled"
SUB_EXPIRED = "expired"

SUBSCRIPTION_STATUSES: frozenset[str] = frozenset({SUB_PENDING, SUB_ACTIVE, SUB_INACTIVE, SUB_CANCELLED, SUB_EXPIRED})


class Subscription(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Tracks a user's subscription.

    A user may accumulate several rows over time (pending signups, cancelled
    or expired subscriptions) but at most one of them is ``active``; upgrades
    and renewals mutate that row in place.
    """

    __tablename__ = "subscriptions"

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Plan snapshot, frozen at purchase time
    plan_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("plans.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    plan_name: Mapped[str] = mapped_column(String(50), nullable=False)
    plan_price: Mapped[str] = mapped_column(String(50), nullable=False)
    plan_period: Mapped[str] = mapped_column(String(50), nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=SUB_PENDING, index=True)
    start_date: Mapped[datetime | None] = mapped_column(nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(nullable=True)
    auto_renew: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Affiliation (referral) tracking
    affiliation_code: Mapped[str | None] = mapped_column(String(4), nullable=True, index=True)
    affiliated_user_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    sale_value: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))

    # Payment whose reconciliation last mutated this row
    last_payment_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("payments.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Relationships
    user: Mapped["User"] = relationship("User", foreign_keys=[user_id], lazy="selectin")  # type: ignore[name-defined]  # noqa: F821
    affiliated_user: Mapped["User | None"] = relationship(  # type: ignore[name-defined]  # noqa: F821
        "User", foreign_keys=[affiliated_user_id], lazy="selectin"
    )

    __table_args__ = (Index("ix_subscriptions_user_status", "user_id", "status"),)

    def __repr__(self) -> str:
        return (
            f"<Subscription(id={self.id}, user_id={self.user_id}, plan={self.plan_name!r}, "
            f"status={self.status}, end_date={self.end_date})>"
        )
