"""Plan model — purchasable subscription offers."""

from sqlalchemy import JSON, Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from vistream.billing.periods import BillingPeriod, parse_legacy_period
from vistream.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class Plan(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A plan in the catalog.

    ``price`` and ``period`` are display strings (``"29€"``, ``"12 mois"``).
    Checkout math uses ``price_cents``/``currency`` and the structured
    ``period_unit``/``period_count`` pair; rows imported from the legacy
    catalog may only carry the display string.
    """

    __tablename__ = "plans"

    name: Mapped[str] = mapped_column(String(50), nullable=False)
    slug: Mapped[str] = mapped_column(String(80), unique=True, nullable=False)
    description: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    price: Mapped[str] = mapped_column(String(50), nullable=False)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")
    period: Mapped[str] = mapped_column(String(50), nullable=False)
    period_unit: Mapped[str | None] = mapped_column(String(10), nullable=True)  # month, year
    period_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    features: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    highlight: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    @property
    def billing_period(self) -> BillingPeriod:
        """Structured period, falling back to the legacy display string."""
        if self.period_unit and self.period_count:
            return BillingPeriod(unit=self.period_unit, count=self.period_count)
        return parse_legacy_period(self.period)

    def __repr__(self) -> str:
        return f"<Plan(id={self.id}, name={self.name!r}, price={self.price!r}, period={self.period!r})>"
