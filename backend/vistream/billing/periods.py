"""Billing period value and date arithmetic.

Plans carry a structured period (``month``/``year`` × count). Older catalog
rows only have the French display string (``"1 mois"``, ``"12 mois"``,
``"1 an"``); :func:`parse_legacy_period` is the single place that turns such a
string into a :class:`BillingPeriod`.
"""

import calendar
from dataclasses import dataclass
from datetime import datetime

MONTH = "month"
YEAR = "year"


@dataclass(frozen=True)
class BillingPeriod:
    """A billing interval such as 1 month or 2 years."""

    unit: str  # "month" or "year"
    count: int = 1

    def __post_init__(self) -> None:
        if self.unit not in (MONTH, YEAR):
            raise ValueError(f"Unknown billing period unit: {self.unit!r}")
        if self.count < 1:
            raise ValueError("Billing period count must be positive")

    @property
    def months(self) -> int:
        return self.count * 12 if self.unit == YEAR else self.count

    def add_to(self, base: datetime) -> datetime:
        """Return ``base`` shifted by this period."""
        return add_months(base, self.months)


MONTHLY = BillingPeriod(MONTH, 1)
YEARLY = BillingPeriod(YEAR, 1)
BIENNIAL = BillingPeriod(YEAR, 2)


def add_months(base: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day to the end of the target month.

    ``Jan 31 + 1 month`` is ``Feb 28`` (or 29), ``Feb 29 + 12 months`` is ``Feb 28``.
    """
    month_index = base.month - 1 + months
    year = base.year + month_index // 12
    month = month_index % 12 + 1
    day = min(base.day, calendar.monthrange(year, month)[1])
    return base.replace(year=year, month=month, day=day)


def parse_legacy_period(period: str | None) -> BillingPeriod:
    """Map a legacy period display string to a billing period.

    Substring rules, in order: ``"12"``, ``"année"`` or ``"an"`` → 1 year;
    ``"24"`` → 2 years; anything else → 1 month. ``"24 mois"`` contains none
    of the yearly markers, so it reaches the biennial rule.
    """
    text = period or ""
    if "12" in text or "année" in text or "an" in text:
        return YEARLY
    if "24" in text:
        return BIENNIAL
    return MONTHLY
