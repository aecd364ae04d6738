"""Pydantic v2 schemas for subscription plan changes."""

import uuid

from pydantic import Field

from vistream.schemas.base import CamelModel
from vistream.schemas.payments import PaymentOut


class UpgradeRequest(CamelModel):
    """Upgrade to ``new_plan_id``, or renew onto it when ``is_renewal`` is set."""

    new_plan_id: str = Field(min_length=1)
    provider: str | None = None  # mollie, stripe; defaults to the highest-priority active gateway
    is_renewal: bool = False
    redirect_url: str | None = None


class PlanSummary(CamelModel):
    id: uuid.UUID | None = None
    name: str
    price: str
    period: str


class UpgradeOut(CamelModel):
    operation: str
    current_subscription_id: uuid.UUID
    current_plan: PlanSummary
    new_plan: PlanSummary
    days_remaining: int
    upgrade_cost: str
    currency: str


class UpgradeResponse(CamelModel):
    success: bool = True
    message: str
    upgrade: UpgradeOut
    payment: PaymentOut
