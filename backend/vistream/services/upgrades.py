"""Plan changes paid up front: upgrade to a pricier plan, or renew.

The quote fixes the amount server-side from the catalog and builds the
payment metadata the reconciliation engine reads back once the payment
completes. The full price of the new plan is charged, without proration.
"""

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from vistream.billing.errors import PlanNotFound, SubscriptionExpired, SubscriptionNotFound, UpgradeNotAllowed
from vistream.billing.plans import get_plan, parse_price_cents, plan_price_cents
from vistream.database import utcnow
from vistream.models.plan import Plan
from vistream.models.subscription import Subscription
from vistream.services.reconciliation import OP_RENEWAL, OP_UPGRADE
from vistream.services.subscription_service import get_active_subscription

logger = logging.getLogger(__name__)

# Assumed time left when an active subscription has no end date
DEFAULT_REMAINING = timedelta(days=30)


@dataclass
class PlanChangeQuote:
    subscription: Subscription
    new_plan: Plan
    operation: str
    days_remaining: int
    current_price_cents: int
    amount: Decimal
    currency: str

    @property
    def is_renewal(self) -> bool:
        return self.operation == OP_RENEWAL

    @property
    def description(self) -> str:
        if self.is_renewal:
            return f"Renouvellement {self.new_plan.name}"
        return f"Mise à niveau vers {self.new_plan.name}"

    def payment_metadata(self) -> dict[str, Any]:
        return {
            "type": self.operation,
            "currentSubscriptionId": str(self.subscription.id),
            "newPlanId": str(self.new_plan.id),
            "daysRemaining": self.days_remaining,
            "currentPlan": self.subscription.plan_name,
            "newPlan": self.new_plan.name,
            "upgradeCost": f"{self.amount:.2f}",
            "isRenewal": self.is_renewal,
        }


def days_remaining(end_date: datetime | None, now: datetime) -> int:
    """Whole days left, rounded up, never negative."""
    end = end_date or now + DEFAULT_REMAINING
    return max(0, math.ceil((end - now).total_seconds() / 86400))


async def _current_price_cents(db: AsyncSession, subscription: Subscription) -> int:
    if subscription.plan_id is not None:
        plan = await get_plan(db, subscription.plan_id)
        if plan is not None:
            return plan_price_cents(plan)
    return parse_price_cents(subscription.plan_price)


async def quote_plan_change(
    db: AsyncSession,
    user_id: uuid.UUID,
    new_plan_id: object,
    *,
    is_renewal: bool = False,
    now: datetime | None = None,
) -> PlanChangeQuote:
    """Price an upgrade or renewal of the user's active subscription.

    Raises ``SubscriptionNotFound`` without an active subscription,
    ``PlanNotFound`` for a missing or retired plan, ``UpgradeNotAllowed`` when
    an upgrade does not cost more than the current plan and
    ``SubscriptionExpired`` when an upgrade targets a subscription with no
    time left.
    """
    now = now or utcnow()
    subscription = await get_active_subscription(db, user_id)
    if subscription is None:
        logger.info("User %s has no active subscription to change", user_id)
        raise SubscriptionNotFound("Aucun abonnement actif trouvé", detail=f"user {user_id} has no active subscription")

    plan = await get_plan(db, new_plan_id)
    if plan is None or not plan.is_active:
        logger.info("Plan change to unknown or inactive plan %r", new_plan_id)
        raise PlanNotFound("Plan non trouvé ou inactif", detail=f"plan {new_plan_id!r} unavailable")

    current_cents = await _current_price_cents(db, subscription)
    new_cents = plan_price_cents(plan)
    if new_cents <= 0:
        logger.warning("Plan %s has no usable price (%r)", plan.id, plan.price)
        raise PlanNotFound("Plan non trouvé ou inactif", detail=f"plan {plan.id} has no price")
    if not is_renewal and new_cents <= current_cents:
        raise UpgradeNotAllowed(detail=f"{plan.name} ({new_cents}) is not above current plan ({current_cents})")

    remaining = days_remaining(subscription.end_date, now)
    if not is_renewal and remaining <= 0:
        raise SubscriptionExpired(detail=f"subscription {subscription.id} ended on {subscription.end_date}")

    quote = PlanChangeQuote(
        subscription=subscription,
        new_plan=plan,
        operation=OP_RENEWAL if is_renewal else OP_UPGRADE,
        days_remaining=remaining,
        current_price_cents=current_cents,
        amount=(Decimal(new_cents) / 100).quantize(Decimal("0.01")),
        currency=plan.currency,
    )
    logger.info(
        "Quoted %s of subscription %s to %s: %s %s (%d days left)",
        quote.operation,
        subscription.id,
        plan.name,
        quote.amount,
        quote.currency,
        remaining,
    )
    return quote
