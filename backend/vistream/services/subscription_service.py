"""Subscription store — lookups and in-place lifecycle mutations."""

import logging
import uuid
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vistream.billing.periods import BillingPeriod, parse_legacy_period
from vistream.billing.plans import apply_plan_snapshot
from vistream.database import utcnow
from vistream.models.payment import Payment
from vistream.models.plan import Plan
from vistream.models.subscription import SUB_ACTIVE, SUB_INACTIVE, SUB_PENDING, Subscription

logger = logging.getLogger(__name__)


async def get_subscription(db: AsyncSession, subscription_id: object) -> Subscription | None:
    """Look up a subscription by id; malformed ids return None."""
    if not subscription_id:
        return None
    try:
        parsed = subscription_id if isinstance(subscription_id, uuid.UUID) else uuid.UUID(str(subscription_id))
    except ValueError:
        return None
    return await db.get(Subscription, parsed)


async def get_active_subscription(db: AsyncSession, user_id: uuid.UUID) -> Subscription | None:
    """The user's active subscription (the most recent one if data is inconsistent)."""
    result = await db.execute(
        select(Subscription)
        .where(Subscription.user_id == user_id, Subscription.status == SUB_ACTIVE)
        .order_by(Subscription.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_latest_pending_subscription(db: AsyncSession, user_id: uuid.UUID) -> Subscription | None:
    result = await db.execute(
        select(Subscription)
        .where(Subscription.user_id == user_id, Subscription.status == SUB_PENDING)
        .order_by(Subscription.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


def subscription_period(subscription: Subscription, plan: Plan | None = None) -> BillingPeriod:
    """Billing period from the plan when known, else from the snapshot string."""
    if plan is not None:
        return plan.billing_period
    return parse_legacy_period(subscription.plan_period)


def _stamp_payment(subscription: Subscription, payment: Payment | None, now: datetime) -> None:
    if payment is None:
        return
    subscription.last_payment_id = payment.id
    subscription.sale_value = payment.amount_value
    payment.applied_at = now


def activate(
    subscription: Subscription,
    *,
    plan: Plan | None = None,
    payment: Payment | None = None,
    now: datetime | None = None,
) -> Subscription:
    """Flip a pending subscription to active for one billing period from now."""
    now = now or utcnow()
    if plan is not None:
        apply_plan_snapshot(subscription, plan)
    subscription.status = SUB_ACTIVE
    subscription.start_date = now
    subscription.end_date = subscription_period(subscription, plan).add_to(now)
    _stamp_payment(subscription, payment, now)
    logger.info(
        "Subscription %s activated on %s until %s", subscription.id, subscription.plan_name, subscription.end_date
    )
    return subscription


def build_subscription(
    user_id: uuid.UUID,
    plan: Plan,
    *,
    payment: Payment | None = None,
    now: datetime | None = None,
) -> Subscription:
    """A new active subscription on ``plan`` (no pending row existed)."""
    subscription = Subscription(user_id=user_id, status=SUB_PENDING)
    return activate(subscription, plan=plan, payment=payment, now=now)


def apply_upgrade(
    subscription: Subscription,
    plan: Plan,
    *,
    payment: Payment | None = None,
    now: datetime | None = None,
) -> Subscription:
    """Switch to ``plan``; the new period starts now and remaining time is dropped."""
    now = now or utcnow()
    previous_plan = subscription.plan_name
    apply_plan_snapshot(subscription, plan)
    subscription.status = SUB_ACTIVE
    subscription.end_date = plan.billing_period.add_to(now)
    _stamp_payment(subscription, payment, now)
    logger.info(
        "Subscription %s upgraded %s -> %s until %s",
        subscription.id,
        previous_plan,
        plan.name,
        subscription.end_date,
    )
    return subscription


def apply_renewal(
    subscription: Subscription,
    plan: Plan,
    *,
    payment: Payment | None = None,
    now: datetime | None = None,
) -> Subscription:
    """Extend by one period from the later of the current end date and now."""
    now = now or utcnow()
    base = subscription.end_date if subscription.end_date and subscription.end_date > now else now
    apply_plan_snapshot(subscription, plan)
    subscription.status = SUB_ACTIVE
    subscription.end_date = plan.billing_period.add_to(base)
    _stamp_payment(subscription, payment, now)
    logger.info("Subscription %s renewed until %s", subscription.id, subscription.end_date)
    return subscription


async def deactivate_other_active(db: AsyncSession, user_id: uuid.UUID, keep: Subscription) -> int:
    """Set every other active subscription of the user to inactive."""
    result = await db.execute(
        select(Subscription).where(
            Subscription.user_id == user_id,
            Subscription.status == SUB_ACTIVE,
            Subscription.id != keep.id,
        )
    )
    others = list(result.scalars().all())
    for other in others:
        other.status = SUB_INACTIVE
        logger.warning("Subscription %s deactivated, superseded by %s", other.id, keep.id)
    return len(others)
