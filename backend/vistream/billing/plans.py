"""Plan catalog — read access to purchasable plans and subscription snapshots."""

import logging
import re
import uuid
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vistream.billing.errors import PlanNotFound
from vistream.models.plan import Plan
from vistream.models.subscription import Subscription

logger = logging.getLogger(__name__)


def _parse_plan_id(plan_id: object) -> uuid.UUID | None:
    if isinstance(plan_id, uuid.UUID):
        return plan_id
    if not plan_id:
        return None
    try:
        return uuid.UUID(str(plan_id))
    except ValueError:
        return None


async def list_active_plans(db: AsyncSession) -> list[Plan]:
    """Active plans in display order."""
    result = await db.execute(select(Plan).where(Plan.is_active.is_(True)).order_by(Plan.order, Plan.name))
    return list(result.scalars().all())


async def get_plan(db: AsyncSession, plan_id: object) -> Plan | None:
    """Look up a plan by id. Malformed ids return None instead of raising."""
    parsed = _parse_plan_id(plan_id)
    if parsed is None:
        return None
    return await db.get(Plan, parsed)


async def require_plan(db: AsyncSession, plan_id: object) -> Plan:
    """Like :func:`get_plan` but raise ``PlanNotFound`` when missing."""
    plan = await get_plan(db, plan_id)
    if plan is None:
        logger.warning("Plan %r not found", plan_id)
        raise PlanNotFound(detail=f"plan {plan_id!r} not found")
    return plan


def apply_plan_snapshot(subscription: Subscription, plan: Plan) -> None:
    """Copy the plan's current name/price/period onto the subscription.

    Later edits to the plan do not affect subscriptions already sold.
    """
    subscription.plan_id = plan.id
    subscription.plan_name = plan.name
    subscription.plan_price = plan.price
    subscription.plan_period = plan.period


def parse_price_cents(display_price: str | None) -> int:
    """Minor units from a display price such as ``"29€"`` or ``"120,99 €"``.

    Legacy snapshots only carry the display string. Unparseable prices are 0.
    """
    digits = re.sub(r"[^\d.,]", "", display_price or "").replace(",", ".")
    try:
        value = Decimal(digits)
    except InvalidOperation:
        return 0
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def plan_price_cents(plan: Plan) -> int:
    """Checkout price of ``plan``, falling back to its display price."""
    return plan.price_cents or parse_price_cents(plan.price)
