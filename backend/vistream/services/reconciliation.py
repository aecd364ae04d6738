"""Reconciliation engine — turns a completed payment into a subscription change.

Both the webhook receivers and the client completion endpoint call
:func:`complete_payment`. The ``is_processed`` flag on the payment, flipped by
:func:`~vistream.services.payment_ledger.mark_processed`, decides which of
them performs the mutation.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from vistream.billing.errors import (
    PaymentNotCompleted,
    PaymentNotFound,
    PaymentNotReady,
    PlanNotFound,
    SubscriptionNotFound,
    UnsupportedOperationType,
    UserNotFound,
)
from vistream.billing.plans import get_plan, require_plan
from vistream.config import settings
from vistream.database import utcnow
from vistream.models.payment import STATUS_COMPLETED, STATUS_PENDING, Payment
from vistream.models.plan import Plan
from vistream.models.subscription import Subscription
from vistream.services import subscription_service
from vistream.services.notifications import notify_subscription_changed
from vistream.services.payment_ledger import find_payment, mark_processed

logger = logging.getLogger(__name__)

OP_SUBSCRIPTION = "subscription"
OP_UPGRADE = "subscription_upgrade"
OP_RENEWAL = "subscription_renewal"

_OPERATION_ALIASES = {
    "subscription": OP_SUBSCRIPTION,
    "subscription_upgrade": OP_UPGRADE,
    "upgrade": OP_UPGRADE,
    "subscription_renewal": OP_RENEWAL,
    "renewal": OP_RENEWAL,
}

SUCCESS_MESSAGES = {
    OP_SUBSCRIPTION: "Abonnement activé avec succès",
    OP_UPGRADE: "Abonnement mis à niveau avec succès",
    OP_RENEWAL: "Abonnement renouvelé avec succès",
}
MSG_ALREADY_ACTIVE = "Abonnement déjà actif"
MSG_ALREADY_PROCESSED = "Paiement déjà traité"


@dataclass
class ReconciliationResult:
    subscription: Subscription | None
    operation: str
    already_processed: bool
    message: str
    payment: Payment | None = None


def resolve_operation(metadata_type: str | None, session_type: str | None = None) -> str:
    """Operation named by the payment metadata, else by the caller, else a new subscription."""
    raw = metadata_type or session_type or OP_SUBSCRIPTION
    operation = _OPERATION_ALIASES.get(raw)
    if operation is None:
        logger.warning("Unsupported operation type %r", raw)
        raise UnsupportedOperationType(detail=f"unsupported operation type {raw!r}")
    return operation


async def _wait_for_completion(db: AsyncSession, payment: Payment, attempts: int, interval: float) -> Payment:
    """Re-read a pending payment until it leaves ``pending`` or attempts run out."""
    for attempt in range(1, attempts + 1):
        if payment.status != STATUS_PENDING:
            break
        await asyncio.sleep(interval)
        await db.refresh(payment)
        logger.debug("Payment %s still %s after wait %d/%d", payment.id, payment.status, attempt, attempts)
    return payment


def _payment_user_id(payment: Payment) -> uuid.UUID:
    if payment.user_id is not None:
        return payment.user_id
    raw = (payment.payment_metadata or {}).get("userId")
    try:
        return uuid.UUID(str(raw))
    except (TypeError, ValueError):
        logger.error("Payment %s has no usable user id", payment.id)
        raise UserNotFound(detail=f"payment {payment.id} has no user") from None


async def complete_payment(
    db: AsyncSession,
    identifier: str | uuid.UUID,
    session_type: str | None = None,
    *,
    wait_attempts: int | None = None,
    wait_interval: float | None = None,
) -> ReconciliationResult:
    """Apply the subscription change a completed payment paid for.

    Raises ``PaymentNotReady`` while the payment is still pending after the
    bounded wait; every other ``BillingError`` is terminal. Nothing is written
    before all lookups have succeeded.
    """
    attempts = settings.payment_wait_attempts if wait_attempts is None else wait_attempts
    interval = settings.payment_wait_interval_seconds if wait_interval is None else wait_interval

    payment = await find_payment(db, identifier)
    if payment is None:
        logger.warning("Completion requested for unknown payment %s", identifier)
        raise PaymentNotFound(detail=f"payment {identifier} not found")

    if payment.status == STATUS_PENDING and attempts > 0:
        payment = await _wait_for_completion(db, payment, attempts, interval)

    if payment.status != STATUS_COMPLETED:
        if payment.status == STATUS_PENDING:
            logger.info("Payment %s not completed yet", payment.id)
            raise PaymentNotReady(detail=f"payment {payment.id} still pending")
        logger.info("Payment %s ended as %s", payment.id, payment.status)
        raise PaymentNotCompleted(detail=f"payment {payment.id} is {payment.status}")

    metadata: dict[str, Any] = payment.payment_metadata or {}
    operation = resolve_operation(metadata.get("type"), session_type)
    user_id = _payment_user_id(payment)

    if operation == OP_SUBSCRIPTION:
        return await _complete_new_subscription(db, payment, user_id, metadata)
    return await _complete_change(db, payment, user_id, metadata, operation)


async def _complete_new_subscription(
    db: AsyncSession, payment: Payment, user_id: uuid.UUID, metadata: dict[str, Any]
) -> ReconciliationResult:
    active = await subscription_service.get_active_subscription(db, user_id)
    if active is not None:
        await mark_processed(db, payment.id)
        logger.info("User %s already has active subscription %s", user_id, active.id)
        return ReconciliationResult(active, OP_SUBSCRIPTION, True, MSG_ALREADY_ACTIVE, payment)

    pending = await subscription_service.get_latest_pending_subscription(db, user_id)
    plan: Plan | None = None
    if metadata.get("planId"):
        plan = await require_plan(db, metadata["planId"])
    elif pending is not None and pending.plan_id is not None:
        plan = await get_plan(db, pending.plan_id)
    if pending is None and plan is None:
        logger.warning("Payment %s has no pending subscription and no planId", payment.id)
        raise PlanNotFound(detail=f"payment {payment.id} carries no plan")

    if not await mark_processed(db, payment.id):
        active = await subscription_service.get_active_subscription(db, user_id)
        logger.info("Payment %s already processed by a concurrent caller", payment.id)
        message = MSG_ALREADY_ACTIVE if active is not None else MSG_ALREADY_PROCESSED
        return ReconciliationResult(active, OP_SUBSCRIPTION, True, message, payment)

    now = utcnow()
    if pending is not None:
        subscription = subscription_service.activate(pending, plan=plan, payment=payment, now=now)
    else:
        subscription = subscription_service.build_subscription(user_id, plan, payment=payment, now=now)
        db.add(subscription)
    await db.flush()

    notify_subscription_changed(subscription, OP_SUBSCRIPTION, payment)
    return ReconciliationResult(subscription, OP_SUBSCRIPTION, False, SUCCESS_MESSAGES[OP_SUBSCRIPTION], payment)


async def _complete_change(
    db: AsyncSession,
    payment: Payment,
    user_id: uuid.UUID,
    metadata: dict[str, Any],
    operation: str,
) -> ReconciliationResult:
    subscription: Subscription | None = None
    if metadata.get("currentSubscriptionId"):
        subscription = await subscription_service.get_subscription(db, metadata["currentSubscriptionId"])
    if subscription is None:
        subscription = await subscription_service.get_active_subscription(db, user_id)
    if subscription is None or subscription.user_id != user_id:
        logger.warning("No subscription to %s for payment %s (user %s)", operation, payment.id, user_id)
        raise SubscriptionNotFound(detail=f"no subscription for payment {payment.id}")

    plan = await require_plan(db, metadata.get("newPlanId") or metadata.get("planId"))

    if not await mark_processed(db, payment.id):
        # applied_at survives later payments on the same subscription, last_payment_id does not
        if payment.applied_at is not None:
            logger.info(
                "Payment %s already applied on %s (subscription %s)", payment.id, payment.applied_at, subscription.id
            )
            return ReconciliationResult(subscription, operation, True, SUCCESS_MESSAGES[operation], payment)
        logger.warning(
            "Payment %s flagged processed but never applied to subscription %s; reapplying %s",
            payment.id,
            subscription.id,
            operation,
        )

    now = utcnow()
    if operation == OP_UPGRADE:
        subscription_service.apply_upgrade(subscription, plan, payment=payment, now=now)
    else:
        subscription_service.apply_renewal(subscription, plan, payment=payment, now=now)
    await db.flush()
    await subscription_service.deactivate_other_active(db, user_id, subscription)
    await db.flush()

    notify_subscription_changed(subscription, operation, payment)
    return ReconciliationResult(subscription, operation, False, SUCCESS_MESSAGES[operation], payment)
