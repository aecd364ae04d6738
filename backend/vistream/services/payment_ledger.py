"""Payment ledger — persistence of payment attempts and their status history."""

import logging
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from vistream.billing.gateway import PaymentGatewayAdapter
from vistream.config import settings
from vistream.database import utcnow
from vistream.models.payment import (
    ALLOWED_TRANSITIONS,
    PAYMENT_STATUSES,
    STATUS_COMPLETED,
    STATUS_PENDING,
    Payment,
)
from vistream.models.user import User

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Status transitions
# ---------------------------------------------------------------------------


def transition_status(payment: Payment, new_status: str, source: str, at: datetime | None = None) -> bool:
    """Move ``payment`` to ``new_status`` if that is a legal forward step.

    Returns True when the status changed. Same-status updates are no-ops and
    regressions (e.g. completed -> pending) are logged and ignored.
    """
    if new_status not in PAYMENT_STATUSES:
        raise ValueError(f"Unknown payment status: {new_status!r}")

    current = payment.status
    if new_status == current:
        return False
    if new_status not in ALLOWED_TRANSITIONS.get(current, frozenset()):
        logger.warning(
            "Ignoring illegal payment transition %s -> %s for payment %s (source=%s)",
            current,
            new_status,
            payment.id,
            source,
        )
        return False

    at = at or utcnow()
    payment.status = new_status
    # Reassign so the JSON column is flagged dirty
    payment.status_history = [
        *(payment.status_history or []),
        {"from": current, "to": new_status, "at": at.isoformat(), "source": source},
    ]
    if new_status == STATUS_COMPLETED and payment.paid_at is None:
        payment.paid_at = at
    logger.info("Payment %s: %s -> %s (source=%s)", payment.id, current, new_status, source)
    return True


def apply_provider_update(
    payment: Payment,
    new_status: str,
    *,
    source: str,
    paid_at: datetime | None = None,
    method: str | None = None,
    raw_status: str | None = None,
    expires_at: datetime | None = None,
    provider_data: dict[str, Any] | None = None,
    stripe_payment_intent_id: str | None = None,
    stripe_invoice_id: str | None = None,
    stripe_subscription_id: str | None = None,
) -> bool:
    """Fold a provider report into ``payment``. Returns whether the status changed."""
    changed = transition_status(payment, new_status, source, at=paid_at if new_status == STATUS_COMPLETED else None)
    if method:
        payment.method = method
    if expires_at:
        payment.expires_at = expires_at
    if stripe_payment_intent_id and not payment.stripe_payment_intent_id:
        payment.stripe_payment_intent_id = stripe_payment_intent_id
    if stripe_invoice_id:
        payment.stripe_invoice_id = stripe_invoice_id
    if stripe_subscription_id:
        payment.stripe_subscription_id = stripe_subscription_id
    extra = dict(provider_data or {})
    if raw_status:
        extra["raw_status"] = raw_status
    if extra:
        payment.provider_data = {**(payment.provider_data or {}), **extra}
    payment.last_sync_at = utcnow()
    return changed


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


async def find_payment(db: AsyncSession, identifier: str | uuid.UUID) -> Payment | None:
    """Resolve a payment by provider id, Stripe intent/session id, then internal id."""
    text = str(identifier).strip()
    if not text:
        return None

    for column in (Payment.external_payment_id, Payment.stripe_payment_intent_id, Payment.stripe_session_id):
        result = await db.execute(select(Payment).where(column == text).order_by(Payment.created_at.desc()).limit(1))
        payment = result.scalar_one_or_none()
        if payment is not None:
            return payment

    try:
        internal_id = uuid.UUID(text)
    except ValueError:
        return None
    return await db.get(Payment, internal_id)


async def find_by_provider_reference(db: AsyncSession, provider: str, reference: str) -> Payment | None:
    """Payment of ``provider`` whose id or any Stripe sub-identifier equals ``reference``."""
    result = await db.execute(
        select(Payment)
        .where(
            Payment.provider == provider,
            or_(
                Payment.external_payment_id == reference,
                Payment.stripe_session_id == reference,
                Payment.stripe_payment_intent_id == reference,
                Payment.stripe_invoice_id == reference,
            ),
        )
        .order_by(Payment.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_latest_payment(db: AsyncSession, user_id: uuid.UUID) -> Payment | None:
    """The user's most recently created payment."""
    result = await db.execute(
        select(Payment).where(Payment.user_id == user_id).order_by(Payment.created_at.desc()).limit(1)
    )
    return result.scalar_one_or_none()


async def find_recent_duplicate(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    provider: str,
    amount: Decimal,
    currency: str,
    description: str,
    window_seconds: int | None = None,
) -> Payment | None:
    """A reusable pending payment for the same purchase created within the window."""
    window = window_seconds if window_seconds is not None else settings.duplicate_payment_window_seconds
    since = utcnow() - timedelta(seconds=window)
    result = await db.execute(
        select(Payment)
        .where(
            Payment.user_id == user_id,
            Payment.provider == provider,
            Payment.amount_value == amount,
            Payment.currency == currency.upper(),
            Payment.description == description,
            Payment.status == STATUS_PENDING,
            Payment.created_at >= since,
        )
        .order_by(Payment.created_at.desc())
    )
    for payment in result.scalars():
        if payment.checkout_url or payment.client_secret:
            return payment
    return None


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


async def create_or_reuse(
    db: AsyncSession,
    *,
    user: User,
    adapter: PaymentGatewayAdapter,
    amount: Decimal,
    currency: str,
    description: str,
    metadata: dict[str, Any] | None = None,
    customer_email: str | None = None,
    customer_name: str | None = None,
    redirect_url: str | None = None,
) -> tuple[Payment, bool]:
    """Open a checkout with ``adapter`` unless an identical one is still usable.

    Returns ``(payment, reused)``.
    """
    currency = currency.upper()
    existing = await find_recent_duplicate(
        db,
        user_id=user.id,
        provider=adapter.provider,
        amount=amount,
        currency=currency,
        description=description,
    )
    if existing is not None:
        logger.info("Reusing pending payment %s for user %s", existing.id, user.id)
        return existing, True

    payment_metadata = {**(metadata or {}), "userId": str(user.id)}
    result = await adapter.create_checkout(
        amount=amount,
        currency=currency,
        description=description,
        customer_email=customer_email or user.email,
        customer_name=customer_name or user.full_name,
        metadata=payment_metadata,
        redirect_url=redirect_url,
    )

    now = utcnow()
    payment = Payment(
        provider=adapter.provider,
        external_payment_id=result.external_id,
        user_id=user.id,
        amount_value=result.amount,
        currency=result.currency,
        description=description,
        status=result.normalized_status,
        method=result.method,
        checkout_url=result.checkout_url,
        stripe_session_id=result.stripe_session_id,
        stripe_payment_intent_id=result.stripe_payment_intent_id,
        provider_data={**result.provider_data, **({"client_secret": result.client_secret} if result.client_secret else {})},
        payment_metadata=payment_metadata,
        status_history=[{"from": None, "to": result.normalized_status, "at": now.isoformat(), "source": "checkout"}],
        expires_at=result.expires_at,
        last_sync_at=now,
    )
    db.add(payment)
    await db.flush()
    logger.info(
        "Created %s payment %s (%s) for user %s: %s %s",
        payment.provider,
        payment.id,
        payment.external_payment_id,
        user.id,
        payment.amount_value,
        payment.currency,
    )

    await purge_stale_pending(db, user.id, adapter.provider)
    return payment, False


async def record_webhook_update(
    db: AsyncSession,
    *,
    provider: str,
    external_id: str,
    new_status: str,
    source: str = "webhook",
    paid_at: datetime | None = None,
    method: str | None = None,
    raw_status: str | None = None,
    expires_at: datetime | None = None,
    provider_data: dict[str, Any] | None = None,
    stripe_payment_intent_id: str | None = None,
    stripe_invoice_id: str | None = None,
    stripe_subscription_id: str | None = None,
    defaults: dict[str, Any] | None = None,
) -> Payment | None:
    """Apply a provider notification to the ledger.

    The payment is found by ``(provider, external_id)`` or a Stripe
    sub-identifier. When it is unknown and ``defaults`` are given (amount,
    currency, description, user_id, metadata) a row is created from them;
    otherwise None is returned. Replaying the same notification only bumps
    ``webhook_attempts``.
    """
    payment = await find_by_provider_reference(db, provider, external_id)
    if payment is None:
        if defaults is None:
            logger.warning("%s notification for unknown payment %s ignored", provider, external_id)
            return None
        now = utcnow()
        payment = Payment(
            provider=provider,
            external_payment_id=external_id,
            user_id=defaults.get("user_id"),
            amount_value=defaults.get("amount") or Decimal("0"),
            currency=(defaults.get("currency") or "EUR").upper(),
            description=defaults.get("description") or "",
            status=STATUS_PENDING,
            payment_metadata=defaults.get("metadata") or {},
            provider_data={},
            status_history=[{"from": None, "to": STATUS_PENDING, "at": now.isoformat(), "source": source}],
            webhook_attempts=0,
        )
        db.add(payment)
        logger.info("Created %s payment %s from notification", provider, external_id)

    apply_provider_update(
        payment,
        new_status,
        source=source,
        paid_at=paid_at,
        method=method,
        raw_status=raw_status,
        expires_at=expires_at,
        provider_data=provider_data,
        stripe_payment_intent_id=stripe_payment_intent_id,
        stripe_invoice_id=stripe_invoice_id,
        stripe_subscription_id=stripe_subscription_id,
    )
    payment.webhook_attempts = (payment.webhook_attempts or 0) + 1
    payment.webhook_processed_at = utcnow()
    await db.flush()
    return payment


async def mark_processed(db: AsyncSession, payment_id: uuid.UUID) -> bool:
    """Flip ``is_processed`` false -> true. True only for the caller that flipped it.

    A single conditional UPDATE, so concurrent callers cannot both win.
    """
    now = utcnow()
    result = await db.execute(
        update(Payment)
        .where(Payment.id == payment_id, Payment.is_processed.is_(False))
        .values(is_processed=True, processed_at=now)
        .execution_options(synchronize_session=False)
    )
    flipped = result.rowcount == 1

    payment = await db.get(Payment, payment_id)
    if payment is not None:
        await db.refresh(payment, attribute_names=["is_processed", "processed_at", "applied_at"])
    logger.debug("mark_processed(%s) -> %s", payment_id, flipped)
    return flipped


async def purge_stale_pending(db: AsyncSession, user_id: uuid.UUID, provider: str) -> int:
    """Delete the user's pending payments older than the stale threshold.

    Housekeeping only: runs in a SAVEPOINT so a failed DELETE rolls back on
    its own and the caller's transaction still commits. Errors are logged.
    """
    cutoff = utcnow() - timedelta(seconds=settings.stale_pending_payment_seconds)
    try:
        async with db.begin_nested():
            result = await db.execute(
                delete(Payment)
                .where(
                    Payment.user_id == user_id,
                    Payment.provider == provider,
                    Payment.status == STATUS_PENDING,
                    Payment.created_at < cutoff,
                )
                .execution_options(synchronize_session=False)
            )
    except SQLAlchemyError:
        logger.exception("Failed to purge stale pending payments for user %s", user_id)
        return 0
    if result.rowcount:
        logger.info("Purged %d stale pending %s payments for user %s", result.rowcount, provider, user_id)
    return result.rowcount or 0
