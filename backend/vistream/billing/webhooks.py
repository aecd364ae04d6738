"""Provider webhook handlers — fold notifications into the ledger, then reconcile."""

import logging
import uuid
from dataclasses import dataclass
from typing import Any

import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from vistream.billing.errors import BillingError, InvalidWebhookPayload
from vistream.billing.gateway import ProviderPayment, get_gateway_adapter
from vistream.billing.stripe_client import StripeGateway, intent_paid_at
from vistream.models.payment import (
    STATUS_COMPLETED,
    STATUS_EXPIRED,
    STATUS_FAILED,
    STATUS_REFUNDED,
    Payment,
)
from vistream.models.payment_gateway import PROVIDER_MOLLIE, PROVIDER_STRIPE
from vistream.services.payment_ledger import find_by_provider_reference, record_webhook_update
from vistream.services.reconciliation import ReconciliationResult, complete_payment

logger = logging.getLogger(__name__)


@dataclass
class WebhookOutcome:
    """What a webhook delivery did, for logging and the HTTP reply."""

    payment: Payment | None = None
    reconciliation: ReconciliationResult | None = None
    ignored: bool = False
    reason: str | None = None


async def reconcile_if_completed(db: AsyncSession, payment: Payment | None) -> ReconciliationResult | None:
    """Run the engine without waiting. Business errors are logged, not raised.

    Providers retry on non-2xx, and a missing plan will not appear on retry.
    """
    if payment is None or payment.status != STATUS_COMPLETED or payment.is_processed:
        return None
    try:
        return await complete_payment(db, str(payment.id), wait_attempts=0)
    except BillingError as e:
        logger.warning("Reconciliation of payment %s skipped: %s (%s)", payment.id, e.code, e)
        return None


# ---------------------------------------------------------------------------
# Mollie
# ---------------------------------------------------------------------------


def _user_id_from_metadata(metadata: dict[str, Any]) -> uuid.UUID | None:
    try:
        return uuid.UUID(str(metadata.get("userId")))
    except (TypeError, ValueError):
        return None


def _mollie_defaults(detail: ProviderPayment) -> dict[str, Any]:
    return {
        "user_id": _user_id_from_metadata(detail.metadata),
        "amount": detail.amount,
        "currency": detail.currency,
        "description": detail.description,
        "metadata": detail.metadata,
    }


async def handle_mollie_notification(
    db: AsyncSession,
    payment_id: str,
    raw_body: bytes,
    signature: str | None,
) -> WebhookOutcome:
    """Process one Mollie webhook delivery.

    Mollie only sends the payment id, so the payment is re-fetched before the
    ledger is touched.
    """
    if payment_id.startswith("event_"):
        logger.info("Mollie test event %s acknowledged", payment_id)
        return WebhookOutcome(ignored=True, reason="test_event")
    if not payment_id.startswith("tr_"):
        logger.warning("Mollie webhook with invalid payment id %r", payment_id)
        raise InvalidWebhookPayload(detail=f"invalid Mollie payment id {payment_id!r}")

    adapter = await get_gateway_adapter(db, PROVIDER_MOLLIE)
    adapter.verify_webhook_signature(raw_body, signature)

    detail = await adapter.fetch_status(payment_id)
    logger.info("Mollie payment %s is %s (%s)", payment_id, detail.raw_status, detail.normalized_status)
    payment = await record_webhook_update(
        db,
        provider=PROVIDER_MOLLIE,
        external_id=payment_id,
        new_status=detail.normalized_status,
        paid_at=detail.paid_at,
        method=detail.method,
        raw_status=detail.raw_status,
        expires_at=detail.expires_at,
        defaults=_mollie_defaults(detail),
    )
    reconciliation = await reconcile_if_completed(db, payment)
    return WebhookOutcome(payment=payment, reconciliation=reconciliation)


# ---------------------------------------------------------------------------
# Stripe
# ---------------------------------------------------------------------------


async def handle_checkout_session_completed(db: AsyncSession, event: stripe.Event) -> WebhookOutcome:
    """checkout.session.completed — the session is paid (or awaiting async payment)."""
    session = event.data.object
    detail = StripeGateway.session_to_provider_payment(session)
    payment = await record_webhook_update(
        db,
        provider=PROVIDER_STRIPE,
        external_id=session.id,
        new_status=detail.normalized_status,
        raw_status=detail.raw_status,
        stripe_payment_intent_id=detail.stripe_payment_intent_id,
        stripe_subscription_id=getattr(session, "subscription", None),
        provider_data={"customer_id": getattr(session, "customer", None)} if getattr(session, "customer", None) else None,
    )
    return WebhookOutcome(payment=payment, reconciliation=await reconcile_if_completed(db, payment))


async def handle_checkout_session_expired(db: AsyncSession, event: stripe.Event) -> WebhookOutcome:
    """checkout.session.expired — the customer never paid."""
    session = event.data.object
    payment = await record_webhook_update(
        db,
        provider=PROVIDER_STRIPE,
        external_id=session.id,
        new_status=STATUS_EXPIRED,
        raw_status="expired",
    )
    return WebhookOutcome(payment=payment)


async def handle_payment_intent_succeeded(db: AsyncSession, event: stripe.Event) -> WebhookOutcome:
    """payment_intent.succeeded — money captured."""
    intent = event.data.object
    detail = StripeGateway.intent_to_provider_payment(intent)
    # Intents opened by a Checkout Session are matched once that session completes
    payment = await record_webhook_update(
        db,
        provider=PROVIDER_STRIPE,
        external_id=intent.id,
        new_status=STATUS_COMPLETED,
        paid_at=intent_paid_at(intent),
        method=detail.method,
        raw_status=intent.status,
        stripe_payment_intent_id=intent.id,
    )
    return WebhookOutcome(payment=payment, reconciliation=await reconcile_if_completed(db, payment))


async def handle_payment_intent_failed(db: AsyncSession, event: stripe.Event) -> WebhookOutcome:
    """payment_intent.payment_failed — record the failure reason."""
    intent = event.data.object
    error = getattr(intent, "last_payment_error", None)
    reason = getattr(error, "message", None) if error is not None else None
    payment = await record_webhook_update(
        db,
        provider=PROVIDER_STRIPE,
        external_id=intent.id,
        new_status=STATUS_FAILED,
        raw_status=intent.status,
        stripe_payment_intent_id=intent.id,
        provider_data={"failure_reason": reason} if reason else None,
    )
    return WebhookOutcome(payment=payment)


async def _find_invoice_payment(db: AsyncSession, invoice: Any) -> Payment | None:
    """Payment behind an invoice: by invoice id, then its payment intent."""
    payment = await find_by_provider_reference(db, PROVIDER_STRIPE, invoice.id)
    intent_id = getattr(invoice, "payment_intent", None)
    if payment is None and isinstance(intent_id, str):
        payment = await find_by_provider_reference(db, PROVIDER_STRIPE, intent_id)
    return payment


async def _handle_invoice(db: AsyncSession, event: stripe.Event, new_status: str) -> WebhookOutcome:
    invoice = event.data.object
    payment = await _find_invoice_payment(db, invoice)
    if payment is None:
        logger.warning("No payment found for Stripe invoice %s (%s)", invoice.id, event.type)
        return WebhookOutcome(ignored=True, reason="unknown_invoice")

    payment = await record_webhook_update(
        db,
        provider=PROVIDER_STRIPE,
        external_id=payment.external_payment_id or invoice.id,
        new_status=new_status,
        raw_status=getattr(invoice, "status", None),
        stripe_invoice_id=invoice.id,
        stripe_subscription_id=getattr(invoice, "subscription", None),
    )
    return WebhookOutcome(payment=payment, reconciliation=await reconcile_if_completed(db, payment))


async def handle_invoice_payment_succeeded(db: AsyncSession, event: stripe.Event) -> WebhookOutcome:
    """invoice.payment_succeeded — complete the linked payment."""
    return await _handle_invoice(db, event, STATUS_COMPLETED)


async def handle_invoice_payment_failed(db: AsyncSession, event: stripe.Event) -> WebhookOutcome:
    """invoice.payment_failed — fail the linked payment."""
    return await _handle_invoice(db, event, STATUS_FAILED)


async def handle_charge_refunded(db: AsyncSession, event: stripe.Event) -> WebhookOutcome:
    """charge.refunded — a completed payment was refunded."""
    charge = event.data.object
    intent_id = getattr(charge, "payment_intent", None)
    if not isinstance(intent_id, str):
        logger.info("Refunded charge %s has no payment intent, skipping", charge.id)
        return WebhookOutcome(ignored=True, reason="no_payment_intent")
    payment = await record_webhook_update(
        db,
        provider=PROVIDER_STRIPE,
        external_id=intent_id,
        new_status=STATUS_REFUNDED,
        raw_status="refunded",
        provider_data={"refunded_charge": charge.id},
    )
    return WebhookOutcome(payment=payment)


STRIPE_EVENT_HANDLERS = {
    "checkout.session.completed": handle_checkout_session_completed,
    "checkout.session.expired": handle_checkout_session_expired,
    "payment_intent.succeeded": handle_payment_intent_succeeded,
    "payment_intent.payment_failed": handle_payment_intent_failed,
    "invoice.payment_succeeded": handle_invoice_payment_succeeded,
    "invoice.payment_failed": handle_invoice_payment_failed,
    "charge.refunded": handle_charge_refunded,
}

# Acknowledged without action; subscriptions here are one-off payments.
IGNORED_STRIPE_EVENTS = frozenset(
    {
        "customer.subscription.created",
        "customer.subscription.updated",
        "customer.subscription.deleted",
    }
)


async def dispatch_stripe_event(db: AsyncSession, event: stripe.Event) -> WebhookOutcome:
    """Route a verified Stripe event to its handler."""
    handler = STRIPE_EVENT_HANDLERS.get(event.type)
    if handler is None:
        if event.type in IGNORED_STRIPE_EVENTS:
            logger.info("Stripe event %s (%s) acknowledged without action", event.type, event.id)
        else:
            logger.debug("Unhandled Stripe event type: %s", event.type)
        return WebhookOutcome(ignored=True, reason="unhandled_event")

    logger.info("Processing Stripe event %s (id=%s)", event.type, event.id)
    return await handler(db, event)

