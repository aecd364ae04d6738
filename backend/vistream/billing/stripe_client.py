"""Async Stripe adapter for Vistream one-off subscription payments."""

import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import stripe
from stripe import StripeClient

from vistream.billing.errors import GatewayError, StripeSignatureError
from vistream.billing.gateway import CheckoutResult, PaymentGatewayAdapter, ProviderPayment
from vistream.models.payment import (
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_EXPIRED,
    STATUS_FAILED,
    STATUS_PENDING,
)
from vistream.models.payment_gateway import PROVIDER_STRIPE, PaymentGateway

logger = logging.getLogger(__name__)

ZERO_DECIMAL_CURRENCIES: frozenset[str] = frozenset(
    {
        "BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA",
        "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
    }
)  # fmt: skip


def to_minor_units(amount: Decimal | float | str, currency: str) -> int:
    """Amount in the currency's smallest unit (cents, or whole yen)."""
    value = Decimal(str(amount))
    if currency.upper() not in ZERO_DECIMAL_CURRENCIES:
        value = value * 100
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int | None, currency: str) -> Decimal | None:
    if amount is None:
        return None
    if currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return Decimal(amount)
    return (Decimal(amount) / 100).quantize(Decimal("0.01"))


def ts_to_naive(ts: int | None) -> datetime | None:
    """Convert a Stripe Unix timestamp to naive UTC datetime."""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None)


def intent_paid_at(intent: Any) -> datetime | None:
    """Capture time of a PaymentIntent's latest charge, if it was expanded.

    ``intent.created`` is when the intent opened, so it is never used here.
    """
    charge = getattr(intent, "latest_charge", None)
    if charge is None or isinstance(charge, str):
        return None
    return ts_to_naive(getattr(charge, "created", None))


def stripe_metadata(metadata: dict[str, Any] | None) -> dict[str, str]:
    """Stripe metadata values must be strings; drop empty ones."""
    return {str(k): str(v) for k, v in (metadata or {}).items() if v is not None and v != ""}


def as_dict(obj: Any) -> dict[str, Any]:
    """Plain dict from a StripeObject (or a test double)."""
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return dict(obj)
    return dict(vars(obj))


def normalize_payment_intent_status(raw_status: str | None, has_failed_attempt: bool = False) -> str:
    """Map a PaymentIntent status to ours.

    ``requires_payment_method`` is the initial state too, so it only means
    failure once an attempt has been declined.
    """
    if raw_status == "succeeded":
        return STATUS_COMPLETED
    if raw_status == "canceled":
        return STATUS_CANCELLED
    if raw_status == "requires_payment_method" and has_failed_attempt:
        return STATUS_FAILED
    return STATUS_PENDING


def normalize_checkout_session_status(payment_status: str | None, session_status: str | None) -> str:
    if payment_status == "paid":
        return STATUS_COMPLETED
    if session_status == "expired":
        return STATUS_EXPIRED
    return STATUS_PENDING


class StripeGateway(PaymentGatewayAdapter):
    """Stripe Checkout Sessions and PaymentIntents."""

    provider = PROVIDER_STRIPE

    def __init__(self, config: PaymentGateway, client: StripeClient | None = None) -> None:
        super().__init__(config)
        self._stripe = client

    @property
    def client(self) -> StripeClient:
        if self._stripe is None:
            self._stripe = StripeClient(self.config.api_key, http_client=stripe.HTTPXClient())
        return self._stripe

    async def create_checkout(
        self,
        *,
        amount: Decimal,
        currency: str,
        description: str,
        customer_email: str | None = None,
        customer_name: str | None = None,
        metadata: dict[str, Any] | None = None,
        redirect_url: str | None = None,
    ) -> CheckoutResult:
        currency = currency.upper()
        unit_amount = to_minor_units(amount, currency)
        meta = stripe_metadata({**(metadata or {}), "customerEmail": customer_email, "customerName": customer_name})

        try:
            if redirect_url:
                return await self._create_session(unit_amount, currency, description, customer_email, meta, redirect_url)
            return await self._create_intent(unit_amount, currency, description, customer_email, meta)
        except stripe.StripeError as e:
            logger.error("Stripe rejected checkout creation: %s", e)
            raise GatewayError(detail=f"Stripe error: {e}") from e

    async def _create_session(
        self,
        unit_amount: int,
        currency: str,
        description: str,
        customer_email: str | None,
        meta: dict[str, str],
        redirect_url: str,
    ) -> CheckoutResult:
        separator = "&" if "?" in redirect_url else "?"
        params: dict[str, Any] = {
            "mode": "payment",
            "line_items": [
                {
                    "price_data": {
                        "currency": currency.lower(),
                        "unit_amount": unit_amount,
                        "product_data": {"name": description},
                    },
                    "quantity": 1,
                }
            ],
            "success_url": f"{redirect_url}{separator}session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{redirect_url}{separator}canceled=true",
            "metadata": meta,
            "payment_intent_data": {"metadata": meta, "description": description},
        }
        if customer_email:
            params["customer_email"] = customer_email

        session = await self.client.v1.checkout.sessions.create_async(params=params)
        logger.info("Created Stripe checkout session %s (%s %s)", session.id, unit_amount, currency)
        intent_id = getattr(session, "payment_intent", None)
        return CheckoutResult(
            external_id=session.id,
            normalized_status=normalize_checkout_session_status(
                getattr(session, "payment_status", None), getattr(session, "status", None)
            ),
            amount=from_minor_units(unit_amount, currency),
            currency=currency,
            checkout_url=session.url,
            expires_at=ts_to_naive(getattr(session, "expires_at", None)),
            stripe_session_id=session.id,
            stripe_payment_intent_id=intent_id if isinstance(intent_id, str) else None,
            provider_data={"raw_status": getattr(session, "status", None)},
        )

    async def _create_intent(
        self,
        unit_amount: int,
        currency: str,
        description: str,
        customer_email: str | None,
        meta: dict[str, str],
    ) -> CheckoutResult:
        params: dict[str, Any] = {
            "amount": unit_amount,
            "currency": currency.lower(),
            "description": description,
            "automatic_payment_methods": {"enabled": True},
            "metadata": meta,
        }
        if customer_email:
            params["receipt_email"] = customer_email

        intent = await self.client.v1.payment_intents.create_async(params=params)
        logger.info("Created Stripe payment intent %s (%s %s)", intent.id, unit_amount, currency)
        return CheckoutResult(
            external_id=intent.id,
            normalized_status=normalize_payment_intent_status(intent.status),
            amount=from_minor_units(unit_amount, currency),
            currency=currency,
            client_secret=intent.client_secret,
            stripe_payment_intent_id=intent.id,
            provider_data={"client_secret": intent.client_secret, "raw_status": intent.status},
        )

    async def fetch_status(self, external_id: str) -> ProviderPayment:
        try:
            if external_id.startswith("cs_"):
                session = await self.client.v1.checkout.sessions.retrieve_async(external_id)
                return self.session_to_provider_payment(session)
            intent = await self.client.v1.payment_intents.retrieve_async(
                external_id, params={"expand": ["latest_charge"]}
            )
        except stripe.StripeError as e:
            logger.error("Stripe lookup of %s failed: %s", external_id, e)
            raise GatewayError(detail=f"Stripe error: {e}") from e
        return self.intent_to_provider_payment(intent)

    @staticmethod
    def intent_to_provider_payment(intent: Any) -> ProviderPayment:
        currency = (getattr(intent, "currency", None) or "").upper()
        failed_attempt = getattr(intent, "last_payment_error", None) is not None
        method_types = getattr(intent, "payment_method_types", None) or []
        status = normalize_payment_intent_status(intent.status, failed_attempt)
        return ProviderPayment(
            external_id=intent.id,
            raw_status=intent.status,
            normalized_status=status,
            amount=from_minor_units(getattr(intent, "amount", None), currency) if currency else None,
            currency=currency or None,
            method=method_types[0] if method_types else None,
            description=getattr(intent, "description", None),
            metadata=as_dict(getattr(intent, "metadata", None)),
            paid_at=intent_paid_at(intent) if status == STATUS_COMPLETED else None,
            stripe_payment_intent_id=intent.id,
        )

    @staticmethod
    def session_to_provider_payment(session: Any) -> ProviderPayment:
        currency = (getattr(session, "currency", None) or "").upper()
        intent_id = getattr(session, "payment_intent", None)
        return ProviderPayment(
            external_id=session.id,
            raw_status=getattr(session, "payment_status", None) or getattr(session, "status", None) or "",
            normalized_status=normalize_checkout_session_status(
                getattr(session, "payment_status", None), getattr(session, "status", None)
            ),
            amount=from_minor_units(getattr(session, "amount_total", None), currency) if currency else None,
            currency=currency or None,
            metadata=as_dict(getattr(session, "metadata", None)),
            expires_at=ts_to_naive(getattr(session, "expires_at", None)),
            checkout_url=getattr(session, "url", None),
            stripe_payment_intent_id=intent_id if isinstance(intent_id, str) else None,
        )

    def verify_webhook_signature(
        self, raw_body: bytes, signature_header: str | None, secret: str | None = None
    ) -> stripe.Event:
        """Verify and construct a Stripe webhook event (synchronous)."""
        secret = secret or self.webhook_secret
        if not signature_header:
            raise StripeSignatureError(detail="Stripe-Signature header missing")
        if not secret:
            logger.error("Stripe webhook received but no webhook secret is configured")
            raise StripeSignatureError(detail="Stripe webhook secret not configured")
        try:
            return self.client.construct_event(raw_body, signature_header, secret)
        except stripe.SignatureVerificationError as e:
            logger.warning("Stripe webhook signature verification failed")
            raise StripeSignatureError(detail="Stripe signature mismatch") from e
        except ValueError as e:
            logger.warning("Invalid Stripe webhook payload")
            raise StripeSignatureError(detail="Invalid Stripe payload") from e
