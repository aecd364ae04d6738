"""Provider-neutral payment gateway contract and adapter factory."""

import enum
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vistream.billing.errors import GatewayNotConfigured
from vistream.models.payment_gateway import PROVIDER_MOLLIE, PROVIDER_STRIPE, PaymentGateway

logger = logging.getLogger(__name__)


class WebhookVerification(str, enum.Enum):
    """Whether inbound webhooks for a gateway are signature-checked."""

    VERIFIED = "verified"
    UNVERIFIED = "unverified"


@dataclass
class CheckoutResult:
    """What the provider handed back when a checkout was opened."""

    external_id: str
    normalized_status: str
    amount: Decimal
    currency: str
    checkout_url: str | None = None
    client_secret: str | None = None
    expires_at: datetime | None = None
    method: str | None = None
    stripe_session_id: str | None = None
    stripe_payment_intent_id: str | None = None
    provider_data: dict[str, Any] = field(default_factory=dict)


@dataclass
class ProviderPayment:
    """Current state of a payment as reported by the provider."""

    external_id: str
    raw_status: str
    normalized_status: str
    amount: Decimal | None = None
    currency: str | None = None
    method: str | None = None
    description: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    paid_at: datetime | None = None
    expires_at: datetime | None = None
    checkout_url: str | None = None
    stripe_payment_intent_id: str | None = None


class PaymentGatewayAdapter(ABC):
    """Uniform create-checkout / fetch-status / verify-signature contract."""

    provider: str

    def __init__(self, config: PaymentGateway) -> None:
        self.config = config

    @property
    def webhook_secret(self) -> str | None:
        return self.config.webhook_secret or None

    @property
    def verification(self) -> WebhookVerification:
        return verification_mode(self.config)

    @abstractmethod
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
        """Open a checkout with the provider."""

    @abstractmethod
    async def fetch_status(self, external_id: str) -> ProviderPayment:
        """Re-read a payment from the provider."""

    @abstractmethod
    def verify_webhook_signature(
        self, raw_body: bytes, signature_header: str | None, secret: str | None = None
    ) -> Any:
        """Check a webhook signature, raising ``SignatureError`` on mismatch.

        Returns the verified event when the provider sends full events
        (Stripe), or ``None`` for thin notifications (Mollie).
        """


def verification_mode(config: PaymentGateway) -> WebhookVerification:
    """Gateways without a webhook secret accept unsigned notifications."""
    if config.webhook_secret:
        return WebhookVerification.VERIFIED
    return WebhookVerification.UNVERIFIED


async def get_active_gateway(db: AsyncSession, provider: str | None = None) -> PaymentGateway | None:
    """Highest-priority active gateway, optionally for one provider."""
    stmt = select(PaymentGateway).where(PaymentGateway.is_active.is_(True))
    if provider:
        stmt = stmt.where(PaymentGateway.provider == provider)
    stmt = stmt.order_by(PaymentGateway.priority.desc(), PaymentGateway.created_at.asc()).limit(1)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


def build_adapter(config: PaymentGateway) -> PaymentGatewayAdapter:
    """Instantiate the adapter matching ``config.provider``."""
    from vistream.billing.mollie_client import MollieGateway
    from vistream.billing.stripe_client import StripeGateway

    adapters: dict[str, type[PaymentGatewayAdapter]] = {
        PROVIDER_MOLLIE: MollieGateway,
        PROVIDER_STRIPE: StripeGateway,
    }
    adapter_cls = adapters.get(config.provider)
    if adapter_cls is None:
        raise GatewayNotConfigured(detail=f"no adapter for provider {config.provider!r}")
    return adapter_cls(config)


async def get_gateway_adapter(db: AsyncSession, provider: str | None = None) -> PaymentGatewayAdapter:
    """Adapter for the active configuration of ``provider``.

    Raises ``GatewayNotConfigured`` when no active row exists or it has no
    API key.
    """
    config = await get_active_gateway(db, provider)
    if config is None:
        logger.error("No active payment gateway configured for provider %s", provider or "<any>")
        raise GatewayNotConfigured(detail=f"no active gateway for {provider or 'any provider'}")
    if not config.api_key:
        logger.error("Payment gateway %s (%s) has no API key", config.display_name, config.provider)
        raise GatewayNotConfigured(detail=f"gateway {config.provider} has no API key")
    return build_adapter(config)
