"""Mollie REST adapter (``https://api.mollie.com/v2``) over an async httpx client."""

import hashlib
import hmac
import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from vistream.billing.errors import GatewayError, SignatureError
from vistream.billing.gateway import CheckoutResult, PaymentGatewayAdapter, ProviderPayment, WebhookVerification
from vistream.config import settings
from vistream.models.payment import (
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_EXPIRED,
    STATUS_FAILED,
    STATUS_PENDING,
)
from vistream.models.payment_gateway import PROVIDER_MOLLIE, PaymentGateway

logger = logging.getLogger(__name__)

MOLLIE_API_BASE = "https://api.mollie.com/v2"
MOLLIE_TIMEOUT_SECONDS = 30.0

_MOLLIE_STATUS_MAP = {
    "open": STATUS_PENDING,
    "pending": STATUS_PENDING,
    "authorized": STATUS_PENDING,
    "paid": STATUS_COMPLETED,
    "failed": STATUS_FAILED,
    "canceled": STATUS_CANCELLED,
    "expired": STATUS_EXPIRED,
}


def normalize_mollie_status(raw_status: str | None) -> str:
    """Map a Mollie payment status to ours. Unknown values count as pending."""
    normalized = _MOLLIE_STATUS_MAP.get((raw_status or "").lower())
    if normalized is None:
        logger.warning("Unknown Mollie payment status %r, treating as pending", raw_status)
        return STATUS_PENDING
    return normalized


def format_mollie_amount(amount: Decimal | float | str) -> str:
    """Mollie wants a string with exactly two decimals, e.g. ``"29.00"``."""
    return f"{Decimal(str(amount)):.2f}"


def parse_mollie_datetime(value: str | None) -> datetime | None:
    """ISO 8601 from Mollie to naive UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Unparseable Mollie timestamp %r", value)
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def compute_mollie_signature(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def _parse_amount(data: dict[str, Any] | None) -> tuple[Decimal | None, str | None]:
    if not data:
        return None, None
    try:
        value = Decimal(str(data.get("value")))
    except (InvalidOperation, TypeError):
        value = None
    currency = data.get("currency")
    return value, currency.upper() if currency else None


class MollieGateway(PaymentGatewayAdapter):
    """Mollie payments API.

    ``transport`` lets callers swap the HTTP transport (``httpx.MockTransport``
    in tests).
    """

    provider = PROVIDER_MOLLIE

    def __init__(self, config: PaymentGateway, transport: httpx.AsyncBaseTransport | None = None) -> None:
        super().__init__(config)
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=MOLLIE_API_BASE,
            headers={
                "Authorization": f"Bearer {self.config.api_key}",
                "Content-Type": "application/json",
            },
            timeout=MOLLIE_TIMEOUT_SECONDS,
            transport=self._transport,
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            async with self._client() as client:
                response = await client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error("Mollie request %s %s failed: %s", method, path, e)
            raise GatewayError(detail=f"Mollie request error: {e}") from e

        if response.status_code not in (200, 201):
            try:
                error_detail = response.json().get("detail", response.text)
            except ValueError:
                error_detail = response.text
            logger.error("Mollie API error %s on %s %s: %s", response.status_code, method, path, error_detail)
            raise GatewayError(detail=f"Mollie API error {response.status_code}: {error_detail}")
        return response.json()

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
        merged_metadata = dict(metadata or {})
        if customer_email:
            merged_metadata.setdefault("customerEmail", customer_email)
        if customer_name:
            merged_metadata.setdefault("customerName", customer_name)

        payload: dict[str, Any] = {
            "amount": {"currency": currency.upper(), "value": format_mollie_amount(amount)},
            "description": description,
            "redirectUrl": redirect_url or f"{settings.frontend_url.rstrip('/')}/payment/return",
            "metadata": merged_metadata,
        }
        webhook_url = settings.mollie_webhook_url
        if webhook_url:
            payload["webhookUrl"] = webhook_url
        else:
            logger.warning("PUBLIC_BASE_URL not set; Mollie payment created without webhookUrl")

        data = await self._request("POST", "/payments", json=payload)
        checkout_url = data.get("_links", {}).get("checkout", {}).get("href")
        logger.info("Mollie payment created: %s (%s %s)", data.get("id"), payload["amount"]["value"], currency)

        return CheckoutResult(
            external_id=data["id"],
            normalized_status=normalize_mollie_status(data.get("status")),
            amount=Decimal(payload["amount"]["value"]),
            currency=currency.upper(),
            checkout_url=checkout_url,
            expires_at=parse_mollie_datetime(data.get("expiresAt")),
            method=data.get("method"),
            provider_data={"raw_status": data.get("status"), "mode": data.get("mode")},
        )

    async def fetch_status(self, external_id: str) -> ProviderPayment:
        data = await self._request("GET", f"/payments/{external_id}")
        amount, currency = _parse_amount(data.get("amount"))
        return ProviderPayment(
            external_id=data.get("id", external_id),
            raw_status=data.get("status", ""),
            normalized_status=normalize_mollie_status(data.get("status")),
            amount=amount,
            currency=currency,
            method=data.get("method"),
            description=data.get("description"),
            metadata=data.get("metadata") or {},
            paid_at=parse_mollie_datetime(data.get("paidAt")),
            expires_at=parse_mollie_datetime(data.get("expiresAt")),
            checkout_url=data.get("_links", {}).get("checkout", {}).get("href"),
        )

    def verify_webhook_signature(
        self, raw_body: bytes, signature_header: str | None, secret: str | None = None
    ) -> None:
        secret = secret or self.webhook_secret
        if self.verification == WebhookVerification.UNVERIFIED and not secret:
            logger.warning("Mollie webhook accepted without signature check (no webhook secret configured)")
            return None
        if not secret:
            raise SignatureError(detail="Mollie webhook secret missing")
        if not signature_header:
            logger.warning("Mollie webhook rejected: signature header missing")
            raise SignatureError(detail="Mollie signature header missing")
        expected = compute_mollie_signature(raw_body, secret)
        if not hmac.compare_digest(expected, signature_header.strip()):
            logger.warning("Mollie webhook rejected: signature mismatch")
            raise SignatureError(detail="Mollie signature mismatch")
        return None
