"""Pydantic v2 request/response schemas for payment endpoints."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import Field

from vistream.models.payment import Payment
from vistream.schemas.base import CamelModel

# --- Request schemas ---


class CreatePaymentRequest(CamelModel):
    """Open a checkout with a provider."""

    amount: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    currency: str = Field(default="EUR", min_length=3, max_length=3)
    description: str = Field(min_length=1, max_length=255)
    customer_email: str | None = None
    customer_name: str | None = None
    provider: str | None = None  # mollie, stripe; defaults to the highest-priority active gateway
    metadata: dict[str, Any] = Field(default_factory=dict)
    redirect_url: str | None = None


class CompletePaymentRequest(CamelModel):
    """Ask the backend to apply a payment; all fields optional."""

    payment_id: str | None = None
    session_type: str | None = None
    provider: str | None = None


# --- Response schemas ---


class AmountOut(CamelModel):
    value: str
    currency: str


class PaymentOut(CamelModel):
    """Payment as seen by the paying customer. ``id`` is the provider's id."""

    id: str
    database_id: uuid.UUID
    provider: str
    status: str
    amount: AmountOut
    description: str
    method: str | None = None
    checkout_url: str | None = None
    client_secret: str | None = None
    expires_at: datetime | None = None
    paid_at: datetime | None = None
    created_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    reused: bool = False

    @classmethod
    def from_payment(cls, payment: Payment, reused: bool = False) -> "PaymentOut":
        return cls(
            id=payment.external_payment_id or str(payment.id),
            database_id=payment.id,
            provider=payment.provider,
            status=payment.status,
            amount=AmountOut(value=f"{payment.amount_value:.2f}", currency=payment.currency),
            description=payment.description,
            method=payment.method,
            checkout_url=payment.checkout_url,
            client_secret=payment.client_secret,
            expires_at=payment.expires_at,
            paid_at=payment.paid_at,
            created_at=payment.created_at,
            metadata=payment.payment_metadata or {},
            reused=reused,
        )


class PaymentResponse(CamelModel):
    success: bool = True
    payment: PaymentOut


class SubscriptionOut(CamelModel):
    id: uuid.UUID
    user_id: uuid.UUID
    plan_id: uuid.UUID | None = None
    plan_name: str
    plan_price: str
    plan_period: str
    status: str
    start_date: datetime | None = None
    end_date: datetime | None = None
    auto_renew: bool
    affiliation_code: str | None = None
    sale_value: Decimal
    last_payment_id: uuid.UUID | None = None


class CompletePaymentResponse(CamelModel):
    success: bool = True
    message: str
    operation: str
    already_processed: bool = False
    subscription: SubscriptionOut | None = None
