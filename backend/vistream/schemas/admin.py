"""Pydantic v2 response schemas for the admin read endpoints."""

import math
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import Field

from vistream.models.payment import Payment
from vistream.models.subscription import Subscription
from vistream.schemas.base import CamelModel


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        total_pages = math.ceil(total / limit) if total else 0
        return cls(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        )


class AdminUserOut(CamelModel):
    id: uuid.UUID
    email: str
    first_name: str
    last_name: str


class AdminPaymentOut(CamelModel):
    id: uuid.UUID
    external_payment_id: str | None = None
    provider: str
    status: str
    amount_value: Decimal
    currency: str
    description: str
    method: str | None = None
    is_processed: bool
    webhook_attempts: int
    created_at: datetime | None = None
    paid_at: datetime | None = None
    processed_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    user: AdminUserOut | None = None

    @classmethod
    def from_payment(cls, payment: Payment) -> "AdminPaymentOut":
        return cls(
            id=payment.id,
            external_payment_id=payment.external_payment_id,
            provider=payment.provider,
            status=payment.status,
            amount_value=payment.amount_value,
            currency=payment.currency,
            description=payment.description,
            method=payment.method,
            is_processed=payment.is_processed,
            webhook_attempts=payment.webhook_attempts,
            created_at=payment.created_at,
            paid_at=payment.paid_at,
            processed_at=payment.processed_at,
            metadata=payment.payment_metadata or {},
            user=AdminUserOut.model_validate(payment.user) if payment.user is not None else None,
        )


class AdminSubscriptionOut(CamelModel):
    id: uuid.UUID
    plan_id: uuid.UUID | None = None
    plan_name: str
    plan_price: str
    plan_period: str
    status: str
    start_date: datetime | None = None
    end_date: datetime | None = None
    auto_renew: bool
    affiliation_code: str | None = None
    affiliated_user_id: uuid.UUID | None = None
    sale_value: Decimal
    created_at: datetime | None = None
    user: AdminUserOut | None = None

    @classmethod
    def from_subscription(cls, subscription: Subscription) -> "AdminSubscriptionOut":
        return cls.model_validate(subscription)


class AdminPaymentsResponse(CamelModel):
    success: bool = True
    payments: list[AdminPaymentOut]
    pagination: Pagination


class AdminSubscriptionsResponse(CamelModel):
    success: bool = True
    subscriptions: list[AdminSubscriptionOut]
    pagination: Pagination


class GatewayOut(CamelModel):
    id: uuid.UUID
    provider: str
    display_name: str
    is_active: bool
    test_mode: bool
    priority: int
    has_api_key: bool
    webhook_verification: str


class GatewaysResponse(CamelModel):
    success: bool = True
    gateways: list[GatewayOut]
