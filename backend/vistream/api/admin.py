"""Admin read endpoints — role-scoped payment and subscription listings."""

import logging
import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy import Select, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from vistream.api.deps import get_current_user, get_db, require_roles
from vistream.billing.gateway import verification_mode
from vistream.models.payment import Payment
from vistream.models.payment_gateway import PaymentGateway
from vistream.models.subscription import Subscription
from vistream.models.user import ROLE_ADMIN, User
from vistream.schemas.admin import (
    AdminPaymentOut,
    AdminPaymentsResponse,
    AdminSubscriptionOut,
    AdminSubscriptionsResponse,
    GatewayOut,
    GatewaysResponse,
    Pagination,
)
from vistream.services.scoping import scope_to_caller

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])

MAX_PAGE_SIZE = 100


async def _paginate(db: AsyncSession, query: Select, page: int, limit: int, order_by) -> tuple[list, Pagination]:
    total = (await db.execute(select(func.count()).select_from(query.order_by(None).subquery()))).scalar_one()
    rows = await db.execute(query.order_by(order_by).offset((page - 1) * limit).limit(limit))
    return list(rows.scalars().unique().all()), Pagination.build(page, limit, total)


def _user_search(term: str):
    pattern = f"%{term}%"
    return or_(
        User.email.ilike(pattern),
        User.first_name.ilike(pattern),
        User.last_name.ilike(pattern),
    )


@router.get("/payments", response_model=AdminPaymentsResponse)
async def list_payments(
    status: str | None = Query(default=None),
    provider: str | None = Query(default=None),
    user_id: uuid.UUID | None = Query(default=None, alias="userId"),
    start_date: datetime | None = Query(default=None, alias="startDate"),
    end_date: datetime | None = Query(default=None, alias="endDate"),
    search: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=MAX_PAGE_SIZE),
    caller: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> AdminPaymentsResponse:
    """Payments visible to the caller, newest first."""
    query = scope_to_caller(caller.role, caller.id, select(Payment), Payment)

    if status:
        query = query.where(Payment.status == status)
    if provider:
        query = query.where(Payment.provider == provider)
    if user_id:
        query = query.where(Payment.user_id == user_id)
    if start_date:
        query = query.where(Payment.created_at >= start_date)
    if end_date:
        query = query.where(Payment.created_at <= end_date)
    if search:
        term = search.strip()
        query = query.outerjoin(User, Payment.user_id == User.id).where(
            or_(
                _user_search(term),
                Payment.external_payment_id.ilike(f"%{term}%"),
                Payment.description.ilike(f"%{term}%"),
            )
        )

    payments, pagination = await _paginate(db, query, page, limit, Payment.created_at.desc())
    logger.info("Admin payments listing by %s (%s): %d of %d", caller.id, caller.role, len(payments), pagination.total)
    return AdminPaymentsResponse(
        payments=[AdminPaymentOut.from_payment(p) for p in payments],
        pagination=pagination,
    )


@router.get("/subscriptions", response_model=AdminSubscriptionsResponse)
async def list_subscriptions(
    status: str | None = Query(default=None),
    plan: str | None = Query(default=None),
    search: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=MAX_PAGE_SIZE),
    caller: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> AdminSubscriptionsResponse:
    """Subscriptions visible to the caller, newest first."""
    query = scope_to_caller(caller.role, caller.id, select(Subscription), Subscription)

    if status:
        query = query.where(Subscription.status == status)
    if plan:
        query = query.where(Subscription.plan_name.ilike(f"%{plan}%"))
    if search:
        term = search.strip()
        query = query.join(User, Subscription.user_id == User.id).where(
            or_(_user_search(term), Subscription.affiliation_code == term)
        )

    subscriptions, pagination = await _paginate(db, query, page, limit, Subscription.created_at.desc())
    return AdminSubscriptionsResponse(
        subscriptions=[AdminSubscriptionOut.from_subscription(s) for s in subscriptions],
        pagination=pagination,
    )


@router.get("/payment-gateways", response_model=GatewaysResponse)
async def list_payment_gateways(
    _admin: User = Depends(require_roles(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db),
) -> GatewaysResponse:
    """Configured gateways and whether their webhooks are signature-checked."""
    result = await db.execute(
        select(PaymentGateway).order_by(PaymentGateway.provider, PaymentGateway.priority.desc())
    )
    return GatewaysResponse(
        gateways=[
            GatewayOut(
                id=g.id,
                provider=g.provider,
                display_name=g.display_name,
                is_active=g.is_active,
                test_mode=g.test_mode,
                priority=g.priority,
                has_api_key=bool(g.api_key),
                webhook_verification=verification_mode(g).value,
            )
            for g in result.scalars().all()
        ]
    )
