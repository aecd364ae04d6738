"""Payment API endpoints — checkout creation, completion, and latest payment."""

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from vistream.api.deps import get_current_user, get_db, get_rate_limiter
from vistream.billing.errors import BillingError, GatewayError, PaymentNotFound, RateLimitExceeded
from vistream.billing.gateway import get_gateway_adapter
from vistream.billing.rate_limit import RateLimiter
from vistream.database import utcnow
from vistream.models.payment import STATUS_PENDING, Payment
from vistream.models.payment_gateway import PROVIDER_MOLLIE, VALID_PROVIDERS
from vistream.models.user import ROLE_ADMIN, User
from vistream.schemas.payments import (
    CompletePaymentRequest,
    CompletePaymentResponse,
    CreatePaymentRequest,
    PaymentOut,
    PaymentResponse,
    SubscriptionOut,
)
from vistream.services.payment_ledger import apply_provider_update, create_or_reuse, find_payment, get_latest_payment
from vistream.services.reconciliation import complete_payment

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["payments"])

# Pending Mollie payments younger than this are re-read from Mollie on /latest
LATEST_SYNC_WINDOW = timedelta(minutes=5)


@router.post("/create", response_model=PaymentResponse)
async def create_payment(
    body: CreatePaymentRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> PaymentResponse:
    """Open a checkout, or hand back an identical one created moments ago."""
    if not await limiter.check(f"payments:create:{user.id}"):
        logger.warning("Payment creation rate limit hit for user %s", user.id)
        raise RateLimitExceeded()

    if body.provider and body.provider not in VALID_PROVIDERS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Fournisseur de paiement invalide: {body.provider}",
        )

    adapter = await get_gateway_adapter(db, body.provider)
    payment, reused = await create_or_reuse(
        db,
        user=user,
        adapter=adapter,
        amount=body.amount,
        currency=body.currency,
        description=body.description,
        metadata=body.metadata,
        customer_email=body.customer_email,
        customer_name=body.customer_name,
        redirect_url=body.redirect_url,
    )
    return PaymentResponse(payment=PaymentOut.from_payment(payment, reused=reused))


async def _resolve_own_payment(db: AsyncSession, user: User, payment_id: str | None) -> Payment:
    if not payment_id:
        payment = await get_latest_payment(db, user.id)
    else:
        payment = await find_payment(db, payment_id)
    if payment is None:
        raise PaymentNotFound(detail=f"payment {payment_id or '<latest>'} not found for user {user.id}")
    if payment.user_id is not None and payment.user_id != user.id and user.role != ROLE_ADMIN:
        logger.warning("User %s tried to complete payment %s of another user", user.id, payment.id)
        raise PaymentNotFound(detail=f"payment {payment.id} belongs to another user")
    return payment


@router.post("/complete", response_model=CompletePaymentResponse)
async def complete(
    body: CompletePaymentRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> CompletePaymentResponse | JSONResponse:
    """Apply a paid payment to the caller's subscription.

    Waits briefly for a pending payment; answers ``payment_not_ready`` if the
    provider has still not confirmed it so the client can retry.
    """
    try:
        payment = await _resolve_own_payment(db, user, body.payment_id)
        result = await complete_payment(db, str(payment.id), body.session_type)
    except BillingError:
        raise
    except Exception:
        await db.rollback()
        logger.exception("Unexpected error completing payment %s for user %s", body.payment_id, user.id)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "error": "Erreur serveur"},
        )

    return CompletePaymentResponse(
        message=result.message,
        operation=result.operation,
        already_processed=result.already_processed,
        subscription=SubscriptionOut.model_validate(result.subscription) if result.subscription else None,
    )


@router.get("/latest", response_model=PaymentResponse)
async def latest_payment(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> PaymentResponse:
    """The caller's most recent payment, re-synced from Mollie when still fresh."""
    payment = await get_latest_payment(db, user.id)
    if payment is None:
        raise PaymentNotFound(detail=f"user {user.id} has no payments")

    if (
        payment.provider == PROVIDER_MOLLIE
        and payment.status == STATUS_PENDING
        and payment.external_payment_id
        and payment.created_at >= utcnow() - LATEST_SYNC_WINDOW
    ):
        try:
            adapter = await get_gateway_adapter(db, PROVIDER_MOLLIE)
            detail = await adapter.fetch_status(payment.external_payment_id)
        except GatewayError as e:
            logger.warning("Could not re-sync Mollie payment %s: %s", payment.external_payment_id, e)
        else:
            apply_provider_update(
                payment,
                detail.normalized_status,
                source="sync",
                paid_at=detail.paid_at,
                method=detail.method,
                raw_status=detail.raw_status,
                expires_at=detail.expires_at,
            )
            await db.flush()

    return PaymentResponse(payment=PaymentOut.from_payment(payment))
