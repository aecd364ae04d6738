"""Subscription plan-change endpoint: opens the payment for an upgrade or renewal."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from vistream.api.deps import get_current_user, get_db, get_rate_limiter
from vistream.billing.errors import RateLimitExceeded
from vistream.billing.gateway import get_gateway_adapter
from vistream.billing.rate_limit import RateLimiter
from vistream.models.payment_gateway import VALID_PROVIDERS
from vistream.models.user import User
from vistream.schemas.payments import PaymentOut
from vistream.schemas.subscriptions import PlanSummary, UpgradeOut, UpgradeRequest, UpgradeResponse
from vistream.services.payment_ledger import create_or_reuse
from vistream.services.upgrades import quote_plan_change

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])

MSG_UPGRADE_PREPARED = (
    "Mise à niveau préparée. Vous paierez le prix complet du nouveau plan et votre abonnement sera étendu."
)
MSG_RENEWAL_PREPARED = "Renouvellement préparé. Votre abonnement sera prolongé dès réception du paiement."


@router.post("/upgrade", response_model=UpgradeResponse)
async def upgrade_subscription(
    body: UpgradeRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> UpgradeResponse:
    """Price the plan change from the catalog and open its checkout."""
    if not await limiter.check(f"subscriptions:upgrade:{user.id}"):
        logger.warning("Plan change rate limit hit for user %s", user.id)
        raise RateLimitExceeded()

    if body.provider and body.provider not in VALID_PROVIDERS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Fournisseur de paiement invalide: {body.provider}",
        )

    quote = await quote_plan_change(db, user.id, body.new_plan_id, is_renewal=body.is_renewal)
    adapter = await get_gateway_adapter(db, body.provider)
    payment, reused = await create_or_reuse(
        db,
        user=user,
        adapter=adapter,
        amount=quote.amount,
        currency=quote.currency,
        description=quote.description,
        metadata=quote.payment_metadata(),
        redirect_url=body.redirect_url,
    )

    current = quote.subscription
    return UpgradeResponse(
        message=MSG_RENEWAL_PREPARED if quote.is_renewal else MSG_UPGRADE_PREPARED,
        upgrade=UpgradeOut(
            operation=quote.operation,
            current_subscription_id=current.id,
            current_plan=PlanSummary(
                id=current.plan_id, name=current.plan_name, price=current.plan_price, period=current.plan_period
            ),
            new_plan=PlanSummary(
                id=quote.new_plan.id,
                name=quote.new_plan.name,
                price=quote.new_plan.price,
                period=quote.new_plan.period,
            ),
            days_remaining=quote.days_remaining,
            upgrade_cost=f"{quote.amount:.2f}",
            currency=quote.currency,
        ),
        payment=PaymentOut.from_payment(payment, reused=reused),
    )
