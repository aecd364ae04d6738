"""Provider webhook endpoints — Mollie and Stripe."""

import json
import logging
from urllib.parse import parse_qs

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from vistream.api.deps import get_db
from vistream.billing.errors import BillingError, SignatureError
from vistream.billing.gateway import get_gateway_adapter
from vistream.billing.webhooks import dispatch_stripe_event, handle_mollie_notification
from vistream.models.payment_gateway import PROVIDER_STRIPE

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

MOLLIE_SIGNATURE_HEADER = "mollie-signature"


def extract_mollie_payment_id(raw_body: bytes, content_type: str) -> str | None:
    """Mollie posts ``id=tr_...`` as a form; JSON ``{"id": ...}`` is accepted too."""
    text = raw_body.decode("utf-8", errors="replace").strip()
    if not text:
        return None
    if "json" in content_type or text.startswith("{"):
        try:
            data = json.loads(text)
        except ValueError:
            return None
        value = data.get("id") if isinstance(data, dict) else None
        return str(value) if value else None
    values = parse_qs(text).get("id")
    return values[0] if values else None


@router.get("/mollie")
async def mollie_webhook_status() -> dict[str, str]:
    """Liveness check used when registering the webhook URL."""
    return {"status": "ok", "message": "Mollie webhook endpoint is active"}


@router.post("/mollie")
async def mollie_webhook(request: Request, db: AsyncSession = Depends(get_db)) -> JSONResponse:
    """Receive a Mollie payment notification."""
    raw_body = await request.body()
    payment_id = extract_mollie_payment_id(raw_body, request.headers.get("content-type", ""))
    if not payment_id:
        logger.warning("Mollie webhook without payment id")
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "ID de paiement manquant"})

    try:
        outcome = await handle_mollie_notification(
            db, payment_id, raw_body, request.headers.get(MOLLIE_SIGNATURE_HEADER)
        )
    except BillingError as e:
        logger.warning("Mollie webhook %s rejected: %s (%s)", payment_id, e.code, e)
        return JSONResponse(status_code=e.status_code, content={"error": e.message, "code": e.code})
    except Exception:
        await db.rollback()
        logger.exception("Error processing Mollie webhook %s", payment_id)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Webhook processing failed"},
        )

    content: dict = {"received": True, "processed": not outcome.ignored}
    if outcome.payment is not None:
        content["status"] = outcome.payment.status
    return JSONResponse(content=content)


@router.post("/stripe")
async def stripe_webhook(request: Request, db: AsyncSession = Depends(get_db)) -> JSONResponse:
    """Receive and process Stripe webhook events."""
    # Raw bytes are required for signature verification
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")
    if not sig_header:
        logger.warning("Stripe webhook without signature header")
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Signature manquante"})

    try:
        adapter = await get_gateway_adapter(db, PROVIDER_STRIPE)
        event = adapter.verify_webhook_signature(payload, sig_header)
    except SignatureError as e:
        return JSONResponse(status_code=e.status_code, content={"error": e.message, "code": e.code})
    except BillingError as e:
        logger.error("Stripe webhook received but gateway unusable: %s", e)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Webhook Stripe non configuré", "code": e.code},
        )

    try:
        await dispatch_stripe_event(db, event)
    except Exception:
        await db.rollback()
        logger.exception("Error processing Stripe webhook event %s", event.id)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Webhook processing failed"},
        )

    return JSONResponse(content={"received": True})
