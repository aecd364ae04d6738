"""Tests for Mollie and Stripe webhook handler functions with mocked provider data."""

import uuid
from datetime import datetime
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from vistream.billing.errors import InvalidWebhookPayload, SignatureError
from vistream.billing.gateway import ProviderPayment
from vistream.billing.webhooks import (
    dispatch_stripe_event,
    handle_charge_refunded,
    handle_checkout_session_completed,
    handle_checkout_session_expired,
    handle_invoice_payment_failed,
    handle_invoice_payment_succeeded,
    handle_mollie_notification,
    handle_payment_intent_failed,
    handle_payment_intent_succeeded,
    reconcile_if_completed,
)
from vistream.database import utcnow
from vistream.models.payment_gateway import PROVIDER_STRIPE
from vistream.models.plan import Plan
from vistream.models.subscription import SUB_ACTIVE
from vistream.models.user import User
from vistream.services.payment_ledger import find_payment

from tests.factories import create_payment


class _StripeObj(SimpleNamespace):
    """SimpleNamespace with bracket notation support (like Stripe API objects)."""

    def __getitem__(self, key: str):
        return getattr(self, key)


def _make_event(event_type: str, data_object: dict) -> _StripeObj:
    """Create a fake Stripe Event-like object."""
    obj = _StripeObj(**data_object)
    return _StripeObj(
        type=event_type,
        id=f"evt_test_{uuid.uuid4().hex[:8]}",
        data=_StripeObj(object=obj),
    )


def _mollie_adapter(detail: ProviderPayment, verify_error: Exception | None = None) -> MagicMock:
    adapter = MagicMock()
    adapter.fetch_status = AsyncMock(return_value=detail)
    adapter.verify_webhook_signature = MagicMock(side_effect=verify_error, return_value=None)
    return adapter


def _mollie_detail(payment_id: str, status: str = "paid", normalized: str = "completed", **extra) -> ProviderPayment:
    return ProviderPayment(
        external_id=payment_id,
        raw_status=status,
        normalized_status=normalized,
        amount=Decimal("29.00"),
        currency="EUR",
        method="ideal",
        description="Abonnement Pro",
        paid_at=datetime(2025, 6, 1, 12, 5) if normalized == "completed" else None,
        **extra,
    )


# ---------------------------------------------------------------------------
# Mollie
# ---------------------------------------------------------------------------


class TestMollieNotification:
    async def test_test_event_is_acknowledged(self, db_session: AsyncSession):
        with patch("vistream.billing.webhooks.get_gateway_adapter", new=AsyncMock()) as get_adapter:
            outcome = await handle_mollie_notification(db_session, "event_test_123", b"id=event_test_123", None)

        assert outcome.ignored is True
        assert outcome.reason == "test_event"
        get_adapter.assert_not_called()

    async def test_invalid_id_rejected(self, db_session: AsyncSession):
        with pytest.raises(InvalidWebhookPayload):
            await handle_mollie_notification(db_session, "pi_not_mollie", b"id=pi_not_mollie", None)

    async def test_paid_payment_activates_subscription(
        self, db_session: AsyncSession, test_user: User, pro_plan: Plan
    ):
        payment = await create_payment(
            db_session, test_user, metadata={"type": "subscription", "planId": str(pro_plan.id)}
        )
        adapter = _mollie_adapter(_mollie_detail(payment.external_payment_id))

        with patch("vistream.billing.webhooks.get_gateway_adapter", new=AsyncMock(return_value=adapter)):
            outcome = await handle_mollie_notification(
                db_session, payment.external_payment_id, b"id=" + payment.external_payment_id.encode(), "sig"
            )

        adapter.verify_webhook_signature.assert_called_once()
        adapter.fetch_status.assert_awaited_once_with(payment.external_payment_id)
        assert outcome.payment.id == payment.id
        assert payment.status == "completed"
        assert payment.method == "ideal"
        assert payment.paid_at == datetime(2025, 6, 1, 12, 5)
        assert payment.is_processed is True
        assert outcome.reconciliation.subscription.status == SUB_ACTIVE

    async def test_replay_does_not_reconcile_twice(self, db_session: AsyncSession, test_user: User, pro_plan: Plan):
        payment = await create_payment(
            db_session, test_user, metadata={"type": "subscription", "planId": str(pro_plan.id)}
        )
        adapter = _mollie_adapter(_mollie_detail(payment.external_payment_id))
        body = b"id=" + payment.external_payment_id.encode()

        with patch("vistream.billing.webhooks.get_gateway_adapter", new=AsyncMock(return_value=adapter)):
            first = await handle_mollie_notification(db_session, payment.external_payment_id, body, None)
            second = await handle_mollie_notification(db_session, payment.external_payment_id, body, None)

        assert first.reconciliation is not None
        assert second.reconciliation is None
        assert payment.webhook_attempts == 2

    async def test_bad_signature_touches_nothing(self, db_session: AsyncSession, test_user: User):
        payment = await create_payment(db_session, test_user)
        adapter = _mollie_adapter(_mollie_detail(payment.external_payment_id), verify_error=SignatureError())

        with patch("vistream.billing.webhooks.get_gateway_adapter", new=AsyncMock(return_value=adapter)):
            with pytest.raises(SignatureError):
                await handle_mollie_notification(db_session, payment.external_payment_id, b"id=x", "bad")

        adapter.fetch_status.assert_not_awaited()
        assert payment.status == "pending"
        assert payment.webhook_attempts == 0

    async def test_unknown_payment_created_from_provider(self, db_session: AsyncSession, test_user: User):
        detail = _mollie_detail("tr_dashboard1", metadata={"userId": str(test_user.id)})
        adapter = _mollie_adapter(detail)

        with patch("vistream.billing.webhooks.get_gateway_adapter", new=AsyncMock(return_value=adapter)):
            outcome = await handle_mollie_notification(db_session, "tr_dashboard1", b"id=tr_dashboard1", None)

        created = await find_payment(db_session, "tr_dashboard1")
        assert created is not None
        assert created.user_id == test_user.id
        assert created.amount_value == Decimal("29.00")
        assert created.status == "completed"
        # No type and no plan: reconciliation is skipped, not raised
        assert outcome.reconciliation is None
        assert created.is_processed is False

    async def test_expired_payment_recorded(self, db_session: AsyncSession, test_user: User):
        payment = await create_payment(db_session, test_user)
        adapter = _mollie_adapter(_mollie_detail(payment.external_payment_id, status="expired", normalized="expired"))

        with patch("vistream.billing.webhooks.get_gateway_adapter", new=AsyncMock(return_value=adapter)):
            outcome = await handle_mollie_notification(db_session, payment.external_payment_id, b"", None)

        assert payment.status == "expired"
        assert outcome.reconciliation is None


# ---------------------------------------------------------------------------
# Stripe
# ---------------------------------------------------------------------------


class TestStripeCheckoutSession:
    async def test_completed_session_reconciles(self, db_session: AsyncSession, test_user: User, pro_plan: Plan):
        payment = await create_payment(
            db_session,
            test_user,
            provider=PROVIDER_STRIPE,
            external_id="cs_test_paid",
            stripe_session_id="cs_test_paid",
            metadata={"type": "subscription", "planId": str(pro_plan.id)},
        )
        event = _make_event(
            "checkout.session.completed",
            {
                "id": "cs_test_paid",
                "status": "complete",
                "payment_status": "paid",
                "payment_intent": "pi_test_paid",
                "currency": "eur",
                "amount_total": 2900,
                "customer": "cus_test_1",
            },
        )

        outcome = await handle_checkout_session_completed(db_session, event)

        assert outcome.payment.id == payment.id
        assert payment.status == "completed"
        assert payment.stripe_payment_intent_id == "pi_test_paid"
        assert payment.provider_data["customer_id"] == "cus_test_1"
        assert outcome.reconciliation.subscription.status == SUB_ACTIVE

    async def test_unpaid_session_stays_pending(self, db_session: AsyncSession, test_user: User):
        payment = await create_payment(
            db_session, test_user, provider=PROVIDER_STRIPE, external_id="cs_test_async", stripe_session_id="cs_test_async"
        )
        event = _make_event(
            "checkout.session.completed",
            {"id": "cs_test_async", "status": "complete", "payment_status": "unpaid", "payment_intent": None},
        )

        outcome = await handle_checkout_session_completed(db_session, event)

        assert payment.status == "pending"
        assert outcome.reconciliation is None

    async def test_expired_session(self, db_session: AsyncSession, test_user: User):
        payment = await create_payment(
            db_session, test_user, provider=PROVIDER_STRIPE, external_id="cs_test_exp", stripe_session_id="cs_test_exp"
        )

        await handle_checkout_session_expired(db_session, _make_event("checkout.session.expired", {"id": "cs_test_exp"}))

        assert payment.status == "expired"


class TestStripePaymentIntent:
    async def test_succeeded_intent(self, db_session: AsyncSession, test_user: User, pro_plan: Plan):
        payment = await create_payment(
            db_session,
            test_user,
            provider=PROVIDER_STRIPE,
            external_id="pi_test_ok",
            stripe_payment_intent_id="pi_test_ok",
            metadata={"type": "subscription", "planId": str(pro_plan.id)},
        )
        event = _make_event(
            "payment_intent.succeeded",
            {
                "id": "pi_test_ok",
                "status": "succeeded",
                "created": 1700000000,
                "currency": "eur",
                "amount": 2900,
                "payment_method_types": ["card"],
                "last_payment_error": None,
                "latest_charge": "ch_test_ok",
            },
        )

        before = utcnow()
        outcome = await handle_payment_intent_succeeded(db_session, event)

        assert payment.status == "completed"
        assert payment.method == "card"
        assert outcome.reconciliation is not None
        # created is when the intent opened, not when it was paid
        assert payment.paid_at >= before

    async def test_paid_at_from_expanded_charge(self, db_session: AsyncSession, test_user: User):
        payment = await create_payment(
            db_session,
            test_user,
            provider=PROVIDER_STRIPE,
            external_id="pi_test_charge",
            stripe_payment_intent_id="pi_test_charge",
        )
        event = _make_event(
            "payment_intent.succeeded",
            {
                "id": "pi_test_charge",
                "status": "succeeded",
                "created": 1700000000,
                "latest_charge": _StripeObj(id="ch_test_charge", created=1700000600),
            },
        )

        await handle_payment_intent_succeeded(db_session, event)

        assert payment.paid_at == datetime(2023, 11, 14, 22, 23, 20)

    async def test_intent_from_checkout_session_matched(self, db_session: AsyncSession, test_user: User):
        payment = await create_payment(
            db_session,
            test_user,
            provider=PROVIDER_STRIPE,
            external_id="cs_test_with_pi",
            stripe_session_id="cs_test_with_pi",
            stripe_payment_intent_id="pi_from_session",
        )
        event = _make_event("payment_intent.succeeded", {"id": "pi_from_session", "status": "succeeded"})

        outcome = await handle_payment_intent_succeeded(db_session, event)

        assert outcome.payment.id == payment.id
        assert payment.status == "completed"

    async def test_unknown_intent_ignored(self, db_session: AsyncSession):
        event = _make_event("payment_intent.succeeded", {"id": "pi_unknown", "status": "succeeded"})

        outcome = await handle_payment_intent_succeeded(db_session, event)

        assert outcome.payment is None
        assert await find_payment(db_session, "pi_unknown") is None

    async def test_failed_intent_records_reason(self, db_session: AsyncSession, test_user: User):
        payment = await create_payment(
            db_session,
            test_user,
            provider=PROVIDER_STRIPE,
            external_id="pi_test_declined",
            stripe_payment_intent_id="pi_test_declined",
        )
        event = _make_event(
            "payment_intent.payment_failed",
            {
                "id": "pi_test_declined",
                "status": "requires_payment_method",
                "last_payment_error": _StripeObj(message="Your card was declined."),
            },
        )

        await handle_payment_intent_failed(db_session, event)

        assert payment.status == "failed"
        assert payment.provider_data["failure_reason"] == "Your card was declined."

    async def test_late_failure_after_success_ignored(self, db_session: AsyncSession, test_user: User):
        payment = await create_payment(
            db_session, test_user, provider=PROVIDER_STRIPE, external_id="pi_test_late", status="completed"
        )
        event = _make_event("payment_intent.payment_failed", {"id": "pi_test_late", "status": "requires_payment_method"})

        await handle_payment_intent_failed(db_session, event)

        assert payment.status == "completed"


class TestStripeInvoiceAndRefund:
    async def test_invoice_paid_via_intent(self, db_session: AsyncSession, test_user: User):
        payment = await create_payment(
            db_session,
            test_user,
            provider=PROVIDER_STRIPE,
            external_id="pi_test_inv",
            stripe_payment_intent_id="pi_test_inv",
        )
        event = _make_event(
            "invoice.payment_succeeded",
            {"id": "in_test_1", "payment_intent": "pi_test_inv", "status": "paid", "subscription": "sub_test_1"},
        )

        await handle_invoice_payment_succeeded(db_session, event)

        assert payment.status == "completed"
        assert payment.stripe_invoice_id == "in_test_1"
        assert payment.stripe_subscription_id == "sub_test_1"

    async def test_invoice_failed(self, db_session: AsyncSession, test_user: User):
        payment = await create_payment(
            db_session, test_user, provider=PROVIDER_STRIPE, external_id="pi_test_x", stripe_invoice_id="in_test_2"
        )
        event = _make_event("invoice.payment_failed", {"id": "in_test_2", "status": "open"})

        await handle_invoice_payment_failed(db_session, event)

        assert payment.status == "failed"

    async def test_unknown_invoice_ignored(self, db_session: AsyncSession):
        event = _make_event("invoice.payment_succeeded", {"id": "in_unknown", "payment_intent": None})

        outcome = await handle_invoice_payment_succeeded(db_session, event)

        assert outcome.ignored is True
        assert outcome.reason == "unknown_invoice"

    async def test_charge_refunded(self, db_session: AsyncSession, test_user: User):
        payment = await create_payment(
            db_session,
            test_user,
            provider=PROVIDER_STRIPE,
            external_id="pi_test_refund",
            stripe_payment_intent_id="pi_test_refund",
            status="completed",
        )
        event = _make_event("charge.refunded", {"id": "ch_test_1", "payment_intent": "pi_test_refund"})

        await handle_charge_refunded(db_session, event)

        assert payment.status == "refunded"
        assert payment.provider_data["refunded_charge"] == "ch_test_1"

    async def test_charge_without_intent_ignored(self, db_session: AsyncSession):
        outcome = await handle_charge_refunded(db_session, _make_event("charge.refunded", {"id": "ch_test_2"}))
        assert outcome.ignored is True


class TestDispatch:
    async def test_routes_known_event(self, db_session: AsyncSession, test_user: User):
        payment = await create_payment(
            db_session, test_user, provider=PROVIDER_STRIPE, external_id="cs_test_d", stripe_session_id="cs_test_d"
        )

        await dispatch_stripe_event(db_session, _make_event("checkout.session.expired", {"id": "cs_test_d"}))

        assert payment.status == "expired"

    @pytest.mark.parametrize("event_type", ["customer.subscription.updated", "product.created"])
    async def test_other_events_acknowledged(self, db_session: AsyncSession, event_type: str):
        outcome = await dispatch_stripe_event(db_session, _make_event(event_type, {"id": "obj_1"}))
        assert outcome.ignored is True


class TestReconcileIfCompleted:
    async def test_skips_non_completed(self, db_session: AsyncSession, test_user: User):
        payment = await create_payment(db_session, test_user)
        assert await reconcile_if_completed(db_session, payment) is None

    async def test_business_error_is_swallowed(self, db_session: AsyncSession, test_user: User):
        payment = await create_payment(db_session, test_user, status="completed", metadata={"type": "gift_card"})
        assert await reconcile_if_completed(db_session, payment) is None
