"""Mollie webhook and client completion racing on the same payment.

SQLite has no concurrent writers, so the interleaving is staged: the
completion request is issued while the webhook is between its ledger update
and its own reconciliation, which is the window a real race hits.
"""

from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from vistream.billing.gateway import ProviderPayment
from vistream.billing.periods import add_months
from vistream.config import settings
from vistream.database import utcnow
from vistream.models.plan import Plan
from vistream.models.subscription import SUB_ACTIVE, Subscription
from vistream.models.user import User
from vistream.services import reconciliation

from tests.factories import create_payment, create_subscription

FORM = {"Content-Type": "application/x-www-form-urlencoded"}


def _paid_adapter(payment_id: str) -> MagicMock:
    adapter = MagicMock()
    adapter.verify_webhook_signature = MagicMock(return_value=None)
    adapter.fetch_status = AsyncMock(
        return_value=ProviderPayment(
            external_id=payment_id,
            raw_status="paid",
            normalized_status="completed",
            amount=Decimal("29.00"),
            currency="EUR",
        )
    )
    return adapter


@pytest.fixture(autouse=True)
def _no_completion_wait():
    with patch.object(settings, "payment_wait_attempts", 0):
        yield


async def _deliver_webhook(client: AsyncClient, external_id: str, *, completion_first: dict | None = None):
    """POST the Mollie notification; optionally let a completion call win inside it."""
    adapter = AsyncMock(return_value=_paid_adapter(external_id))
    engine = reconciliation.complete_payment
    completions = []

    async def completion_then_webhook(db, identifier, *args, **kwargs):
        completions.append(
            await client.post("/api/payments/complete", json={"paymentId": external_id}, headers=completion_first)
        )
        return await engine(db, identifier, *args, **kwargs)

    with patch("vistream.billing.webhooks.get_gateway_adapter", new=adapter):
        if completion_first is None:
            response = await client.post("/api/webhooks/mollie", content=f"id={external_id}".encode(), headers=FORM)
        else:
            with patch("vistream.billing.webhooks.complete_payment", new=completion_then_webhook):
                response = await client.post(
                    "/api/webhooks/mollie", content=f"id={external_id}".encode(), headers=FORM
                )
    return response, completions


async def _active_count(db: AsyncSession, user: User) -> int:
    result = await db.execute(
        select(func.count()).select_from(Subscription).where(
            Subscription.user_id == user.id, Subscription.status == SUB_ACTIVE
        )
    )
    return result.scalar_one()


class TestNewSubscriptionRace:
    async def test_webhook_then_completion(
        self, client: AsyncClient, auth_headers: dict, db_session: AsyncSession, test_user: User, pro_plan: Plan
    ):
        pending = await create_subscription(db_session, test_user, pro_plan)
        payment = await create_payment(
            db_session, test_user, metadata={"type": "subscription", "planId": str(pro_plan.id)}
        )

        webhook, _ = await _deliver_webhook(client, payment.external_payment_id)
        completion = await client.post(
            "/api/payments/complete", json={"paymentId": payment.external_payment_id}, headers=auth_headers
        )

        assert webhook.status_code == 200
        assert completion.status_code == 200
        assert completion.json()["alreadyProcessed"] is True
        assert await _active_count(db_session, test_user) == 1
        assert pending.status == SUB_ACTIVE
        assert pending.end_date == add_months(pending.start_date, 1)

    async def test_completion_wins_while_webhook_in_flight(
        self, client: AsyncClient, auth_headers: dict, db_session: AsyncSession, test_user: User, pro_plan: Plan
    ):
        payment = await create_payment(
            db_session, test_user, metadata={"type": "subscription", "planId": str(pro_plan.id)}
        )

        webhook, completions = await _deliver_webhook(
            client, payment.external_payment_id, completion_first=auth_headers
        )

        assert webhook.status_code == 200
        assert completions[0].status_code == 200
        assert completions[0].json()["alreadyProcessed"] is False
        assert await _active_count(db_session, test_user) == 1
        assert payment.is_processed is True


class TestRenewalRace:
    async def _renewal(self, db: AsyncSession, user: User, plan: Plan):
        end = utcnow() + timedelta(days=10)
        current = await create_subscription(db, user, plan, status=SUB_ACTIVE, end_date=end)
        payment = await create_payment(
            db,
            user,
            metadata={
                "type": "subscription_renewal",
                "currentSubscriptionId": str(current.id),
                "planId": str(plan.id),
            },
        )
        return end, current, payment

    async def test_webhook_then_completion_extends_once(
        self, client: AsyncClient, auth_headers: dict, db_session: AsyncSession, test_user: User, pro_plan: Plan
    ):
        end, current, payment = await self._renewal(db_session, test_user, pro_plan)

        await _deliver_webhook(client, payment.external_payment_id)
        completion = await client.post(
            "/api/payments/complete", json={"paymentId": payment.external_payment_id}, headers=auth_headers
        )

        assert completion.json()["alreadyProcessed"] is True
        assert current.end_date == add_months(end, 1)
        assert await _active_count(db_session, test_user) == 1

    async def test_completion_wins_while_webhook_in_flight(
        self, client: AsyncClient, auth_headers: dict, db_session: AsyncSession, test_user: User, pro_plan: Plan
    ):
        end, current, payment = await self._renewal(db_session, test_user, pro_plan)

        webhook, completions = await _deliver_webhook(
            client, payment.external_payment_id, completion_first=auth_headers
        )

        assert webhook.status_code == 200
        assert completions[0].json()["alreadyProcessed"] is False
        assert current.end_date == add_months(end, 1)
        assert await _active_count(db_session, test_user) == 1
