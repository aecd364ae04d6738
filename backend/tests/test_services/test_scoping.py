"""Tests for role-based row visibility."""

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vistream.billing.errors import AccessDenied
from vistream.models.payment import Payment
from vistream.models.plan import Plan
from vistream.models.subscription import SUB_ACTIVE, Subscription
from vistream.models.user import ROLE_ADMIN, ROLE_AFFILIATE, ROLE_CUSTOMER
from vistream.services.scoping import scope_to_caller

from tests.factories import create_payment, create_subscription, create_user


@pytest_asyncio.fixture
async def referral_setup(db_session: AsyncSession, pro_plan: Plan):
    """One affiliate with a referred customer, plus an unrelated customer."""
    affiliate = await create_user(db_session, role=ROLE_AFFILIATE, affiliation_code="AB12")
    referred = await create_user(db_session)
    stranger = await create_user(db_session)

    referred_sub = await create_subscription(
        db_session,
        referred,
        pro_plan,
        status=SUB_ACTIVE,
        affiliation_code="AB12",
        affiliated_user_id=affiliate.id,
    )
    stranger_sub = await create_subscription(db_session, stranger, pro_plan, status=SUB_ACTIVE)
    referred_payment = await create_payment(db_session, referred, status="completed")
    stranger_payment = await create_payment(db_session, stranger, status="completed")
    return {
        "affiliate": affiliate,
        "referred_sub": referred_sub,
        "stranger_sub": stranger_sub,
        "referred_payment": referred_payment,
        "stranger_payment": stranger_payment,
    }


class TestScopeToCaller:
    async def test_admin_sees_everything(self, db_session: AsyncSession, referral_setup):
        admin = await create_user(db_session, role=ROLE_ADMIN)

        query = scope_to_caller(admin.role, admin.id, select(Subscription), Subscription)
        rows = set((await db_session.execute(query)).scalars().all())

        assert {referral_setup["referred_sub"], referral_setup["stranger_sub"]} <= rows

    async def test_affiliate_sees_referred_subscriptions(self, db_session: AsyncSession, referral_setup):
        affiliate = referral_setup["affiliate"]

        query = scope_to_caller(affiliate.role, affiliate.id, select(Subscription), Subscription)
        rows = (await db_session.execute(query)).scalars().all()

        assert [row.id for row in rows] == [referral_setup["referred_sub"].id]

    async def test_affiliate_sees_referred_payments(self, db_session: AsyncSession, referral_setup):
        affiliate = referral_setup["affiliate"]

        query = scope_to_caller(affiliate.role, affiliate.id, select(Payment), Payment)
        rows = (await db_session.execute(query)).scalars().all()

        assert [row.id for row in rows] == [referral_setup["referred_payment"].id]

    async def test_customer_refused(self, db_session: AsyncSession):
        customer = await create_user(db_session, role=ROLE_CUSTOMER)

        with pytest.raises(AccessDenied) as exc_info:
            scope_to_caller(customer.role, customer.id, select(Payment), Payment)
        assert exc_info.value.status_code == 403
