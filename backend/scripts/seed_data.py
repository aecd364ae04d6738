"""Seed the database with the Vistream plan catalog and payment gateways.

Gateway credentials come from the environment (MOLLIE_API_KEY,
MOLLIE_WEBHOOK_SECRET, STRIPE_SECRET_KEY, STRIPE_PUBLISHABLE_KEY,
STRIPE_WEBHOOK_SECRET). A gateway without an API key is created inactive.

Run inside Docker:
    docker compose exec backend python -m scripts.seed_data
"""

import asyncio
import sys
from pathlib import Path

# Add backend to path so imports work when run as a script
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from sqlalchemy import select

from vistream.config import settings
from vistream.database import async_session_factory, engine
from vistream.models.payment_gateway import PROVIDER_MOLLIE, PROVIDER_STRIPE, PaymentGateway
from vistream.models.plan import Plan
from vistream.models.user import ROLE_ADMIN, User

# ---------------------------------------------------------------------------
# Seed data definitions
# ---------------------------------------------------------------------------

ADMIN_USER = {
    "email": "admin@vistream.tv",
    "first_name": "Admin",
    "last_name": "Vistream",
}

PLANS = [
    {
        "name": "Essentiel",
        "slug": "essentiel-mensuel",
        "description": "1 écran, qualité HD",
        "price": "9€",
        "price_cents": 900,
        "period": "1 mois",
        "period_unit": "month",
        "period_count": 1,
        "features": ["1 écran", "HD 1080p", "Catalogue complet"],
        "order": 1,
    },
    {
        "name": "Pro",
        "slug": "pro-mensuel",
        "description": "4 écrans, qualité 4K",
        "price": "29€",
        "price_cents": 2900,
        "period": "1 mois",
        "period_unit": "month",
        "period_count": 1,
        "features": ["4 écrans", "4K HDR", "Téléchargements hors ligne"],
        "highlight": True,
        "order": 2,
    },
    {
        "name": "Pro Annuel",
        "slug": "pro-annuel",
        "description": "Le plan Pro, deux mois offerts",
        "price": "290€",
        "price_cents": 29000,
        "period": "12 mois",
        "period_unit": "year",
        "period_count": 1,
        "features": ["4 écrans", "4K HDR", "Téléchargements hors ligne", "2 mois offerts"],
        "order": 3,
    },
    {
        "name": "Pro 2 ans",
        "slug": "pro-biennal",
        "description": "Le plan Pro pour 24 mois",
        "price": "520€",
        "price_cents": 52000,
        "period": "24 mois",
        "period_unit": "year",
        "period_count": 2,
        "features": ["4 écrans", "4K HDR", "Téléchargements hors ligne", "Prix garanti 2 ans"],
        "order": 4,
    },
]


def _gateways() -> list[dict]:
    return [
        {
            "provider": PROVIDER_MOLLIE,
            "display_name": "Mollie",
            "is_active": bool(settings.mollie_api_key),
            "test_mode": settings.mollie_api_key.startswith("test_") or not settings.mollie_api_key,
            "priority": 10,
            "api_key": settings.mollie_api_key or None,
            "webhook_secret": settings.mollie_webhook_secret or None,
        },
        {
            "provider": PROVIDER_STRIPE,
            "display_name": "Stripe",
            "is_active": bool(settings.stripe_secret_key),
            "test_mode": settings.stripe_secret_key.startswith("sk_test_") or not settings.stripe_secret_key,
            "priority": 5,
            "api_key": settings.stripe_secret_key or None,
            "publishable_key": settings.stripe_publishable_key or None,
            "webhook_secret": settings.stripe_webhook_secret or None,
        },
    ]


async def seed() -> None:
    """Upsert plans (by slug), gateways (by provider) and the admin user.

    Idempotent: existing rows are updated in place.
    """
    async with async_session_factory() as session:
        # ------------------------------------------------------------------
        # 1. Plans
        # ------------------------------------------------------------------
        for plan_data in PLANS:
            result = await session.execute(select(Plan).where(Plan.slug == plan_data["slug"]))
            plan = result.scalar_one_or_none()
            if plan is None:
                plan = Plan(**plan_data)
                session.add(plan)
                print(f"✅ Created plan {plan_data['name']} ({plan_data['price']} / {plan_data['period']})")
            else:
                for key, value in plan_data.items():
                    setattr(plan, key, value)
                print(f"   Updated plan {plan_data['name']}")
        await session.flush()

        # ------------------------------------------------------------------
        # 2. Payment gateways
        # ------------------------------------------------------------------
        for gateway_data in _gateways():
            result = await session.execute(
                select(PaymentGateway).where(PaymentGateway.provider == gateway_data["provider"])
            )
            gateway = result.scalar_one_or_none()
            if gateway is None:
                gateway = PaymentGateway(**gateway_data)
                session.add(gateway)
            else:
                for key, value in gateway_data.items():
                    setattr(gateway, key, value)
            state = "active" if gateway_data["is_active"] else "inactive (no API key)"
            signed = "signed" if gateway_data["webhook_secret"] else "UNVERIFIED webhooks"
            print(f"   💳 {gateway_data['display_name']}: {state}, {signed}")
        await session.flush()

        # ------------------------------------------------------------------
        # 3. Admin user
        # ------------------------------------------------------------------
        result = await session.execute(select(User).where(User.email == ADMIN_USER["email"]))
        if result.scalar_one_or_none() is None:
            session.add(User(role=ROLE_ADMIN, is_active=True, **ADMIN_USER))
            print(f"✅ Created admin user {ADMIN_USER['email']}")

        await session.commit()

        print()
        print("=" * 60)
        print("📊 Seed Summary")
        print("=" * 60)
        print(f"   Plans:    {len(PLANS)}")
        print("   Gateways: 2 (mollie, stripe)")
        print("=" * 60)

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed())
