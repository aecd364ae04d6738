"""SQLAlchemy models for Vistream billing.

All models are imported here so that Alembic's autogenerate can discover
them via Base.metadata. If you add a new model, import it in this file.
"""

from vistream.models.payment import Payment
from vistream.models.payment_gateway import PaymentGateway
from vistream.models.plan import Plan
from vistream.models.subscription import Subscription
from vistream.models.user import User

__all__ = [
    "Payment",
    "PaymentGateway",
    "Plan",
    "Subscription",
    "User",
]
