"""PaymentGateway model — provider credentials managed from the admin settings."""

from sqlalchemy import Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from vistream.database import Base, TimestampMixin, UUIDPrimaryKeyMixin

PROVIDER_MOLLIE = "mollie"
PROVIDER_STRIPE = "stripe"
PROVIDER_PAYPAL = "paypal"
VALID_PROVIDERS: frozenset[str] = frozenset({PROVIDER_MOLLIE, PROVIDER_STRIPE, PROVIDER_PAYPAL})


class PaymentGateway(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Configuration of one payment provider.

    Only one row per provider is expected to be active at a time; when several
    are, the highest ``priority`` wins.
    """

    __tablename__ = "payment_gateways"

    provider: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    test_mode: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Credentials (Mollie uses api_key; Stripe uses api_key as the secret key)
    api_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    publishable_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    webhook_secret: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<PaymentGateway(id={self.id}, provider={self.provider}, active={self.is_active})>"
