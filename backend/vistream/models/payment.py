"""Payment model — one row per payment attempt with any provider."""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, Boolean, ForeignKey, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vistream.database import Base, TimestampMixin, UUIDPrimaryKeyMixin

STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"
STATUS_EXPIRED = "expired"
STATUS_REFUNDED = "refunded"

PAYMENT_STATUSES: frozenset[str] = frozenset(
    {STATUS_PENDING, STATUS_COMPLETED, STATUS_FAILED, STATUS_CANCELLED, STATUS_EXPIRED, STATUS_REFUNDED}
)

# Legal forward transitions; anything else reported by a provider is ignored.
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    STATUS_PENDING: frozenset({STATUS_COMPLETED, STATUS_FAILED, STATUS_CANCELLED, STATUS_EXPIRED}),
    STATUS_COMPLETED: frozenset({STATUS_REFUNDED}),
    STATUS_FAILED: frozenset(),
    STATUS_CANCELLED: frozenset(),
    STATUS_EXPIRED: frozenset(),
    STATUS_REFUNDED: frozenset(),
}


class Payment(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A payment attempt and its reconciliation state."""

    __tablename__ = "payments"

    provider: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    external_payment_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    user_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    amount_value: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=STATUS_PENDING, index=True)
    method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    checkout_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    # Stripe sub-identifiers (webhooks reference these rather than our id)
    stripe_session_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    stripe_payment_intent_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    stripe_invoice_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    # client_secret, raw provider status, customer id, failure reason ...
    provider_data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    # ``metadata`` is reserved on declarative classes
    payment_metadata: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)
    status_history: Mapped[list[dict]] = mapped_column(JSON, nullable=False, default=list)

    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(nullable=True)
    webhook_processed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    # Set in the same flush as the subscription change this payment paid for
    applied_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_sync_at: Mapped[datetime | None] = mapped_column(nullable=True)

    is_processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    webhook_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Relationships
    user: Mapped["User | None"] = relationship("User", lazy="selectin")  # type: ignore[name-defined]  # noqa: F821

    __table_args__ = (
        UniqueConstraint("provider", "external_payment_id", name="uq_payments_provider_external_id"),
        Index("ix_payments_user_status", "user_id", "status"),
    )

    @property
    def client_secret(self) -> str | None:
        return (self.provider_data or {}).get("client_secret")

    @property
    def operation_type(self) -> str | None:
        return (self.payment_metadata or {}).get("type")

    def __repr__(self) -> str:
        return (
            f"<Payment(id={self.id}, provider={self.provider}, external_id={self.external_payment_id}, "
            f"status={self.status}, processed={self.is_processed})>"
        )
