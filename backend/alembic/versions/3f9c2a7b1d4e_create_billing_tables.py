"""create_billing_tables

Revision ID: 3f9c2a7b1d4e
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9c2a7b1d4e'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False, server_default=""),
        sa.Column("last_name", sa.String(100), nullable=False, server_default=""),
        sa.Column("role", sa.String(20), nullable=False, server_default="customer"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("affiliation_code", sa.String(4), nullable=True, unique=True),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_created_at", "users", ["created_at"])

    op.create_table(
        "plans",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column("name", sa.String(50), nullable=False),
        sa.Column("slug", sa.String(80), nullable=False, unique=True),
        sa.Column("description", sa.String(200), nullable=False, server_default=""),
        sa.Column("price", sa.String(50), nullable=False),
        sa.Column("price_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(3), nullable=False, server_default="EUR"),
        sa.Column("period", sa.String(50), nullable=False),
        sa.Column("period_unit", sa.String(10), nullable=True),
        sa.Column("period_count", sa.Integer(), nullable=True),
        sa.Column("features", sa.JSON(), nullable=False),
        sa.Column("highlight", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("order", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
    )
    op.create_index("ix_plans_is_active", "plans", ["is_active"])
    op.create_index("ix_plans_created_at", "plans", ["created_at"])

    op.create_table(
        "payment_gateways",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column("provider", sa.String(20), nullable=False),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("test_mode", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("api_key", sa.String(255), nullable=True),
        sa.Column("publishable_key", sa.String(255), nullable=True),
        sa.Column("webhook_secret", sa.String(255), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_payment_gateways_provider", "payment_gateways", ["provider"])
    op.create_index("ix_payment_gateways_is_active", "payment_gateways", ["is_active"])
    op.create_index("ix_payment_gateways_created_at", "payment_gateways", ["created_at"])

    op.create_table(
        "payments",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column("provider", sa.String(20), nullable=False),
        sa.Column("external_payment_id", sa.String(255), nullable=True),
        sa.Column("user_id", sa.UUID(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("amount_value", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="EUR"),
        sa.Column("description", sa.String(255), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("method", sa.String(50), nullable=True),
        sa.Column("checkout_url", sa.String(1024), nullable=True),
        sa.Column("stripe_session_id", sa.String(255), nullable=True),
        sa.Column("stripe_payment_intent_id", sa.String(255), nullable=True),
        sa.Column("stripe_invoice_id", sa.String(255), nullable=True),
        sa.Column("stripe_subscription_id", sa.String(255), nullable=True),
        sa.Column("provider_data", sa.JSON(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("status_history", sa.JSON(), nullable=False),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("webhook_processed_at", sa.DateTime(), nullable=True),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.Column("last_sync_at", sa.DateTime(), nullable=True),
        sa.Column("is_processed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("webhook_attempts", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("provider", "external_payment_id", name="uq_payments_provider_external_id"),
    )
    for column in (
        "provider",
        "user_id",
        "status",
        "stripe_session_id",
        "stripe_payment_intent_id",
        "stripe_invoice_id",
        "stripe_subscription_id",
        "is_processed",
        "created_at",
    ):
        op.create_index(f"ix_payments_{column}", "payments", [column])
    op.create_index("ix_payments_user_status", "payments", ["user_id", "status"])

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column("user_id", sa.UUID(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("plan_id", sa.UUID(), sa.ForeignKey("plans.id", ondelete="SET NULL"), nullable=True),
        sa.Column("plan_name", sa.String(50), nullable=False),
        sa.Column("plan_price", sa.String(50), nullable=False),
        sa.Column("plan_period", sa.String(50), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("start_date", sa.DateTime(), nullable=True),
        sa.Column("end_date", sa.DateTime(), nullable=True),
        sa.Column("auto_renew", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("affiliation_code", sa.String(4), nullable=True),
        sa.Column(
            "affiliated_user_id", sa.UUID(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("sale_value", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column(
            "last_payment_id", sa.UUID(), sa.ForeignKey("payments.id", ondelete="SET NULL"), nullable=True
        ),
        *_timestamps(),
    )
    for column in ("user_id", "plan_id", "status", "affiliation_code", "affiliated_user_id", "created_at"):
        op.create_index(f"ix_subscriptions_{column}", "subscriptions", [column])
    op.create_index("ix_subscriptions_user_status", "subscriptions", ["user_id", "status"])


def downgrade() -> None:
    op.drop_table("subscriptions")
    op.drop_table("payments")
    op.drop_table("payment_gateways")
    op.drop_table("plans")
    op.drop_table("users")
