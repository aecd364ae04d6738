"""add_applied_at_to_payments

Revision ID: 7c1e5d2a9b60
Revises: 3f9c2a7b1d4e
Create Date: 2026-10-24 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '7c1e5d2a9b60'
down_revision: Union[str, Sequence[str], None] = '3f9c2a7b1d4e'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Step 1: Add nullable column
    op.add_column("payments", sa.Column("applied_at", sa.DateTime(), nullable=True))

    # Step 2: Backfill, every payment already flagged processed counts as applied
    op.execute("""
        UPDATE payments
        SET applied_at = COALESCE(processed_at, updated_at)
        WHERE is_processed
    """)


def downgrade() -> None:
    op.drop_column("payments", "applied_at")
