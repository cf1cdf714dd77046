"""dispatch claim on payouts

Revision ID: 0002_dispatch_claim
Revises: 0001_payout_schema
Create Date: 2026-10-18 00:00:00.000000

"""

from __future__ import annotations

from alembic import op


revision = "0002_dispatch_claim"
down_revision = "0001_payout_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Set while a transfer request is in flight; only one trigger may hold it.
    op.execute("ALTER TABLE payouts ADD COLUMN IF NOT EXISTS dispatch_claimed_at timestamptz;")
    op.execute("ALTER TABLE payouts ADD COLUMN IF NOT EXISTS dispatch_claimed_by text;")


def downgrade() -> None:
    op.execute("ALTER TABLE payouts DROP COLUMN IF EXISTS dispatch_claimed_by;")
    op.execute("ALTER TABLE payouts DROP COLUMN IF EXISTS dispatch_claimed_at;")
