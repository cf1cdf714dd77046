"""payout schema

Revision ID: 0001_payout_schema
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""

from __future__ import annotations

from alembic import op


revision = "0001_payout_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto;")

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS system_config (
            key text PRIMARY KEY,
            value text NOT NULL,
            updated_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )

    # PENDING is accepted for rows written before READY existed; reads map it to READY.
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS payouts (
            id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
            payee_id text NOT NULL,
            period_start timestamptz NOT NULL,
            period_end timestamptz NOT NULL,
            consultations_count integer NOT NULL DEFAULT 0,
            interactions_count integer NOT NULL DEFAULT 0,
            amount_due numeric(14,2) NOT NULL CHECK (amount_due >= 0),
            currency char(3) NOT NULL,
            status text NOT NULL DEFAULT 'READY'
                CHECK (status IN ('PENDING', 'READY', 'APPROVED', 'PROCESSING', 'PAID', 'FAILED')),
            provider text
                CHECK (provider IS NULL OR provider IN ('STRIPE_CONNECT', 'PAYPAL_PAYOUTS', 'MPESA_B2C', 'BANK_TRANSFER')),
            provider_reference text,
            reference_source text
                CHECK (reference_source IS NULL OR reference_source IN ('HEURISTIC', 'DISPATCH', 'PROVIDER', 'ADMIN')),
            approved_by text,
            processed_at timestamptz,
            notes text,
            created_at timestamptz NOT NULL DEFAULT now(),
            updated_at timestamptz NOT NULL DEFAULT now(),
            CONSTRAINT payouts_period_order CHECK (period_start <= period_end),
            CONSTRAINT payouts_payee_period_uniq UNIQUE (payee_id, period_start, period_end)
        );
        """
    )
    op.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS payouts_provider_reference_uniq
        ON payouts (provider_reference)
        WHERE provider_reference IS NOT NULL;
        """
    )
    op.execute("CREATE INDEX IF NOT EXISTS payouts_status_created_idx ON payouts (status, created_at DESC);")
    op.execute("CREATE INDEX IF NOT EXISTS payouts_payee_created_idx ON payouts (payee_id, created_at DESC);")

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS payout_items (
            id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
            payout_id uuid NOT NULL REFERENCES payouts(id) ON DELETE CASCADE,
            activity_id text NOT NULL,
            description text NOT NULL,
            amount numeric(14,2) NOT NULL,
            currency char(3) NOT NULL,
            created_at timestamptz NOT NULL DEFAULT now(),
            CONSTRAINT payout_items_activity_uniq UNIQUE (payout_id, activity_id)
        );
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS payout_webhook_events (
            id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
            provider text NOT NULL,
            path text NOT NULL,
            request_id text,
            received_at timestamptz NOT NULL DEFAULT now(),
            signature_valid boolean,
            signature_error text,
            event_id text,
            event_type text,
            provider_ref text,
            status_raw text,
            amount text,
            body jsonb,
            body_raw text,
            payout_id uuid,
            payout_status_before text,
            payout_status_after text,
            match_method text,
            candidates jsonb NOT NULL DEFAULT '[]'::jsonb,
            outcome text NOT NULL,
            reason text
        );
        """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS payout_webhook_events_received_idx ON payout_webhook_events (received_at DESC);"
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS payout_webhook_events_payout_idx ON payout_webhook_events (payout_id);"
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS payout_audit_log (
            id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
            actor text NOT NULL,
            action text NOT NULL,
            payout_id uuid,
            metadata jsonb NOT NULL DEFAULT '{}'::jsonb,
            created_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )
    op.execute("CREATE INDEX IF NOT EXISTS payout_audit_log_payout_idx ON payout_audit_log (payout_id, created_at);")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS payout_audit_log;")
    op.execute("DROP TABLE IF EXISTS payout_webhook_events;")
    op.execute("DROP TABLE IF EXISTS payout_items;")
    op.execute("DROP TABLE IF EXISTS payouts;")
    op.execute("DROP TABLE IF EXISTS system_config;")
