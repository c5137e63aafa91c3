"""payout engine schema

Revision ID: 0001_payout_engine_schema
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from __future__ import annotations

from alembic import op


revision = "0001_payout_engine_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("CREATE SCHEMA IF NOT EXISTS payout_engine;")

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS payout_engine.recipients (
          id uuid PRIMARY KEY,
          rail text NOT NULL,
          creator_id text NOT NULL,
          detail_hash text NOT NULL,
          provider_recipient_id text NOT NULL,
          currency char(3) NOT NULL,
          created_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )
    op.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS ux_recipients_creator_detail_rail
        ON payout_engine.recipients (creator_id, detail_hash, rail);
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS payout_engine.payouts (
          id uuid PRIMARY KEY,
          creator_id text NOT NULL,
          amount numeric(20, 4) NOT NULL CHECK (amount > 0),
          currency char(3) NOT NULL,
          rail text NULL,
          recipient_id uuid NULL REFERENCES payout_engine.recipients(id),
          provider_transfer_id text NULL,
          fee numeric(20, 4) NULL,
          reference text NOT NULL,
          reason text NULL,
          bank_details jsonb NULL,
          metadata jsonb NOT NULL DEFAULT '{}'::jsonb,
          status text NOT NULL CHECK (status IN (
            'pending', 'recipient_resolving', 'transfer_creating',
            'processing', 'completed', 'failed', 'cancelled'
          )),
          status_history jsonb NOT NULL DEFAULT '[]'::jsonb,
          applied_event_ids jsonb NOT NULL DEFAULT '[]'::jsonb,
          last_error text NULL,
          error_code text NULL,
          retryable boolean NULL,
          retry_of uuid NULL REFERENCES payout_engine.payouts(id),
          created_at timestamptz NOT NULL DEFAULT now(),
          updated_at timestamptz NOT NULL DEFAULT now(),
          deleted_at timestamptz NULL,
          CONSTRAINT processing_has_transfer
            CHECK (status <> 'processing' OR provider_transfer_id IS NOT NULL)
        );
        """
    )
    op.execute(
        """
        CREATE INDEX IF NOT EXISTS ix_payouts_provider_transfer_id
        ON payout_engine.payouts (provider_transfer_id)
        WHERE provider_transfer_id IS NOT NULL;
        """
    )
    # reference is shared by a payout and its retry
    op.execute(
        """
        CREATE INDEX IF NOT EXISTS ix_payouts_reference
        ON payout_engine.payouts (reference);
        """
    )
    op.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS ux_payouts_retry_of
        ON payout_engine.payouts (retry_of)
        WHERE retry_of IS NOT NULL;
        """
    )
    op.execute(
        """
        CREATE INDEX IF NOT EXISTS ix_payouts_creator_created
        ON payout_engine.payouts (creator_id, created_at DESC)
        WHERE deleted_at IS NULL;
        """
    )
    op.execute(
        """
        CREATE INDEX IF NOT EXISTS ix_payouts_unsettled_updated
        ON payout_engine.payouts (updated_at)
        WHERE status IN ('pending', 'recipient_resolving', 'transfer_creating', 'processing');
        """
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS payout_engine.payouts;")
    op.execute("DROP TABLE IF EXISTS payout_engine.recipients;")
    op.execute("DROP SCHEMA IF EXISTS payout_engine;")
