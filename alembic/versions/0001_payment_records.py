"""payment_records table

Revision ID: 0001_payment_records
Revises:
Create Date: 2026-09-28 00:00:00.000000

"""

from __future__ import annotations

from alembic import op


revision = "0001_payment_records"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("CREATE SCHEMA IF NOT EXISTS app;")
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto;")
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.payment_records (
            id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
            payee_id text NOT NULL,
            payee_account_id text,
            payee_country text,
            amount_cents bigint NOT NULL CHECK (amount_cents > 0),
            currency text NOT NULL,
            captured_at timestamptz NOT NULL,
            appointment_start timestamptz NOT NULL,
            appointment_duration_minutes integer NOT NULL DEFAULT 0 CHECK (appointment_duration_minutes >= 0),
            status text NOT NULL DEFAULT 'PENDING',
            transfer_id text,
            payout_id text,
            event_id text,
            source_charge_id text,
            attempt_count integer NOT NULL DEFAULT 0,
            last_error text,
            last_error_code text,
            last_attempt_at timestamptz,
            created_at timestamptz NOT NULL DEFAULT now(),
            updated_at timestamptz NOT NULL DEFAULT now(),
            CONSTRAINT payment_records_status_chk
              CHECK (status IN ('PENDING', 'COMPLETED', 'PAID_OUT', 'FAILED')),
            CONSTRAINT payment_records_completed_has_transfer_chk
              CHECK (status NOT IN ('COMPLETED', 'PAID_OUT') OR transfer_id IS NOT NULL),
            CONSTRAINT payment_records_paid_out_has_payout_chk
              CHECK (status <> 'PAID_OUT' OR payout_id IS NOT NULL)
        );
        """
    )
    op.execute(
        """
        CREATE INDEX IF NOT EXISTS ix_payment_records_status_captured
        ON app.payment_records (status, captured_at);
        """
    )
    op.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS ux_payment_records_transfer_id
        ON app.payment_records (transfer_id)
        WHERE transfer_id IS NOT NULL;
        """
    )
    op.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS ux_payment_records_payout_id
        ON app.payment_records (payout_id)
        WHERE payout_id IS NOT NULL;
        """
    )


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS app.ux_payment_records_payout_id;")
    op.execute("DROP INDEX IF EXISTS app.ux_payment_records_transfer_id;")
    op.execute("DROP INDEX IF EXISTS app.ix_payment_records_status_captured;")
    op.execute("DROP TABLE IF EXISTS app.payment_records;")
