"""append-only payment_transitions ledger

Revision ID: 0002_payment_transitions
Revises: 0001_payment_records
Create Date: 2026-09-28 00:30:00.000000

"""

from __future__ import annotations

from alembic import op


revision = "0002_payment_transitions"
down_revision = "0001_payment_records"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS app.payment_transitions (
            id bigserial PRIMARY KEY,
            payment_record_id uuid NOT NULL REFERENCES app.payment_records(id),
            prior_status text NOT NULL,
            new_status text NOT NULL,
            phase text NOT NULL CHECK (phase IN ('TRANSFER', 'PAYOUT', 'OPERATOR')),
            outcome text NOT NULL CHECK (outcome IN ('SUCCESS', 'FAILURE')),
            error_detail text,
            processor_ref text,
            metadata jsonb NOT NULL DEFAULT '{}'::jsonb,
            occurred_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )
    op.execute(
        """
        CREATE INDEX IF NOT EXISTS ix_payment_transitions_record
        ON app.payment_transitions (payment_record_id, occurred_at);
        """
    )
    # Append-only: reject UPDATE/DELETE.
    op.execute(
        """
        CREATE OR REPLACE FUNCTION app.payment_transitions_immutable()
        RETURNS trigger LANGUAGE plpgsql AS $$
        BEGIN
          RAISE EXCEPTION 'payment_transitions is append-only';
        END;
        $$;
        """
    )
    op.execute(
        """
        DROP TRIGGER IF EXISTS trg_payment_transitions_immutable ON app.payment_transitions;
        CREATE TRIGGER trg_payment_transitions_immutable
        BEFORE UPDATE OR DELETE ON app.payment_transitions
        FOR EACH ROW EXECUTE FUNCTION app.payment_transitions_immutable();
        """
    )


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_payment_transitions_immutable ON app.payment_transitions;")
    op.execute("DROP FUNCTION IF EXISTS app.payment_transitions_immutable();")
    op.execute("DROP TABLE IF EXISTS app.payment_transitions;")
