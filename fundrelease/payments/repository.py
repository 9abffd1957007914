# fundrelease/payments/repository.py
from __future__ import annotations

from typing import Any, Optional, Protocol

from psycopg2.extras import RealDictCursor

from db import get_conn
from fundrelease.payments.model import PaymentRecord, TransferStatus
from fundrelease.payments.state_machine import (
    assert_operator_reset,
    assert_processor_ref_invariant,
    assert_transition,
)


_SELECT_COLUMNS = """
  p.id,
  p.payee_id,
  p.payee_account_id,
  p.payee_country,
  p.amount_cents,
  p.currency,
  p.captured_at,
  p.appointment_start,
  p.appointment_duration_minutes,
  p.status,
  p.transfer_id,
  p.payout_id,
  p.event_id,
  p.source_charge_id,
  p.attempt_count,
  p.last_error,
  p.last_error_code,
  p.last_attempt_at
"""


class PaymentStore(Protocol):
    def query_payments_by_status(self, status: TransferStatus) -> list[PaymentRecord]: ...

    def update_payment_status(
        self,
        payment_id: str,
        *,
        expected_prior: TransferStatus,
        new_status: TransferStatus,
        processor_id: Optional[str] = None,
        error: Optional[str] = None,
        error_code: Optional[str] = None,
    ) -> bool: ...

    def record_attempt_error(
        self,
        payment_id: str,
        *,
        expected_status: TransferStatus,
        error: str,
        error_code: Optional[str] = None,
    ) -> Optional[int]: ...

    def get_payment(self, payment_id: str) -> Optional[PaymentRecord]: ...

    def reset_failed(self, payment_id: str, *, new_status: TransferStatus) -> bool: ...


# ==========================================================
# Reads
# ==========================================================

def query_payments_by_status(conn, status: TransferStatus) -> list[PaymentRecord]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {_SELECT_COLUMNS}
            FROM app.payment_records p
            WHERE p.status = %s
            ORDER BY p.captured_at ASC
            """,
            (TransferStatus(status).value,),
        )
        return [PaymentRecord.from_row(dict(row)) for row in cur.fetchall()]


def get_payment(conn, payment_id: str) -> Optional[PaymentRecord]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {_SELECT_COLUMNS}
            FROM app.payment_records p
            WHERE p.id = %s::uuid
            """,
            (str(payment_id),),
        )
        row = cur.fetchone()
        return PaymentRecord.from_row(dict(row)) if row else None


# ==========================================================
# Updates (all conditional on the expected prior status)
# ==========================================================

def update_payment_status(
    conn,
    *,
    payment_id: str,
    expected_prior: TransferStatus,
    new_status: TransferStatus,
    processor_id: Optional[str] = None,
    error: Optional[str] = None,
    error_code: Optional[str] = None,
) -> bool:
    """
    Advance one record. Returns False when the row was not in
    expected_prior, i.e. a concurrent run already moved it.
    """
    assert_transition(expected_prior, new_status)
    assert_processor_ref_invariant(new_status, processor_id)

    transfer_id = processor_id if new_status == TransferStatus.COMPLETED else None
    payout_id = processor_id if new_status == TransferStatus.PAID_OUT else None

    cur = conn.cursor()
    cur.execute(
        """
        UPDATE app.payment_records
        SET
          status = %s,
          transfer_id = COALESCE(%s, transfer_id),
          payout_id = COALESCE(%s, payout_id),
          last_error = %s,
          last_error_code = %s,
          last_attempt_at = now(),
          updated_at = now()
        WHERE id = %s::uuid
          AND status = %s
        """,
        (
            TransferStatus(new_status).value,
            transfer_id,
            payout_id,
            error,
            error_code,
            str(payment_id),
            TransferStatus(expected_prior).value,
        ),
    )
    return cur.rowcount == 1


def record_attempt_error(
    conn,
    *,
    payment_id: str,
    expected_status: TransferStatus,
    error: str,
    error_code: Optional[str] = None,
) -> Optional[int]:
    """
    Transient failure bookkeeping: status is left alone. Returns the new
    attempt_count, or None when the row moved on in the meantime.
    """
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE app.payment_records
            SET
              attempt_count = attempt_count + 1,
              last_error = %s,
              last_error_code = %s,
              last_attempt_at = now(),
              updated_at = now()
            WHERE id = %s::uuid
              AND status = %s
            RETURNING attempt_count
            """,
            (error, error_code, str(payment_id), TransferStatus(expected_status).value),
        )
        row = cur.fetchone()
        return int(row[0]) if row else None


def reset_failed(conn, *, payment_id: str, new_status: TransferStatus) -> bool:
    assert_operator_reset(TransferStatus.FAILED, new_status)
    cur = conn.cursor()
    cur.execute(
        """
        UPDATE app.payment_records
        SET
          status = %s,
          attempt_count = 0,
          last_error = NULL,
          last_error_code = NULL,
          updated_at = now()
        WHERE id = %s::uuid
          AND status = 'FAILED'
          AND (%s <> 'COMPLETED' OR transfer_id IS NOT NULL)
          AND (%s <> 'PENDING' OR transfer_id IS NULL)
        """,
        (
            TransferStatus(new_status).value,
            str(payment_id),
            TransferStatus(new_status).value,
            TransferStatus(new_status).value,
        ),
    )
    return cur.rowcount == 1


def list_failed_payments(conn, *, limit: int = 100) -> list[dict[str, Any]]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {_SELECT_COLUMNS}, p.updated_at
            FROM app.payment_records p
            WHERE p.status = 'FAILED'
            ORDER BY p.updated_at DESC
            LIMIT %s
            """,
            (limit,),
        )
        return [dict(row) for row in cur.fetchall()]


class PostgresPaymentStore:
    """
    PaymentStore over app.payment_records. Every call runs in its own
    transaction so a confirmed processor success is committed before the
    batch moves on to the next record.
    """

    def query_payments_by_status(self, status: TransferStatus) -> list[PaymentRecord]:
        with get_conn() as conn:
            return query_payments_by_status(conn, status)

    def update_payment_status(
        self,
        payment_id: str,
        *,
        expected_prior: TransferStatus,
        new_status: TransferStatus,
        processor_id: Optional[str] = None,
        error: Optional[str] = None,
        error_code: Optional[str] = None,
    ) -> bool:
        with get_conn() as conn:
            return update_payment_status(
                conn,
                payment_id=payment_id,
                expected_prior=expected_prior,
                new_status=new_status,
                processor_id=processor_id,
                error=error,
                error_code=error_code,
            )

    def record_attempt_error(
        self,
        payment_id: str,
        *,
        expected_status: TransferStatus,
        error: str,
        error_code: Optional[str] = None,
    ) -> Optional[int]:
        with get_conn() as conn:
            return record_attempt_error(
                conn,
                payment_id=payment_id,
                expected_status=expected_status,
                error=error,
                error_code=error_code,
            )

    def get_payment(self, payment_id: str) -> Optional[PaymentRecord]:
        with get_conn() as conn:
            return get_payment(conn, payment_id)

    def reset_failed(self, payment_id: str, *, new_status: TransferStatus) -> bool:
        with get_conn() as conn:
            return reset_failed(conn, payment_id=payment_id, new_status=new_status)
