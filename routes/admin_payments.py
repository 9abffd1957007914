from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from db import get_conn
from deps.api_key import require_api_key
from fundrelease.payments.model import TransferStatus, TransitionOutcome, TransitionPhase
from fundrelease.payments.repository import PostgresPaymentStore, list_failed_payments
from fundrelease.payments.state_machine import reset_target
from fundrelease.workers.batch import new_transition
from services.transition_ledger import get_ledger, list_transitions


logger = logging.getLogger("fundrelease.admin")

router = APIRouter(
    prefix="/v1/admin/payments",
    tags=["admin-payments"],
    dependencies=[Depends(require_api_key)],
)


class ResetRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


def get_store():
    return PostgresPaymentStore()


def get_transition_ledger():
    return get_ledger()


def _payment_id(raw: str) -> str:
    # Ids are uuids; anything else cannot exist.
    try:
        return str(uuid.UUID(raw))
    except ValueError:
        raise HTTPException(status_code=404, detail="PAYMENT_NOT_FOUND")


@router.get("/failed")
def admin_list_failed(limit: int = Query(default=50, ge=1, le=500)):
    with get_conn() as conn:
        rows = list_failed_payments(conn, limit=limit)
    return {"payments": rows, "count": len(rows), "limit": limit}


@router.get("/{payment_id}/transitions")
def admin_list_transitions(payment_id: str, limit: int = Query(default=200, ge=1, le=1000)):
    payment_id = _payment_id(payment_id)
    with get_conn() as conn:
        rows = list_transitions(conn, payment_id, limit=limit)
    return {"payment_id": payment_id, "transitions": rows, "count": len(rows)}


@router.post("/{payment_id}/reset")
def admin_reset_payment(
    payment_id: str,
    body: ResetRequest | None = None,
    store=Depends(get_store),
    ledger=Depends(get_transition_ledger),
):
    """
    FAILED -> PENDING (no transfer yet) or FAILED -> COMPLETED (transfer
    exists, payout is retried). The next batch run picks the record up.
    """
    payment_id = _payment_id(payment_id)
    record = store.get_payment(payment_id)
    if record is None:
        raise HTTPException(status_code=404, detail="PAYMENT_NOT_FOUND")
    if record.status != TransferStatus.FAILED:
        raise HTTPException(status_code=409, detail="PAYMENT_NOT_FAILED")

    target = reset_target(record.transfer_id)
    if not store.reset_failed(payment_id, new_status=target):
        raise HTTPException(status_code=409, detail="RESET_CONFLICT")

    reason = (body.reason if body else None) or ""
    logger.warning("payment=%s reset by operator FAILED->%s reason=%r", payment_id, target.value, reason)
    ledger.record_transition(
        new_transition(
            payment_id,
            TransferStatus.FAILED,
            target,
            phase=TransitionPhase.OPERATOR,
            outcome=TransitionOutcome.SUCCESS,
            at=datetime.now(timezone.utc),
            processor_ref=record.transfer_id,
            metadata={"reason": reason, "previous_error": record.last_error},
        )
    )
    return {"payment_id": payment_id, "status": target.value, "transfer_id": record.transfer_id}
