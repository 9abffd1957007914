from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Any


class TransferStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    PAID_OUT = "PAID_OUT"
    FAILED = "FAILED"


class TransitionPhase(str, Enum):
    TRANSFER = "TRANSFER"
    PAYOUT = "PAYOUT"
    OPERATOR = "OPERATOR"


class TransitionOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


@dataclass(frozen=True)
class PaymentRecord:
    id: str
    payee_id: str
    payee_account_id: Optional[str]
    payee_country: Optional[str]
    amount_cents: int
    currency: str
    captured_at: datetime
    appointment_start: datetime
    appointment_duration_minutes: int
    status: TransferStatus
    transfer_id: Optional[str] = None
    payout_id: Optional[str] = None
    event_id: Optional[str] = None
    source_charge_id: Optional[str] = None
    attempt_count: int = 0
    last_error: Optional[str] = None
    last_error_code: Optional[str] = None
    last_attempt_at: Optional[datetime] = None

    @property
    def appointment_end(self) -> datetime:
        return self.appointment_start + timedelta(minutes=int(self.appointment_duration_minutes or 0))

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "PaymentRecord":
        return cls(
            id=str(row["id"]),
            payee_id=str(row["payee_id"]),
            payee_account_id=row.get("payee_account_id"),
            payee_country=row.get("payee_country"),
            amount_cents=int(row["amount_cents"]),
            currency=(row.get("currency") or "").strip().lower(),
            captured_at=row["captured_at"],
            appointment_start=row["appointment_start"],
            appointment_duration_minutes=int(row.get("appointment_duration_minutes") or 0),
            status=TransferStatus(row["status"]),
            transfer_id=row.get("transfer_id"),
            payout_id=row.get("payout_id"),
            event_id=row.get("event_id"),
            source_charge_id=row.get("source_charge_id"),
            attempt_count=int(row.get("attempt_count") or 0),
            last_error=row.get("last_error"),
            last_error_code=row.get("last_error_code"),
            last_attempt_at=row.get("last_attempt_at"),
        )


@dataclass(frozen=True)
class TransitionRecord:
    payment_record_id: str
    prior_status: TransferStatus
    new_status: TransferStatus
    occurred_at: datetime
    outcome: TransitionOutcome
    phase: TransitionPhase
    error_detail: Optional[str] = None
    processor_ref: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {
            "payment_record_id": self.payment_record_id,
            "prior_status": self.prior_status.value,
            "new_status": self.new_status.value,
            "occurred_at": self.occurred_at.isoformat(),
            "outcome": self.outcome.value,
            "phase": self.phase.value,
            "error_detail": self.error_detail,
            "processor_ref": self.processor_ref,
            "metadata": dict(self.metadata),
        }
