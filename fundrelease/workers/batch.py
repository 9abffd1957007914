from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, TypeVar

from fundrelease.payments.model import (
    PaymentRecord,
    TransferStatus,
    TransitionOutcome,
    TransitionPhase,
    TransitionRecord,
)


T = TypeVar("T")


class BatchStartError(Exception):
    """The batch could not start (store unreachable, no processor configured)."""


class PersistenceError(Exception):
    """A store call failed mid-batch; no further processor calls may be issued."""


@dataclass
class BatchSummary:
    batch: str
    started_at: datetime
    found: int = 0
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    retried: int = 0
    skipped: int = 0
    conflicts: int = 0
    aborted: bool = False
    abort_reason: str | None = None
    failed_ids: list[str] = field(default_factory=list)
    retry_ids: list[str] = field(default_factory=list)
    skip_reasons: dict[str, int] = field(default_factory=dict)

    def skip(self, reason: str) -> None:
        self.skipped += 1
        self.skip_reasons[reason] = self.skip_reasons.get(reason, 0) + 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch": self.batch,
            "started_at": self.started_at.isoformat(),
            "found": self.found,
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "failed_ids": list(self.failed_ids),
            "retried": self.retried,
            "retry_ids": list(self.retry_ids),
            "skipped": self.skipped,
            "skip_reasons": dict(self.skip_reasons),
            "conflicts": self.conflicts,
            "aborted": self.aborted,
            "abort_reason": self.abort_reason,
        }


def store_call(fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    try:
        return fn(*args, **kwargs)
    except Exception as exc:
        raise PersistenceError(f"{type(exc).__name__}: {exc}") from exc


def new_transition(
    record_id: str,
    prior: TransferStatus,
    new: TransferStatus,
    *,
    phase: TransitionPhase,
    outcome: TransitionOutcome,
    at: datetime,
    error: str | None = None,
    processor_ref: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> TransitionRecord:
    return TransitionRecord(
        payment_record_id=record_id,
        prior_status=prior,
        new_status=new,
        occurred_at=at,
        outcome=outcome,
        phase=phase,
        error_detail=error,
        processor_ref=processor_ref,
        metadata=metadata or {},
    )


def handle_transient(
    *,
    store,
    ledger,
    summary: BatchSummary,
    record: PaymentRecord,
    phase: TransitionPhase,
    error: str,
    error_code: str | None,
    max_attempts: int,
    at: datetime,
) -> str:
    """
    Leave the record in its current status and count the attempt. With a
    positive max_attempts the record moves to FAILED once the cap is hit.
    """
    status = record.status
    attempts = store_call(
        store.record_attempt_error,
        record.id,
        expected_status=status,
        error=error,
        error_code=error_code,
    )
    if attempts is None:
        summary.conflicts += 1
        return "conflict"

    if max_attempts > 0 and attempts >= max_attempts:
        detail = f"Max attempts exceeded ({attempts}): {error}"
        moved = store_call(
            store.update_payment_status,
            record.id,
            expected_prior=status,
            new_status=TransferStatus.FAILED,
            error=detail,
            error_code=error_code,
        )
        if not moved:
            summary.conflicts += 1
            return "conflict"
        summary.failed += 1
        summary.failed_ids.append(record.id)
        ledger.record_transition(
            new_transition(
                record.id,
                status,
                TransferStatus.FAILED,
                phase=phase,
                outcome=TransitionOutcome.FAILURE,
                at=at,
                error=detail,
                metadata={"error_code": error_code, "attempts": attempts},
            )
        )
        return "failed"

    summary.retried += 1
    summary.retry_ids.append(record.id)
    ledger.record_transition(
        new_transition(
            record.id,
            status,
            status,
            phase=phase,
            outcome=TransitionOutcome.FAILURE,
            at=at,
            error=error,
            metadata={"error_code": error_code, "attempts": attempts, "retryable": True},
        )
    )
    return "retry"
