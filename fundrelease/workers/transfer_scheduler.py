# fundrelease/workers/transfer_scheduler.py
from __future__ import annotations

from datetime import datetime, timezone
import logging

from fundrelease.eligibility import EligibilityEvaluator
from fundrelease.payments.model import PaymentRecord, TransferStatus, TransitionOutcome, TransitionPhase
from fundrelease.payments.repository import PostgresPaymentStore
from fundrelease.providers.base import transfer_group_for, transfer_idempotency_key
from fundrelease.providers.factory import get_processor
from fundrelease.workers.batch import (
    BatchStartError,
    BatchSummary,
    PersistenceError,
    handle_transient,
    new_transition,
    store_call,
)
from services.metrics import increment_batch_run, increment_transfer_attempt
from services.transition_ledger import get_ledger
from settings import settings


logger = logging.getLogger("fundrelease.transfers")

BATCH_NAME = "transfers"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _transfer_metadata(record: PaymentRecord) -> dict[str, str]:
    return {
        "payment_record_id": record.id,
        "payee_id": record.payee_id,
        "event_id": record.event_id or "",
        "appointment_start": record.appointment_start.isoformat(),
    }


def run_transfer_batch(
    *,
    store=None,
    processor=None,
    ledger=None,
    evaluator: EligibilityEvaluator | None = None,
    now: datetime | None = None,
    max_attempts: int | None = None,
) -> BatchSummary:
    """
    PENDING -> COMPLETED | FAILED for every record that clears both release
    gates. Per-record failures never abort the batch; only store failures
    do, and then before any further processor call.
    """
    store = store or PostgresPaymentStore()
    processor = processor or get_processor()
    ledger = ledger or get_ledger()
    evaluator = evaluator or EligibilityEvaluator()
    now = now or _now()
    max_attempts = settings.RELEASE_MAX_ATTEMPTS if max_attempts is None else int(max_attempts)

    if processor is None:
        increment_batch_run(BATCH_NAME, "start_failed")
        raise BatchStartError(f"No payment processor for mode={settings.PROCESSOR_MODE!r}")

    problem = processor.config_error()
    if problem:
        increment_batch_run(BATCH_NAME, "start_failed")
        raise BatchStartError(f"Payment processor is not configured: {problem}")

    try:
        pending = store.query_payments_by_status(TransferStatus.PENDING)
    except Exception as exc:
        increment_batch_run(BATCH_NAME, "start_failed")
        logger.exception("transfer batch could not load PENDING records")
        raise BatchStartError(f"{type(exc).__name__}: {exc}") from exc

    summary = BatchSummary(batch=BATCH_NAME, started_at=now, found=len(pending))
    logger.info("transfer batch start found_pending=%s now=%s", len(pending), now.isoformat())

    for record in pending:
        try:
            outcome = _handle_pending(
                record,
                store=store,
                processor=processor,
                ledger=ledger,
                evaluator=evaluator,
                summary=summary,
                now=now,
                max_attempts=max_attempts,
            )
        except PersistenceError as exc:
            # A processor call may already have succeeded for this record; the
            # next run re-discovers it via find_transfer / the idempotency key.
            summary.aborted = True
            summary.abort_reason = str(exc)
            logger.error("transfer batch aborted at payment=%s: %s", record.id, exc)
            break
        except Exception:
            # Isolated to this record: status untouched, retried next run.
            logger.exception("transfer batch unexpected error at payment=%s", record.id)
            summary.retried += 1
            summary.retry_ids.append(record.id)
            outcome = "error"
        increment_transfer_attempt(outcome)

    increment_batch_run(BATCH_NAME, "aborted" if summary.aborted else "ok")
    logger.info(
        "transfer batch done attempted=%s succeeded=%s failed=%s retried=%s skipped=%s conflicts=%s",
        summary.attempted,
        summary.succeeded,
        summary.failed,
        summary.retried,
        summary.skipped,
        summary.conflicts,
    )
    return summary


def _handle_pending(
    record: PaymentRecord,
    *,
    store,
    processor,
    ledger,
    evaluator: EligibilityEvaluator,
    summary: BatchSummary,
    now: datetime,
    max_attempts: int,
) -> str:
    if not (record.payee_account_id or "").strip():
        logger.info("payment=%s skipped: payee has no connected account yet", record.id)
        summary.skip("no_connected_account")
        return "skipped"

    result = evaluator.evaluate(record, now)
    if not result.eligible:
        logger.debug(
            "payment=%s not eligible (%s) earliest=%s",
            record.id,
            result.skip_reason(),
            result.earliest_eligible_instant.isoformat(),
        )
        summary.skip(result.skip_reason() or "not_eligible")
        return "skipped"

    group = transfer_group_for(record.id)
    existing = processor.find_transfer(transfer_group=group, destination_account=record.payee_account_id)
    if existing:
        logger.info("payment=%s already has transfer=%s at processor; recording it", record.id, existing)
        summary.attempted += 1
        return _complete(record, existing, store=store, ledger=ledger, summary=summary, now=now, recovered=True)

    res = processor.create_transfer(
        destination_account=record.payee_account_id,
        amount_cents=record.amount_cents,
        currency=record.currency,
        idempotency_key=transfer_idempotency_key(record.id),
        transfer_group=group,
        source_transaction=record.source_charge_id,
        metadata=_transfer_metadata(record),
    )

    if res.status == "NOT_READY":
        logger.info("payment=%s skipped: destination not ready (%s)", record.id, res.error_code)
        summary.skip("account_not_ready")
        return "skipped"

    summary.attempted += 1

    if res.ok and res.processor_ref:
        return _complete(record, res.processor_ref, store=store, ledger=ledger, summary=summary, now=now)

    if res.status == "FAILED":
        error = res.error or "Non-retryable transfer failure"
        logger.warning("payment=%s transfer failed permanently: %s (%s)", record.id, error, res.error_code)
        moved = store_call(
            store.update_payment_status,
            record.id,
            expected_prior=TransferStatus.PENDING,
            new_status=TransferStatus.FAILED,
            error=error,
            error_code=res.error_code,
        )
        if not moved:
            summary.conflicts += 1
            return "conflict"
        summary.failed += 1
        summary.failed_ids.append(record.id)
        ledger.record_transition(
            new_transition(
                record.id,
                TransferStatus.PENDING,
                TransferStatus.FAILED,
                phase=TransitionPhase.TRANSFER,
                outcome=TransitionOutcome.FAILURE,
                at=now,
                error=error,
                metadata={"error_code": res.error_code},
            )
        )
        return "failed"

    logger.warning("payment=%s transfer transient failure: %s (%s)", record.id, res.error, res.error_code)
    return handle_transient(
        store=store,
        ledger=ledger,
        summary=summary,
        record=record,
        phase=TransitionPhase.TRANSFER,
        error=res.error or "Retryable transfer failure",
        error_code=res.error_code,
        max_attempts=max_attempts,
        at=now,
    )


def _complete(
    record: PaymentRecord,
    transfer_id: str,
    *,
    store,
    ledger,
    summary: BatchSummary,
    now: datetime,
    recovered: bool = False,
) -> str:
    moved = store_call(
        store.update_payment_status,
        record.id,
        expected_prior=TransferStatus.PENDING,
        new_status=TransferStatus.COMPLETED,
        processor_id=transfer_id,
    )
    if not moved:
        # A concurrent run advanced this record first.
        logger.info("payment=%s already advanced by another run", record.id)
        summary.conflicts += 1
        return "conflict"

    summary.succeeded += 1
    logger.info(
        "payment=%s transferred %s %s to %s transfer=%s",
        record.id,
        record.amount_cents,
        record.currency,
        record.payee_account_id,
        transfer_id,
    )
    ledger.record_transition(
        new_transition(
            record.id,
            TransferStatus.PENDING,
            TransferStatus.COMPLETED,
            phase=TransitionPhase.TRANSFER,
            outcome=TransitionOutcome.SUCCESS,
            at=now,
            processor_ref=transfer_id,
            metadata={"recovered": True} if recovered else {},
        )
    )
    return "recovered" if recovered else "succeeded"
