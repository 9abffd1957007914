# fundrelease/workers/payout_scheduler.py
from __future__ import annotations

from datetime import datetime, timezone
import logging

from fundrelease.eligibility import EligibilityEvaluator
from fundrelease.payments.model import PaymentRecord, TransferStatus, TransitionOutcome, TransitionPhase
from fundrelease.payments.repository import PostgresPaymentStore
from fundrelease.providers.base import payout_idempotency_key
from fundrelease.providers.factory import get_processor
from fundrelease.workers.batch import (
    BatchStartError,
    BatchSummary,
    PersistenceError,
    handle_transient,
    new_transition,
    store_call,
)
from services.metrics import increment_batch_run, increment_payout_attempt
from services.transition_ledger import get_ledger
from settings import settings


logger = logging.getLogger("fundrelease.payouts")

BATCH_NAME = "payouts"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def run_payout_batch(
    *,
    store=None,
    processor=None,
    ledger=None,
    evaluator: EligibilityEvaluator | None = None,
    now: datetime | None = None,
    max_attempts: int | None = None,
) -> BatchSummary:
    """
    COMPLETED -> PAID_OUT | FAILED. Only records persisted as COMPLETED are
    ever considered, so PAID_OUT always follows a recorded transfer.
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
        completed = store.query_payments_by_status(TransferStatus.COMPLETED)
    except Exception as exc:
        increment_batch_run(BATCH_NAME, "start_failed")
        logger.exception("payout batch could not load COMPLETED records")
        raise BatchStartError(f"{type(exc).__name__}: {exc}") from exc

    summary = BatchSummary(batch=BATCH_NAME, started_at=now, found=len(completed))
    logger.info("payout batch start found_completed=%s now=%s", len(completed), now.isoformat())

    for record in completed:
        try:
            outcome = _handle_completed(
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
            summary.aborted = True
            summary.abort_reason = str(exc)
            logger.error("payout batch aborted at payment=%s: %s", record.id, exc)
            break
        except Exception:
            logger.exception("payout batch unexpected error at payment=%s", record.id)
            summary.retried += 1
            summary.retry_ids.append(record.id)
            outcome = "error"
        increment_payout_attempt(outcome)

    increment_batch_run(BATCH_NAME, "aborted" if summary.aborted else "ok")
    logger.info(
        "payout batch done attempted=%s succeeded=%s failed=%s retried=%s skipped=%s conflicts=%s",
        summary.attempted,
        summary.succeeded,
        summary.failed,
        summary.retried,
        summary.skipped,
        summary.conflicts,
    )
    return summary


def _handle_completed(
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
    account = (record.payee_account_id or "").strip()
    if not account:
        logger.info("payment=%s skipped: payee has no connected account", record.id)
        summary.skip("no_connected_account")
        return "skipped"

    # Checked again here in case of clock skew or a race with the transfer batch.
    if not evaluator.service_delivery_ok(record, now):
        logger.info("payment=%s skipped: complaint window still open", record.id)
        summary.skip("service_delivery")
        return "skipped"

    # Before the balance check: a payout made by a crashed run already drained it.
    existing = processor.find_payout(account=account, payment_record_id=record.id)
    if existing:
        logger.info("payment=%s already has payout=%s at processor; recording it", record.id, existing)
        summary.attempted += 1
        return _paid_out(record, existing, store=store, ledger=ledger, summary=summary, now=now, recovered=True)

    balance = processor.get_account_balance(account=account, currency=record.currency)
    if not balance.ok:
        logger.warning("payment=%s balance lookup failed: %s", record.id, balance.error)
        summary.attempted += 1
        return handle_transient(
            store=store,
            ledger=ledger,
            summary=summary,
            record=record,
            phase=TransitionPhase.PAYOUT,
            error=f"Balance lookup failed: {balance.error}",
            error_code="balance_lookup",
            max_attempts=max_attempts,
            at=now,
        )

    if not balance.covers(record.amount_cents):
        # Transfers can take a while to settle at the processor.
        logger.info(
            "payment=%s skipped: available %s %s < %s",
            record.id,
            balance.available_cents,
            record.currency,
            record.amount_cents,
        )
        summary.skip("insufficient_balance")
        return "skipped"

    res = processor.create_payout(
        account=account,
        amount_cents=record.amount_cents,
        currency=record.currency,
        idempotency_key=payout_idempotency_key(record.id),
        metadata={
            "payment_record_id": record.id,
            "payee_id": record.payee_id,
            "event_id": record.event_id or "",
            "transfer_id": record.transfer_id or "",
        },
    )

    if res.status == "NOT_READY":
        logger.info("payment=%s skipped: payouts not possible yet (%s)", record.id, res.error_code)
        summary.skip("account_not_ready")
        return "skipped"

    summary.attempted += 1

    if res.ok and res.processor_ref:
        return _paid_out(record, res.processor_ref, store=store, ledger=ledger, summary=summary, now=now)

    if res.status == "FAILED":
        # Includes accounts closed after the transfer: no reversal, an
        # operator reconciles by hand.
        error = res.error or "Non-retryable payout failure"
        logger.warning("payment=%s payout failed permanently: %s (%s)", record.id, error, res.error_code)
        moved = store_call(
            store.update_payment_status,
            record.id,
            expected_prior=TransferStatus.COMPLETED,
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
                TransferStatus.COMPLETED,
                TransferStatus.FAILED,
                phase=TransitionPhase.PAYOUT,
                outcome=TransitionOutcome.FAILURE,
                at=now,
                error=error,
                metadata={"error_code": res.error_code, "transfer_id": record.transfer_id},
            )
        )
        return "failed"

    logger.warning("payment=%s payout transient failure: %s (%s)", record.id, res.error, res.error_code)
    return handle_transient(
        store=store,
        ledger=ledger,
        summary=summary,
        record=record,
        phase=TransitionPhase.PAYOUT,
        error=res.error or "Retryable payout failure",
        error_code=res.error_code,
        max_attempts=max_attempts,
        at=now,
    )


def _paid_out(
    record: PaymentRecord,
    payout_id: str,
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
        expected_prior=TransferStatus.COMPLETED,
        new_status=TransferStatus.PAID_OUT,
        processor_id=payout_id,
    )
    if not moved:
        logger.info("payment=%s already advanced by another run", record.id)
        summary.conflicts += 1
        return "conflict"

    summary.succeeded += 1
    logger.info(
        "payment=%s paid out %s %s from %s payout=%s",
        record.id,
        record.amount_cents,
        record.currency,
        record.payee_account_id,
        payout_id,
    )
    ledger.record_transition(
        new_transition(
            record.id,
            TransferStatus.COMPLETED,
            TransferStatus.PAID_OUT,
            phase=TransitionPhase.PAYOUT,
            outcome=TransitionOutcome.SUCCESS,
            at=now,
            processor_ref=payout_id,
            metadata={"recovered": True} if recovered else {},
        )
    )
    return "recovered" if recovered else "succeeded"
