# tests/conftest.py

import uuid
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import pytest

from fundrelease.catalog.payout_delays import CountryDelayPolicy, build_rules
from fundrelease.eligibility import EligibilityEvaluator
from fundrelease.payments.model import PaymentRecord, TransferStatus
from fundrelease.payments.state_machine import (
    assert_operator_reset,
    assert_processor_ref_invariant,
    assert_transition,
)
from fundrelease.providers.mock import MockProcessor
from services.metrics import reset_counters
from services.transition_ledger import TransitionLedger


NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class InMemoryPaymentStore:
    """
    PaymentStore with the same conditional-update semantics as the
    Postgres store: writes only land when the row is in the expected status.
    """

    def __init__(self, records=()):
        self.records: dict[str, PaymentRecord] = {r.id: r for r in records}
        self.fail_query = False
        self.fail_writes = False
        # called with the payment id right before a status update is applied
        self.before_update: Optional[Callable[[str], None]] = None

    def add(self, record: PaymentRecord) -> PaymentRecord:
        self.records[record.id] = record
        return record

    def force(self, payment_id: str, **changes) -> None:
        self.records[payment_id] = replace(self.records[payment_id], **changes)

    def query_payments_by_status(self, status):
        if self.fail_query:
            raise RuntimeError("connection refused")
        rows = [r for r in self.records.values() if r.status == TransferStatus(status)]
        return sorted(rows, key=lambda r: r.captured_at)

    def update_payment_status(
        self,
        payment_id,
        *,
        expected_prior,
        new_status,
        processor_id=None,
        error=None,
        error_code=None,
    ):
        if self.fail_writes:
            raise RuntimeError("server closed the connection unexpectedly")
        assert_transition(expected_prior, new_status)
        assert_processor_ref_invariant(new_status, processor_id)
        if self.before_update is not None:
            self.before_update(payment_id)

        current = self.records.get(payment_id)
        if current is None or current.status != expected_prior:
            return False

        changes = {"status": new_status, "last_error": error, "last_error_code": error_code, "last_attempt_at": NOW}
        if new_status == TransferStatus.COMPLETED:
            changes["transfer_id"] = processor_id
        if new_status == TransferStatus.PAID_OUT:
            changes["payout_id"] = processor_id
        self.records[payment_id] = replace(current, **changes)
        return True

    def record_attempt_error(self, payment_id, *, expected_status, error, error_code=None):
        if self.fail_writes:
            raise RuntimeError("server closed the connection unexpectedly")
        current = self.records.get(payment_id)
        if current is None or current.status != expected_status:
            return None
        updated = replace(
            current,
            attempt_count=current.attempt_count + 1,
            last_error=error,
            last_error_code=error_code,
            last_attempt_at=NOW,
        )
        self.records[payment_id] = updated
        return updated.attempt_count

    def get_payment(self, payment_id):
        return self.records.get(payment_id)

    def reset_failed(self, payment_id, *, new_status):
        assert_operator_reset(TransferStatus.FAILED, new_status)
        current = self.records.get(payment_id)
        if current is None or current.status != TransferStatus.FAILED:
            return False
        if new_status == TransferStatus.COMPLETED and not current.transfer_id:
            return False
        if new_status == TransferStatus.PENDING and current.transfer_id:
            return False
        self.records[payment_id] = replace(
            current,
            status=new_status,
            attempt_count=0,
            last_error=None,
            last_error_code=None,
        )
        return True


class RecordingLedger(TransitionLedger):
    def __init__(self, notifier=None):
        self.entries = []
        super().__init__(writer=self.entries.append, notifier=notifier)


def make_record(**overrides) -> PaymentRecord:
    appointment_start = overrides.pop("appointment_start", NOW - timedelta(days=3))
    values = {
        "id": str(uuid.uuid4()),
        "payee_id": "expert-1",
        "payee_account_id": "acct_expert_1",
        "payee_country": "US",
        "amount_cents": 5000,
        "currency": "usd",
        "captured_at": appointment_start - timedelta(days=10),
        "appointment_start": appointment_start,
        "appointment_duration_minutes": 60,
        "status": TransferStatus.PENDING,
    }
    values.update(overrides)
    return PaymentRecord(**values)


@pytest.fixture(autouse=True)
def _reset_metrics():
    reset_counters()
    yield
    reset_counters()


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def store() -> InMemoryPaymentStore:
    return InMemoryPaymentStore()


@pytest.fixture
def processor() -> MockProcessor:
    return MockProcessor()


@pytest.fixture
def ledger() -> RecordingLedger:
    return RecordingLedger()


@pytest.fixture
def policy() -> CountryDelayPolicy:
    return CountryDelayPolicy(build_rules())


@pytest.fixture
def evaluator(policy) -> EligibilityEvaluator:
    return EligibilityEvaluator(policy, complaint_window=timedelta(hours=24))
