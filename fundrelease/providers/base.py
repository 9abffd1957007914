# fundrelease/providers/base.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol, Literal

# SUCCEEDED  -> money moved, processor_ref is set
# RETRYABLE  -> transient (network, timeout, rate limit, 5xx); try next run
# NOT_READY  -> account cannot receive/send funds yet, or balance not settled; skip
# FAILED     -> permanent; needs an operator
ProcessorStatus = Literal["SUCCEEDED", "RETRYABLE", "NOT_READY", "FAILED"]


@dataclass(frozen=True)
class ProcessorResult:
    status: ProcessorStatus
    processor_ref: Optional[str] = None
    response: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "SUCCEEDED"

    @property
    def retryable(self) -> bool:
        return self.status == "RETRYABLE"


@dataclass(frozen=True)
class BalanceResult:
    ok: bool
    available_cents: int = 0
    currency: str = ""
    error: Optional[str] = None

    def covers(self, amount_cents: int) -> bool:
        return self.ok and self.available_cents >= 0 and self.available_cents >= int(amount_cents)


class PaymentProcessor(Protocol):
    def create_transfer(
        self,
        *,
        destination_account: str,
        amount_cents: int,
        currency: str,
        idempotency_key: str,
        transfer_group: Optional[str] = None,
        source_transaction: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> ProcessorResult: ...

    def create_payout(
        self,
        *,
        account: str,
        amount_cents: int,
        currency: str,
        idempotency_key: str,
        metadata: Optional[dict[str, str]] = None,
    ) -> ProcessorResult: ...

    def get_account_balance(self, *, account: str, currency: str) -> BalanceResult: ...

    def find_transfer(self, *, transfer_group: str, destination_account: str) -> Optional[str]: ...

    def find_payout(self, *, account: str, payment_record_id: str) -> Optional[str]: ...

    # Non-empty when nothing can be sent at all (missing credentials/base URL).
    def config_error(self) -> Optional[str]: ...


def transfer_idempotency_key(payment_id: str) -> str:
    return f"transfer:{payment_id}"


def payout_idempotency_key(payment_id: str) -> str:
    return f"payout:{payment_id}"


def transfer_group_for(payment_id: str) -> str:
    return f"payment-{payment_id}"
