# fundrelease/providers/mock.py
from __future__ import annotations

from threading import Lock
from typing import Optional

from fundrelease.providers.base import BalanceResult, ProcessorResult


class MockProcessor:
    """
    Test/dev processor.

    - Honors idempotency keys: a repeated key returns the first result and
      moves no extra money.
    - `outcomes` forces a status per account id ("FAILED", "RETRYABLE",
      "NOT_READY"); anything else succeeds.
    - `balances` sets the available balance per account; accounts not
      listed have unlimited funds.
    """

    def __init__(
        self,
        *,
        outcomes: Optional[dict[str, str]] = None,
        balances: Optional[dict[str, int]] = None,
    ):
        self.outcomes = dict(outcomes or {})
        self.balances = dict(balances or {})
        self.transfers: dict[str, dict] = {}
        self.payouts: dict[str, dict] = {}
        self.calls: list[tuple[str, str]] = []
        self._by_key: dict[str, ProcessorResult] = {}
        self._lock = Lock()

    def _forced(self, account: str) -> ProcessorResult | None:
        forced = (self.outcomes.get(account) or "").upper()
        if forced == "FAILED":
            return ProcessorResult(status="FAILED", error="Mock permanent failure", error_code="account_invalid")
        if forced == "RETRYABLE":
            return ProcessorResult(status="RETRYABLE", error="Gateway timeout", error_code="timeout", response={"http_status": 504})
        if forced == "NOT_READY":
            return ProcessorResult(status="NOT_READY", error="Account not ready", error_code="insufficient_capabilities_for_transfer")
        return None

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
    ) -> ProcessorResult:
        with self._lock:
            self.calls.append(("create_transfer", idempotency_key))
            if idempotency_key in self._by_key:
                return self._by_key[idempotency_key]

            forced = self._forced(destination_account)
            if forced is not None:
                return forced

            transfer_id = f"tr_mock_{len(self.transfers) + 1}"
            self.transfers[transfer_id] = {
                "destination": destination_account,
                "amount": int(amount_cents),
                "currency": currency,
                "transfer_group": transfer_group,
                "metadata": dict(metadata or {}),
            }
            if destination_account in self.balances:
                self.balances[destination_account] += int(amount_cents)
            result = ProcessorResult(status="SUCCEEDED", processor_ref=transfer_id, response={"http_status": 200, "mock": True})
            self._by_key[idempotency_key] = result
            return result

    def create_payout(
        self,
        *,
        account: str,
        amount_cents: int,
        currency: str,
        idempotency_key: str,
        metadata: Optional[dict[str, str]] = None,
    ) -> ProcessorResult:
        with self._lock:
            self.calls.append(("create_payout", idempotency_key))
            if idempotency_key in self._by_key:
                return self._by_key[idempotency_key]

            forced = self._forced(account)
            if forced is not None:
                return forced

            payout_id = f"po_mock_{len(self.payouts) + 1}"
            self.payouts[payout_id] = {
                "account": account,
                "amount": int(amount_cents),
                "currency": currency,
                "metadata": dict(metadata or {}),
            }
            if account in self.balances:
                self.balances[account] -= int(amount_cents)
            result = ProcessorResult(status="SUCCEEDED", processor_ref=payout_id, response={"http_status": 200, "mock": True})
            self._by_key[idempotency_key] = result
            return result

    def get_account_balance(self, *, account: str, currency: str) -> BalanceResult:
        with self._lock:
            self.calls.append(("get_account_balance", account))
            if account not in self.balances:
                return BalanceResult(ok=True, available_cents=10**12, currency=currency)
            return BalanceResult(ok=True, available_cents=int(self.balances[account]), currency=currency)

    def find_transfer(self, *, transfer_group: str, destination_account: str) -> Optional[str]:
        with self._lock:
            self.calls.append(("find_transfer", transfer_group))
            for transfer_id, t in self.transfers.items():
                if t["transfer_group"] == transfer_group and t["destination"] == destination_account:
                    return transfer_id
            return None

    def find_payout(self, *, account: str, payment_record_id: str) -> Optional[str]:
        with self._lock:
            self.calls.append(("find_payout", payment_record_id))
            for payout_id, p in self.payouts.items():
                if p["account"] == account and p["metadata"].get("payment_record_id") == payment_record_id:
                    return payout_id
            return None

    def config_error(self) -> Optional[str]:
        return None
