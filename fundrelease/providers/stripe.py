# fundrelease/providers/stripe.py
from __future__ import annotations

from typing import Any, Dict, Optional
import logging

import httpx

from settings import settings
from fundrelease.providers.base import BalanceResult, ProcessorResult
from fundrelease.providers.http import HttpClient, HttpResponse, is_retryable_http
from services.redaction import redact_dict, redact_text


logger = logging.getLogger("fundrelease.stripe")

# Destination/source account exists but cannot move money yet (onboarding,
# capabilities pending, funds still settling). Retried on the next run.
NOT_READY_CODES = {
    "insufficient_capabilities_for_transfer",
    "transfers_not_allowed",
    "payouts_not_allowed",
    "balance_insufficient",
    "account_information_mismatch",
}

# Stripe reports a concurrent request holding the same idempotency key as 409.
RETRYABLE_CODES = {
    "lock_timeout",
    "rate_limit",
    "idempotency_key_in_use",
}

AUTH_ERROR_TYPES = {"authentication_error", "permission_error"}

# Payouts in these states never reached (or will never reach) the bank.
DEAD_PAYOUT_STATUSES = {"failed", "canceled"}


class StripeProcessor:
    """
    Stripe Connect adapter for the release schedulers:
      - create_transfer(...)      -> ProcessorResult(SUCCEEDED|RETRYABLE|NOT_READY|FAILED)
      - create_payout(...)        -> ProcessorResult(...)
      - get_account_balance(...)  -> BalanceResult
      - find_transfer(...)        -> transfer id or None
      - find_payout(...)          -> payout id or None
    Never raises for processor/network failures; they come back as results.
    """

    def __init__(self, http: HttpClient | None = None):
        self.base_url = (settings.STRIPE_API_BASE or "").strip().rstrip("/")
        self.secret_key = (settings.STRIPE_SECRET_KEY or "").strip()
        self.api_version = (settings.STRIPE_API_VERSION or "").strip()
        self.timeout_s = float(settings.PROCESSOR_HTTP_TIMEOUT_S)
        self.http = http or HttpClient(timeout_s=self.timeout_s)

    def _headers(
        self,
        *,
        idempotency_key: Optional[str] = None,
        stripe_account: Optional[str] = None,
    ) -> Dict[str, str]:
        h = {"Authorization": f"Bearer {self.secret_key}"}
        if self.api_version:
            h["Stripe-Version"] = self.api_version
        if idempotency_key:
            h["Idempotency-Key"] = idempotency_key
        if stripe_account:
            h["Stripe-Account"] = stripe_account
        return h

    @staticmethod
    def _metadata_form(metadata: Optional[dict[str, str]]) -> Dict[str, str]:
        return {f"metadata[{k}]": str(v) for k, v in (metadata or {}).items() if v is not None}

    @staticmethod
    def classify_error(http_status: int, body: Optional[dict[str, Any]]) -> ProcessorResult:
        """
        Map a non-2xx Stripe response -> ProcessorResult.
        """
        err = (body or {}).get("error") or {}
        code = (err.get("code") or err.get("decline_code") or err.get("type") or "").strip() or None
        message = err.get("message") or f"HTTP {http_status}"
        response = {"http_status": http_status, "error": err}

        if code in NOT_READY_CODES:
            return ProcessorResult(status="NOT_READY", response=response, error=message, error_code=code)
        # Bad or revoked platform key: every record would fail the same way.
        if http_status in (401, 403) or err.get("type") in AUTH_ERROR_TYPES:
            return ProcessorResult(status="RETRYABLE", response=response, error=message, error_code="authentication")
        if is_retryable_http(http_status) or http_status == 409 or code in RETRYABLE_CODES:
            return ProcessorResult(status="RETRYABLE", response=response, error=message, error_code=code)
        return ProcessorResult(status="FAILED", response=response, error=message, error_code=code or "unknown_error")

    def config_error(self) -> Optional[str]:
        if not self.base_url:
            return "STRIPE_API_BASE_NOT_SET"
        if not self.secret_key:
            return "STRIPE_SECRET_KEY_NOT_SET"
        return None

    def _missing_config(self) -> ProcessorResult | None:
        problem = self.config_error()
        if problem:
            return ProcessorResult(status="RETRYABLE", error=problem, error_code="config")
        return None

    def _post(self, path: str, *, form: dict[str, Any], headers: dict[str, str]) -> HttpResponse | ProcessorResult:
        url = f"{self.base_url}{path}"
        try:
            return self.http.post(url, headers=headers, form=form)
        except httpx.TimeoutException as exc:
            logger.warning("stripe POST %s timed out: %s", path, exc)
            return ProcessorResult(status="RETRYABLE", error=f"timeout: {exc}", error_code="timeout")
        except httpx.HTTPError as exc:
            logger.warning("stripe POST %s transport error: %s", path, exc)
            return ProcessorResult(status="RETRYABLE", error=f"{type(exc).__name__}: {exc}", error_code="network")

    def _get(self, path: str, *, headers: dict[str, str], params: dict[str, Any] | None = None) -> HttpResponse | ProcessorResult:
        url = f"{self.base_url}{path}"
        try:
            return self.http.get(url, headers=headers, params=params)
        except httpx.TimeoutException as exc:
            logger.warning("stripe GET %s timed out: %s", path, exc)
            return ProcessorResult(status="RETRYABLE", error=f"timeout: {exc}", error_code="timeout")
        except httpx.HTTPError as exc:
            logger.warning("stripe GET %s transport error: %s", path, exc)
            return ProcessorResult(status="RETRYABLE", error=f"{type(exc).__name__}: {exc}", error_code="network")

    def _to_result(self, resp: HttpResponse | ProcessorResult) -> ProcessorResult:
        if isinstance(resp, ProcessorResult):
            return resp
        if resp.status_code not in (200, 201):
            # Error bodies can echo emails and bank refs back at us.
            logger.warning(
                "stripe error status=%s body=%s",
                resp.status_code,
                redact_dict(resp.json) if resp.json else redact_text(resp.text[:300]),
            )
            return self.classify_error(resp.status_code, resp.json)
        obj_id = (resp.json or {}).get("id")
        if not obj_id:
            # 2xx without an id: the money may have moved, never treat as permanent
            return ProcessorResult(
                status="RETRYABLE",
                response={"http_status": resp.status_code, "text": resp.text[:300]},
                error="STRIPE_RESPONSE_MISSING_ID",
                error_code="missing_id",
            )
        return ProcessorResult(
            status="SUCCEEDED",
            processor_ref=obj_id,
            response={"http_status": resp.status_code, "id": obj_id, "object": (resp.json or {}).get("object")},
        )

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
        missing = self._missing_config()
        if missing:
            return missing
        if int(amount_cents) <= 0:
            return ProcessorResult(status="FAILED", error="INVALID_AMOUNT", error_code="invalid_amount")

        form: Dict[str, Any] = {
            "amount": int(amount_cents),
            "currency": (currency or "").strip().lower(),
            "destination": destination_account,
        }
        if transfer_group:
            form["transfer_group"] = transfer_group
        if source_transaction:
            form["source_transaction"] = source_transaction
        form.update(self._metadata_form(metadata))

        resp = self._post("/v1/transfers", form=form, headers=self._headers(idempotency_key=idempotency_key))
        return self._to_result(resp)

    def create_payout(
        self,
        *,
        account: str,
        amount_cents: int,
        currency: str,
        idempotency_key: str,
        metadata: Optional[dict[str, str]] = None,
    ) -> ProcessorResult:
        missing = self._missing_config()
        if missing:
            return missing
        if int(amount_cents) <= 0:
            return ProcessorResult(status="FAILED", error="INVALID_AMOUNT", error_code="invalid_amount")

        form: Dict[str, Any] = {
            "amount": int(amount_cents),
            "currency": (currency or "").strip().lower(),
        }
        form.update(self._metadata_form(metadata))

        resp = self._post(
            "/v1/payouts",
            form=form,
            headers=self._headers(idempotency_key=idempotency_key, stripe_account=account),
        )
        return self._to_result(resp)

    def get_account_balance(self, *, account: str, currency: str) -> BalanceResult:
        missing = self._missing_config()
        if missing:
            return BalanceResult(ok=False, error=missing.error)

        cur = (currency or "").strip().lower()
        resp = self._get("/v1/balance", headers=self._headers(stripe_account=account))
        if isinstance(resp, ProcessorResult):
            return BalanceResult(ok=False, currency=cur, error=resp.error)
        if resp.status_code != 200:
            return BalanceResult(ok=False, currency=cur, error=f"HTTP {resp.status_code}")

        available = 0
        for item in (resp.json or {}).get("available") or []:
            if (item.get("currency") or "").lower() == cur:
                available += int(item.get("amount") or 0)
        return BalanceResult(ok=True, available_cents=available, currency=cur)

    def find_transfer(self, *, transfer_group: str, destination_account: str) -> Optional[str]:
        """
        Look up a transfer created by an earlier run whose status write never
        landed. Returns None when nothing is found or the lookup fails.
        """
        if self._missing_config():
            return None

        resp = self._get(
            "/v1/transfers",
            headers=self._headers(),
            params={"transfer_group": transfer_group, "destination": destination_account, "limit": 10},
        )
        if isinstance(resp, ProcessorResult) or resp.status_code != 200:
            return None

        for item in (resp.json or {}).get("data") or []:
            if item.get("reversed"):
                continue
            if item.get("id"):
                return item["id"]
        return None

    def find_payout(self, *, account: str, payment_record_id: str) -> Optional[str]:
        """
        Look up a payout this record already made from the connected account.
        Payouts carry metadata[payment_record_id]; failed or canceled ones
        don't count.
        """
        if self._missing_config():
            return None

        resp = self._get(
            "/v1/payouts",
            headers=self._headers(stripe_account=account),
            params={"limit": 100},
        )
        if isinstance(resp, ProcessorResult) or resp.status_code != 200:
            return None

        for item in (resp.json or {}).get("data") or []:
            if (item.get("metadata") or {}).get("payment_record_id") != payment_record_id:
                continue
            if item.get("status") in DEAD_PAYOUT_STATUSES:
                continue
            if item.get("id"):
                return item["id"]
        return None
