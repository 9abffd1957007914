from __future__ import annotations

import logging

import httpx
import pytest

from fundrelease.providers.http import HttpResponse
from fundrelease.providers.stripe import StripeProcessor
from settings import settings


class _FakeHttp:
    def __init__(self, responses=None, exc=None):
        self.responses = list(responses or [])
        self.exc = exc
        self.requests = []

    def _next(self, method, url, headers, body):
        self.requests.append({"method": method, "url": url, "headers": headers, "body": body})
        if self.exc is not None:
            raise self.exc
        return self.responses.pop(0)

    def post(self, url, *, headers, form=None):
        return self._next("POST", url, headers, form)

    def get(self, url, *, headers, params=None):
        return self._next("GET", url, headers, params)


def _resp(status_code, payload=None):
    return HttpResponse(status_code=status_code, json=payload, text=str(payload or ""))


@pytest.fixture(autouse=True)
def _stripe_settings(monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", "sk_test_123", raising=False)
    monkeypatch.setattr(settings, "STRIPE_API_BASE", "https://stripe.example.test", raising=False)
    monkeypatch.setattr(settings, "STRIPE_API_VERSION", "2024-06-20", raising=False)


def _transfer(processor):
    return processor.create_transfer(
        destination_account="acct_1",
        amount_cents=5000,
        currency="USD",
        idempotency_key="transfer:pay-1",
        transfer_group="payment-pay-1",
        source_transaction="ch_1",
        metadata={"payment_record_id": "pay-1", "event_id": None},
    )


def test_create_transfer_sends_idempotent_form_request():
    http = _FakeHttp([_resp(200, {"id": "tr_1", "object": "transfer"})])
    res = _transfer(StripeProcessor(http=http))

    assert res.ok
    assert res.processor_ref == "tr_1"
    req = http.requests[0]
    assert req["url"] == "https://stripe.example.test/v1/transfers"
    assert req["headers"]["Authorization"] == "Bearer sk_test_123"
    assert req["headers"]["Idempotency-Key"] == "transfer:pay-1"
    assert req["headers"]["Stripe-Version"] == "2024-06-20"
    assert "Stripe-Account" not in req["headers"]
    assert req["body"]["amount"] == 5000
    assert req["body"]["currency"] == "usd"
    assert req["body"]["destination"] == "acct_1"
    assert req["body"]["transfer_group"] == "payment-pay-1"
    assert req["body"]["source_transaction"] == "ch_1"
    assert req["body"]["metadata[payment_record_id]"] == "pay-1"
    assert "metadata[event_id]" not in req["body"]


def test_create_payout_runs_on_connected_account():
    http = _FakeHttp([_resp(200, {"id": "po_1", "object": "payout"})])
    res = StripeProcessor(http=http).create_payout(
        account="acct_1", amount_cents=5000, currency="usd", idempotency_key="payout:pay-1"
    )

    assert res.processor_ref == "po_1"
    req = http.requests[0]
    assert req["url"].endswith("/v1/payouts")
    assert req["headers"]["Stripe-Account"] == "acct_1"
    assert req["headers"]["Idempotency-Key"] == "payout:pay-1"


@pytest.mark.parametrize(
    "status_code,code,expected",
    [
        (400, "insufficient_capabilities_for_transfer", "NOT_READY"),
        (400, "balance_insufficient", "NOT_READY"),
        (429, "rate_limit", "RETRYABLE"),
        (503, None, "RETRYABLE"),
        (409, "idempotency_key_in_use", "RETRYABLE"),
        (400, "account_invalid", "FAILED"),
        (404, "resource_missing", "FAILED"),
        (401, None, "RETRYABLE"),
        (403, "secret_key_required", "RETRYABLE"),
    ],
)
def test_classify_error(status_code, code, expected):
    body = {"error": {"code": code, "message": "nope"}} if code else {}
    res = StripeProcessor.classify_error(status_code, body)
    assert res.status == expected
    if expected == "FAILED":
        assert res.error_code == code


def test_timeout_is_retryable():
    http = _FakeHttp(exc=httpx.ReadTimeout("read timed out"))
    res = _transfer(StripeProcessor(http=http))
    assert res.status == "RETRYABLE"
    assert res.error_code == "timeout"


def test_transport_error_is_retryable():
    http = _FakeHttp(exc=httpx.ConnectError("connection refused"))
    res = _transfer(StripeProcessor(http=http))
    assert res.status == "RETRYABLE"
    assert res.error_code == "network"


def test_success_without_id_is_retryable():
    http = _FakeHttp([_resp(200, {"object": "transfer"})])
    res = _transfer(StripeProcessor(http=http))
    assert res.status == "RETRYABLE"
    assert res.processor_ref is None


def test_missing_secret_is_reported_without_request(monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", "", raising=False)
    http = _FakeHttp()
    processor = StripeProcessor(http=http)
    res = _transfer(processor)
    assert processor.config_error() == "STRIPE_SECRET_KEY_NOT_SET"
    assert res.status == "RETRYABLE"
    assert res.error_code == "config"
    assert http.requests == []


def test_balance_sums_available_in_currency():
    http = _FakeHttp(
        [
            _resp(
                200,
                {
                    "available": [
                        {"amount": 3000, "currency": "usd"},
                        {"amount": 2500, "currency": "usd"},
                        {"amount": 9999, "currency": "eur"},
                    ],
                    "pending": [{"amount": 100000, "currency": "usd"}],
                },
            )
        ]
    )
    bal = StripeProcessor(http=http).get_account_balance(account="acct_1", currency="USD")

    assert bal.ok
    assert bal.available_cents == 5500
    assert bal.covers(5500)
    assert not bal.covers(5501)
    assert http.requests[0]["headers"]["Stripe-Account"] == "acct_1"


def test_balance_lookup_error_is_not_ok():
    http = _FakeHttp([_resp(500, {"error": {"message": "boom"}})])
    bal = StripeProcessor(http=http).get_account_balance(account="acct_1", currency="usd")
    assert bal.ok is False
    assert bal.covers(1) is False


def test_find_transfer_skips_reversed():
    http = _FakeHttp(
        [
            _resp(
                200,
                {"data": [{"id": "tr_old", "reversed": True}, {"id": "tr_live", "reversed": False}]},
            )
        ]
    )
    found = StripeProcessor(http=http).find_transfer(transfer_group="payment-pay-1", destination_account="acct_1")

    assert found == "tr_live"
    assert http.requests[0]["body"]["transfer_group"] == "payment-pay-1"
    assert http.requests[0]["body"]["destination"] == "acct_1"


def test_find_transfer_returns_none_on_failure():
    http = _FakeHttp(exc=httpx.ConnectError("down"))
    assert StripeProcessor(http=http).find_transfer(transfer_group="g", destination_account="acct_1") is None


def test_authentication_error_is_never_permanent():
    body = {"error": {"type": "authentication_error", "message": "Invalid API Key provided: sk_test_****"}}
    res = StripeProcessor.classify_error(401, body)
    assert res.status == "RETRYABLE"
    assert res.error_code == "authentication"


def test_find_payout_matches_record_metadata():
    http = _FakeHttp(
        [
            _resp(
                200,
                {
                    "data": [
                        {"id": "po_other", "status": "paid", "metadata": {"payment_record_id": "pay-2"}},
                        {"id": "po_failed", "status": "failed", "metadata": {"payment_record_id": "pay-1"}},
                        {"id": "po_live", "status": "in_transit", "metadata": {"payment_record_id": "pay-1"}},
                    ]
                },
            )
        ]
    )
    found = StripeProcessor(http=http).find_payout(account="acct_1", payment_record_id="pay-1")

    assert found == "po_live"
    req = http.requests[0]
    assert req["url"].endswith("/v1/payouts")
    assert req["headers"]["Stripe-Account"] == "acct_1"


def test_find_payout_returns_none_on_failure():
    http = _FakeHttp([_resp(500, {"error": {"message": "boom"}})])
    assert StripeProcessor(http=http).find_payout(account="acct_1", payment_record_id="pay-1") is None


def test_error_response_is_logged_redacted(caplog):
    http = _FakeHttp(
        [
            _resp(
                400,
                {
                    "error": {
                        "code": "account_invalid",
                        "message": "Account for jane.doe@example.com has no external account",
                        "param": "destination",
                    }
                },
            )
        ]
    )

    with caplog.at_level(logging.WARNING, logger="fundrelease.stripe"):
        res = _transfer(StripeProcessor(http=http))

    assert res.status == "FAILED"
    logged = " ".join(r.getMessage() for r in caplog.records)
    assert "stripe error status=400" in logged
    assert "j***@example.com" in logged
    assert "jane.doe@example.com" not in logged
