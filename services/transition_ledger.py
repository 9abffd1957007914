from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Optional

import httpx
from psycopg2.extras import Json, RealDictCursor

from db import get_conn
from fundrelease.payments.model import TransitionOutcome, TransitionRecord, TransferStatus
from settings import settings


logger = logging.getLogger("fundrelease.ledger")

ALERT_STATUSES = {TransferStatus.COMPLETED, TransferStatus.PAID_OUT, TransferStatus.FAILED}


def write_transition(conn, transition: TransitionRecord) -> None:
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO app.payment_transitions (
              payment_record_id, prior_status, new_status, phase,
              outcome, error_detail, processor_ref, metadata, occurred_at
            )
            VALUES (%s::uuid, %s, %s, %s, %s, %s, %s, %s::jsonb, %s);
            """,
            (
                transition.payment_record_id,
                transition.prior_status.value,
                transition.new_status.value,
                transition.phase.value,
                transition.outcome.value,
                transition.error_detail,
                transition.processor_ref,
                Json(transition.metadata or {}),
                transition.occurred_at,
            ),
        )


def list_transitions(conn, payment_record_id: str, *, limit: int = 200) -> list[dict[str, Any]]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT id::text, payment_record_id::text, prior_status, new_status, phase,
                   outcome, error_detail, processor_ref, metadata, occurred_at
            FROM app.payment_transitions
            WHERE payment_record_id = %s::uuid
            ORDER BY occurred_at ASC, id ASC
            LIMIT %s
            """,
            (str(payment_record_id), limit),
        )
        return [dict(row) for row in cur.fetchall()]


def _write_with_own_conn(transition: TransitionRecord) -> None:
    with get_conn() as conn:
        write_transition(conn, transition)


class BackgroundWriter:
    """
    Runs audit inserts on a single worker thread so a slow database never
    holds up the batch. One worker keeps transitions in submission order.
    """

    def __init__(self, write: Callable[[TransitionRecord], None]):
        self._write = write
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ledger-write")

    def __call__(self, transition: TransitionRecord) -> None:
        self._executor.submit(self._run, transition)

    def _run(self, transition: TransitionRecord) -> None:
        try:
            self._write(transition)
        except Exception:
            logger.exception(
                "failed to record transition payment=%s %s->%s outcome=%s",
                transition.payment_record_id,
                transition.prior_status.value,
                transition.new_status.value,
                transition.outcome.value,
            )

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


class WebhookNotifier:
    """
    Posts transition alerts to ALERT_WEBHOOK_URL on a background thread.
    notify() returns immediately; delivery errors are only logged.
    """

    def __init__(self, url: str, *, timeout_s: float = 5.0, max_workers: int = 2):
        self.url = url
        self.timeout_s = timeout_s
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="ledger-notify")

    def notify(self, transition: TransitionRecord) -> None:
        self._executor.submit(self._deliver, transition.as_dict())

    def _deliver(self, payload: dict[str, Any]) -> None:
        try:
            r = httpx.post(self.url, json={"event": "payment_transition", **payload}, timeout=self.timeout_s)
            if r.status_code >= 400:
                logger.warning("alert webhook returned %s for payment=%s", r.status_code, payload.get("payment_record_id"))
        except httpx.HTTPError:
            logger.exception("alert webhook delivery failed for payment=%s", payload.get("payment_record_id"))

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


def default_notifier() -> Optional[WebhookNotifier]:
    url = (settings.ALERT_WEBHOOK_URL or "").strip()
    if not url:
        return None
    return WebhookNotifier(url, timeout_s=float(settings.ALERT_HTTP_TIMEOUT_S))


class TransitionLedger:
    """
    Append-only audit of every status-change attempt plus an alert hook.

    record_transition() never raises: a failed audit write or notification
    is logged and the caller's already-committed status change stands.
    """

    def __init__(
        self,
        writer: Callable[[TransitionRecord], None] | None = None,
        notifier: Any = None,
    ):
        self.writer = writer or BackgroundWriter(_write_with_own_conn)
        self.notifier = notifier

    def shutdown(self, wait: bool = True) -> None:
        for worker in (self.writer, self.notifier):
            if hasattr(worker, "shutdown"):
                worker.shutdown(wait=wait)

    def record_transition(self, transition: TransitionRecord) -> None:
        try:
            self.writer(transition)
        except Exception:
            logger.exception(
                "failed to record transition payment=%s %s->%s outcome=%s",
                transition.payment_record_id,
                transition.prior_status.value,
                transition.new_status.value,
                transition.outcome.value,
            )

        if self.notifier is None or not self._should_alert(transition):
            return
        try:
            self.notifier.notify(transition)
        except Exception:
            logger.exception("failed to dispatch alert for payment=%s", transition.payment_record_id)

    @staticmethod
    def _should_alert(transition: TransitionRecord) -> bool:
        # Transient failures keep the status; they show up in the ledger only.
        if transition.new_status == transition.prior_status:
            return False
        if transition.outcome == TransitionOutcome.FAILURE:
            return True
        return transition.new_status in ALERT_STATUSES


_default_ledger: TransitionLedger | None = None


def get_ledger() -> TransitionLedger:
    global _default_ledger
    if _default_ledger is None:
        _default_ledger = TransitionLedger(notifier=default_notifier())
    return _default_ledger


def shutdown_ledger() -> None:
    # Drains queued audit writes and alerts; the pool must still be open.
    global _default_ledger
    if _default_ledger is not None:
        _default_ledger.shutdown(wait=True)
        _default_ledger = None
