"""
Release eligibility for a single payment record.

A transfer may be created only when both gates hold at ``now``:

  1. Payment aging: the processor's country-specific holding period has
     elapsed since the payment was captured.
  2. Service delivery: the appointment ended at least the complaint
     window (24h by default) ago. The platform cannot cancel appointments
     itself, so it assumes delivery and gives the customer that window to
     complain before money leaves.

The aging clock starts at capture, which for advance bookings is long
before the appointment. The wait still owed after the appointment ends
is therefore ``max(1 day, delay - (appointment_end - captured_at))``;
it never drops below one day.

Both gates are monotone in ``now``: once both are true they stay true.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from fundrelease.catalog.payout_delays import DEFAULT_POLICY, CountryDelayPolicy
from fundrelease.payments.model import PaymentRecord
from settings import settings


MINIMUM_REMAINING_WAIT = timedelta(days=1)


@dataclass(frozen=True)
class EligibilityResult:
    payment_aging_ok: bool
    service_delivery_ok: bool
    earliest_eligible_instant: datetime
    minimum_delay_days: int
    effective_remaining_wait: timedelta

    @property
    def eligible(self) -> bool:
        return self.payment_aging_ok and self.service_delivery_ok

    def skip_reason(self) -> str | None:
        if self.eligible:
            return None
        reasons = []
        if not self.payment_aging_ok:
            reasons.append("payment_aging")
        if not self.service_delivery_ok:
            reasons.append("service_delivery")
        return "+".join(reasons)


def effective_remaining_wait(
    *,
    minimum_delay_days: int,
    captured_at: datetime,
    appointment_end: datetime,
) -> timedelta:
    already_aged = appointment_end - captured_at
    return max(MINIMUM_REMAINING_WAIT, timedelta(days=minimum_delay_days) - already_aged)


class EligibilityEvaluator:
    def __init__(
        self,
        policy: CountryDelayPolicy | None = None,
        *,
        complaint_window: timedelta | None = None,
    ):
        self.policy = policy or DEFAULT_POLICY
        window = complaint_window or timedelta(hours=settings.COMPLAINT_WINDOW_HOURS)
        self.complaint_window = max(window, MINIMUM_REMAINING_WAIT)

    def service_delivery_ok(self, record: PaymentRecord, now: datetime) -> bool:
        # An appointment ending in the future has not been delivered yet.
        return now - record.appointment_end >= self.complaint_window

    def evaluate(self, record: PaymentRecord, now: datetime) -> EligibilityResult:
        delay_days = self.policy.minimum_delay_days(record.payee_country)
        appointment_end = record.appointment_end

        aging_ok = now - record.captured_at >= timedelta(days=delay_days)
        delivery_ok = self.service_delivery_ok(record, now)

        remaining = effective_remaining_wait(
            minimum_delay_days=delay_days,
            captured_at=record.captured_at,
            appointment_end=appointment_end,
        )
        earliest = appointment_end + max(self.complaint_window, remaining)

        return EligibilityResult(
            payment_aging_ok=aging_ok,
            service_delivery_ok=delivery_ok,
            earliest_eligible_instant=earliest,
            minimum_delay_days=delay_days,
            effective_remaining_wait=remaining,
        )


def evaluate(record: PaymentRecord, now: datetime) -> EligibilityResult:
    return EligibilityEvaluator().evaluate(record, now)
