from __future__ import annotations

from datetime import timedelta

from fundrelease.eligibility import EligibilityEvaluator, effective_remaining_wait

from tests.conftest import NOW, make_record


def _record_ending_at(end, *, country, captured_before_start):
    start = end - timedelta(hours=1)
    return make_record(
        payee_country=country,
        appointment_start=start,
        appointment_duration_minutes=60,
        captured_at=start - captured_before_start,
    )


def test_us_booking_waits_for_complaint_window(evaluator):
    end = NOW - timedelta(hours=2)
    record = _record_ending_at(end, country="US", captured_before_start=timedelta(days=10))

    result = evaluator.evaluate(record, NOW)

    assert result.payment_aging_ok is True
    assert result.service_delivery_ok is False
    assert result.eligible is False
    assert result.skip_reason() == "service_delivery"
    assert result.earliest_eligible_instant == end + timedelta(hours=24)


def test_same_day_capture_in_pt_waits_for_aging(evaluator):
    end = NOW - timedelta(hours=25)
    record = _record_ending_at(end, country="PT", captured_before_start=timedelta(0))

    result = evaluator.evaluate(record, NOW)

    assert result.service_delivery_ok is True
    assert result.payment_aging_ok is False
    assert result.eligible is False
    assert result.skip_reason() == "payment_aging"
    assert result.minimum_delay_days == 7


def test_advance_pt_booking_is_eligible_after_one_day(evaluator):
    end = NOW - timedelta(hours=25)
    record = _record_ending_at(end, country="PT", captured_before_start=timedelta(days=10))

    result = evaluator.evaluate(record, NOW)

    assert result.eligible is True
    assert result.skip_reason() is None
    assert result.effective_remaining_wait == timedelta(days=1)
    assert result.earliest_eligible_instant <= NOW


def test_remaining_wait_never_below_one_day():
    end = NOW
    assert effective_remaining_wait(
        minimum_delay_days=2, captured_at=end - timedelta(days=30), appointment_end=end
    ) == timedelta(days=1)
    assert effective_remaining_wait(
        minimum_delay_days=7, captured_at=end - timedelta(days=2), appointment_end=end
    ) == timedelta(days=5)


def test_future_appointment_is_never_eligible(evaluator):
    record = make_record(appointment_start=NOW + timedelta(days=2), captured_at=NOW - timedelta(days=30))

    result = evaluator.evaluate(record, NOW)

    assert result.payment_aging_ok is True
    assert result.service_delivery_ok is False
    assert result.eligible is False


def test_gates_are_monotone_in_now(evaluator):
    record = _record_ending_at(NOW, country="PT", captured_before_start=timedelta(days=3))
    seen_eligible = False
    for hours in range(0, 24 * 10, 3):
        result = evaluator.evaluate(record, NOW + timedelta(hours=hours))
        if seen_eligible:
            assert result.eligible
        seen_eligible = seen_eligible or result.eligible
    assert seen_eligible


def test_earliest_instant_is_first_eligible_instant(evaluator):
    record = _record_ending_at(NOW, country="PT", captured_before_start=timedelta(days=2))
    earliest = evaluator.evaluate(record, NOW).earliest_eligible_instant

    assert evaluator.evaluate(record, earliest).eligible is True
    assert evaluator.evaluate(record, earliest - timedelta(seconds=1)).eligible is False


def test_unknown_country_uses_strictest_delay(evaluator):
    record = make_record(payee_country=None)
    assert evaluator.evaluate(record, NOW).minimum_delay_days == 7


def test_short_complaint_window_is_clamped_to_one_day(policy):
    evaluator = EligibilityEvaluator(policy, complaint_window=timedelta(hours=1))
    assert evaluator.complaint_window == timedelta(days=1)
