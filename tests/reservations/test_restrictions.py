from datetime import date, datetime, time

from reservations_service import models
from reservations_service.restrictions import Candidate, ViolationCode, evaluate

NOW = datetime(2026, 3, 2, 9, 0)


def make_policy(**overrides):
    fields = {
        "blocked": False,
        "min_advance_days": 0,
        "min_duration_minutes": 0,
        "max_duration_minutes": 0,
        "kind": models.RestrictionKind.NONE,
        "requires_approval": False,
    }
    fields.update(overrides)
    return models.RestrictionPolicy(**fields)


def candidate(day=date(2026, 3, 10), start=time(10, 0), end=time(11, 0), series_end=None):
    return Candidate(room_name="Lab 101", day=day, start_time=start, end_time=end, series_end=series_end)


def codes(violations):
    return [v.code for v in violations]


def test_room_without_policy_passes_everything():
    assert evaluate(None, candidate(start=time(6, 0), end=time(23, 0)), NOW) == ()


def test_default_policy_passes():
    assert evaluate(make_policy(), candidate(), NOW) == ()


def test_blocked_room_reports_reason():
    violations = evaluate(make_policy(blocked=True, blocked_reason="Renovation"), candidate(), NOW)
    assert codes(violations) == [ViolationCode.BLOCKED]
    assert "Renovation" in violations[0].message


def test_min_advance_counts_whole_days_from_today():
    policy = make_policy(min_advance_days=3)
    assert codes(evaluate(policy, candidate(day=date(2026, 3, 4)), NOW)) == [ViolationCode.MIN_ADVANCE]
    assert evaluate(policy, candidate(day=date(2026, 3, 5)), NOW) == ()


def test_auto_ceiling_uses_series_end():
    policy = make_policy(kind=models.RestrictionKind.AUTO, limit_days=30)
    assert evaluate(policy, candidate(day=date(2026, 4, 1)), NOW) == ()
    over = evaluate(policy, candidate(day=date(2026, 3, 10), series_end=date(2026, 4, 2)), NOW)
    assert codes(over) == [ViolationCode.DATE_CEILING_AUTO]


def test_fixed_ceiling():
    policy = make_policy(kind=models.RestrictionKind.FIXED, limit_date=date(2026, 3, 31))
    assert evaluate(policy, candidate(day=date(2026, 3, 31)), NOW) == ()
    assert codes(evaluate(policy, candidate(day=date(2026, 4, 1)), NOW)) == [
        ViolationCode.DATE_CEILING_FIXED
    ]


def test_academic_period_window():
    policy = make_policy(kind=models.RestrictionKind.ACADEMIC_PERIOD)
    policy.academic_period = models.AcademicPeriod(
        code="2026-1",
        reservations_start=date(2026, 3, 1),
        reservations_end=date(2026, 6, 30),
    )
    assert evaluate(policy, candidate(series_end=date(2026, 6, 30)), NOW) == ()
    assert codes(evaluate(policy, candidate(series_end=date(2026, 7, 1)), NOW)) == [
        ViolationCode.OUTSIDE_ACADEMIC_PERIOD
    ]
    assert codes(evaluate(policy, candidate(day=date(2026, 7, 2)), NOW)) == [
        ViolationCode.OUTSIDE_ACADEMIC_PERIOD
    ]


def test_academic_period_missing_is_a_violation():
    policy = make_policy(kind=models.RestrictionKind.ACADEMIC_PERIOD, academic_period_id=42)
    assert codes(evaluate(policy, candidate(), NOW)) == [ViolationCode.OUTSIDE_ACADEMIC_PERIOD]


def test_duration_too_short():
    policy = make_policy(min_duration_minutes=60)
    violations = evaluate(policy, candidate(start=time(10, 0), end=time(10, 30)), NOW)
    assert codes(violations) == [ViolationCode.DURATION_TOO_SHORT]
    assert violations[0].context["duration_minutes"] == 30


def test_duration_too_long():
    policy = make_policy(max_duration_minutes=120)
    assert evaluate(policy, candidate(start=time(10, 0), end=time(12, 0)), NOW) == ()
    assert codes(evaluate(policy, candidate(start=time(10, 0), end=time(12, 1)), NOW)) == [
        ViolationCode.DURATION_TOO_LONG
    ]


def test_business_hours_bound_the_day():
    policy = make_policy()
    assert evaluate(policy, candidate(start=time(8, 0), end=time(22, 0)), NOW) == ()
    assert codes(evaluate(policy, candidate(start=time(7, 30), end=time(9, 0)), NOW)) == [
        ViolationCode.OUTSIDE_BUSINESS_HOURS
    ]
    assert codes(evaluate(policy, candidate(start=time(21, 0), end=time(22, 30)), NOW)) == [
        ViolationCode.OUTSIDE_BUSINESS_HOURS
    ]


def test_every_violation_is_reported_in_rule_order():
    policy = make_policy(blocked=True, min_advance_days=30, min_duration_minutes=90)
    violations = evaluate(policy, candidate(start=time(7, 0), end=time(8, 0)), NOW)
    assert codes(violations) == [
        ViolationCode.BLOCKED,
        ViolationCode.MIN_ADVANCE,
        ViolationCode.DURATION_TOO_SHORT,
        ViolationCode.OUTSIDE_BUSINESS_HOURS,
    ]


def test_violation_serializes_dates():
    violation = evaluate(make_policy(kind=models.RestrictionKind.FIXED, limit_date=date(2026, 3, 5)), candidate(), NOW)[0]
    data = violation.as_dict()
    assert data["code"] == "DATE_CEILING_FIXED"
    assert data["date"] == "2026-03-10"
    assert data["context"]["limit_date"] == "2026-03-05"
