"""
Room restriction policy evaluation.

Each rule is a pure function ``rule(policy, candidate, now)`` that returns a
``Violation`` or ``None``. ``evaluate`` runs every rule in a fixed order and
collects all violations, so the caller can report them at once. A room
without a policy passes every rule.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from . import models
from .intervals import Interval, format_time, to_minutes

BUSINESS_HOURS_START = time(8, 0)
BUSINESS_HOURS_END = time(22, 0)


class ViolationCode(str, Enum):
    BLOCKED = "BLOCKED"
    MIN_ADVANCE = "MIN_ADVANCE"
    DATE_CEILING_AUTO = "DATE_CEILING_AUTO"
    DATE_CEILING_FIXED = "DATE_CEILING_FIXED"
    OUTSIDE_ACADEMIC_PERIOD = "OUTSIDE_ACADEMIC_PERIOD"
    DURATION_TOO_SHORT = "DURATION_TOO_SHORT"
    DURATION_TOO_LONG = "DURATION_TOO_LONG"
    OUTSIDE_BUSINESS_HOURS = "OUTSIDE_BUSINESS_HOURS"
    # raised by admission itself, not by a policy rule
    DATE_IN_PAST = "DATE_IN_PAST"
    INVALID_TIME_RANGE = "INVALID_TIME_RANGE"


@dataclass(frozen=True)
class Violation:
    """
    One failed rule.

    Attributes
    ----------
    code : ViolationCode
        Which rule failed.
    message : str
        Human-readable explanation.
    day : date
        Candidate date the rule was evaluated for, if any.
    context : dict
        Rule-specific values (limits, computed duration, ...).
    """
    code: ViolationCode
    message: str
    day: Optional[date] = None
    context: Dict[str, Any] = field(default_factory=dict, compare=False)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "date": self.day.isoformat() if self.day else None,
            "context": {k: _jsonable(v) for k, v in self.context.items()},
        }


def _jsonable(value):
    if isinstance(value, (date, time)):
        return value.isoformat()
    return value


@dataclass(frozen=True)
class Candidate:
    """
    A booking under evaluation.

    Attributes
    ----------
    room_name : str
        Used in messages only.
    day : date
        Date of this instance.
    start_time, end_time : time
        Requested time range.
    series_end : date
        Last date of the recurring request this instance belongs to, if any.
    """
    room_name: str
    day: date
    start_time: time
    end_time: time
    series_end: Optional[date] = None

    @property
    def interval(self) -> Interval:
        return Interval.from_times(self.day, self.start_time, self.end_time)

    @property
    def last_day(self) -> date:
        return max(self.day, self.series_end) if self.series_end else self.day


Rule = Callable[[models.RestrictionPolicy, Candidate, datetime], Optional[Violation]]


def check_blocked(policy, candidate: Candidate, now: datetime) -> Optional[Violation]:
    if not policy.blocked:
        return None
    reason = policy.blocked_reason or ""
    return Violation(
        ViolationCode.BLOCKED,
        f"Room {candidate.room_name} is blocked for reservations. {reason}".strip(),
        candidate.day,
        {"reason": policy.blocked_reason},
    )


def check_min_advance(policy, candidate: Candidate, now: datetime) -> Optional[Violation]:
    required = policy.min_advance_days or 0
    if required <= 0:
        return None
    days_ahead = (candidate.day - now.date()).days
    if days_ahead >= required:
        return None
    return Violation(
        ViolationCode.MIN_ADVANCE,
        f"Reservations in room {candidate.room_name} must be requested "
        f"at least {required} days in advance",
        candidate.day,
        {"min_advance_days": required, "days_ahead": days_ahead},
    )


def check_auto_ceiling(policy, candidate: Candidate, now: datetime) -> Optional[Violation]:
    if policy.kind != models.RestrictionKind.AUTO:
        return None
    limit = now.date() + timedelta(days=policy.limit_days or 0)
    if candidate.last_day <= limit:
        return None
    return Violation(
        ViolationCode.DATE_CEILING_AUTO,
        f"Room {candidate.room_name} accepts reservations only until {limit.isoformat()}",
        candidate.day,
        {"limit_date": limit, "series_end": candidate.series_end},
    )


def check_fixed_ceiling(policy, candidate: Candidate, now: datetime) -> Optional[Violation]:
    if policy.kind != models.RestrictionKind.FIXED or policy.limit_date is None:
        return None
    if candidate.last_day <= policy.limit_date:
        return None
    return Violation(
        ViolationCode.DATE_CEILING_FIXED,
        f"Room {candidate.room_name} accepts reservations only until "
        f"{policy.limit_date.isoformat()}",
        candidate.day,
        {"limit_date": policy.limit_date, "series_end": candidate.series_end},
    )


def check_academic_period(policy, candidate: Candidate, now: datetime) -> Optional[Violation]:
    if policy.kind != models.RestrictionKind.ACADEMIC_PERIOD:
        return None
    period = policy.academic_period
    if period is None:
        return Violation(
            ViolationCode.OUTSIDE_ACADEMIC_PERIOD,
            f"Room {candidate.room_name} is restricted to an academic period that does not exist",
            candidate.day,
            {"academic_period_id": policy.academic_period_id},
        )
    start, end = period.reservations_start, period.reservations_end
    inside = start <= candidate.day <= end
    if inside and (candidate.series_end is None or candidate.series_end <= end):
        return None
    return Violation(
        ViolationCode.OUTSIDE_ACADEMIC_PERIOD,
        f"Room {candidate.room_name} accepts reservations only between "
        f"{start.isoformat()} and {end.isoformat()}",
        candidate.day,
        {"period": period.code, "period_start": start, "period_end": end},
    )


def check_min_duration(policy, candidate: Candidate, now: datetime) -> Optional[Violation]:
    minimum = policy.min_duration_minutes or 0
    duration = candidate.interval.duration
    if minimum <= 0 or duration >= minimum:
        return None
    return Violation(
        ViolationCode.DURATION_TOO_SHORT,
        f"Reservations in room {candidate.room_name} must last at least {minimum} minutes",
        candidate.day,
        {"min_duration_minutes": minimum, "duration_minutes": duration},
    )


def check_max_duration(policy, candidate: Candidate, now: datetime) -> Optional[Violation]:
    maximum = policy.max_duration_minutes or 0
    duration = candidate.interval.duration
    if maximum <= 0 or duration <= maximum:
        return None
    return Violation(
        ViolationCode.DURATION_TOO_LONG,
        f"Reservations in room {candidate.room_name} cannot exceed {maximum} minutes",
        candidate.day,
        {"max_duration_minutes": maximum, "duration_minutes": duration},
    )


def check_business_hours(policy, candidate: Candidate, now: datetime) -> Optional[Violation]:
    starts_early = to_minutes(candidate.start_time) < to_minutes(BUSINESS_HOURS_START)
    ends_late = to_minutes(candidate.end_time) > to_minutes(BUSINESS_HOURS_END)
    if not (starts_early or ends_late):
        return None
    return Violation(
        ViolationCode.OUTSIDE_BUSINESS_HOURS,
        f"Reservations in room {candidate.room_name} must be within "
        f"{format_time(BUSINESS_HOURS_START)}-{format_time(BUSINESS_HOURS_END)}",
        candidate.day,
        {"opens": BUSINESS_HOURS_START, "closes": BUSINESS_HOURS_END},
    )


RULES: Tuple[Rule, ...] = (
    check_blocked,
    check_min_advance,
    check_auto_ceiling,
    check_fixed_ceiling,
    check_academic_period,
    check_min_duration,
    check_max_duration,
    check_business_hours,
)


def evaluate(
    policy: Optional[models.RestrictionPolicy],
    candidate: Candidate,
    now: datetime,
    rules: Tuple[Rule, ...] = RULES,
) -> Tuple[Violation, ...]:
    """
    Evaluate a room policy against a candidate booking.

    Parameters
    ----------
    policy : RestrictionPolicy or None
        The room's policy; ``None`` means unrestricted.
    candidate : Candidate
        Booking under evaluation.
    now : datetime
        Current institutional time.
    rules : tuple
        Rules to run, in order.

    Returns
    -------
    tuple of Violation
        Every violated rule, in rule order; empty when the booking passes.
    """
    if policy is None:
        return ()
    violations = []
    for rule in rules:
        violation = rule(policy, candidate, now)
        if violation is not None:
            violations.append(violation)
    return tuple(violations)

