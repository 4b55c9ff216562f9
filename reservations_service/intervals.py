"""
Single-day time intervals.

A reservation occupies the half-open range ``[start, end)`` of minutes of one
calendar day. Touching intervals (one ends when the other starts) do not
overlap.
"""
import re
from dataclasses import dataclass
from datetime import date, datetime, time

_TIME_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def parse_time(value: str) -> time:
    """
    Parse an ``H:MM`` or ``HH:MM`` string.

    Raises
    ------
    ValueError
        If the value is not a valid 24h clock time.
    """
    match = _TIME_RE.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise ValueError(f"Invalid time {value!r}, expected H:MM")
    return time(int(match.group(1)), int(match.group(2)))


def parse_date(value: str) -> date:
    """
    Parse the canonical ``YYYY-MM-DD`` date format; nothing else is accepted.

    Raises
    ------
    ValueError
        If the value is not a valid ``YYYY-MM-DD`` date.
    """
    if not isinstance(value, str) or not _DATE_RE.match(value):
        raise ValueError(f"Invalid date {value!r}, expected YYYY-MM-DD")
    return datetime.strptime(value, "%Y-%m-%d").date()


def to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def format_time(value: time) -> str:
    return value.strftime("%H:%M")


@dataclass(frozen=True)
class Interval:
    """
    Half-open time range ``[start_minute, end_minute)`` on ``day``.

    Attributes
    ----------
    day : date
        Calendar day.
    start_minute : int
        Minute of day the interval starts at.
    end_minute : int
        Minute of day the interval ends at (exclusive).
    """
    day: date
    start_minute: int
    end_minute: int

    @classmethod
    def from_times(cls, day: date, start: time, end: time) -> "Interval":
        return cls(day, to_minutes(start), to_minutes(end))

    @property
    def duration(self) -> int:
        return self.end_minute - self.start_minute

    def overlaps(self, other: "Interval") -> bool:
        return overlaps(self, other)


def overlaps(a: Interval, b: Interval) -> bool:
    """Return True iff ``a`` and ``b`` share at least one minute of the same day.

    Zero-length intervals never overlap anything.
    """
    if a.day != b.day:
        return False
    if a.duration <= 0 or b.duration <= 0:
        return False
    return a.start_minute < b.end_minute and b.start_minute < a.end_minute
