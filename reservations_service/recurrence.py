"""
Weekly recurrence expansion.

A recurring request names a start date, a set of weekdays (0 = Sunday ...
6 = Saturday) and an inclusive end date. Expansion is deterministic and
capped so that one request cannot flood a room calendar.
"""
from datetime import date, timedelta
from typing import Iterable, List

from .config import MAX_RECURRENCE_INSTANCES
from .errors import LimitExceeded


def sunday_based_weekday(day: date) -> int:
    """Weekday with 0 = Sunday ... 6 = Saturday."""
    return (day.weekday() + 1) % 7


def expand_dates(
    start: date,
    weekdays: Iterable[int],
    until: date,
    limit: int = MAX_RECURRENCE_INSTANCES,
) -> List[date]:
    """
    Expand a recurring request into concrete dates.

    ``start`` is always the first instance, whatever its weekday; every
    later day up to ``until`` (inclusive) whose weekday is in ``weekdays``
    follows in calendar order.

    Parameters
    ----------
    start : date
        First date of the series.
    weekdays : Iterable[int]
        Weekdays to repeat on, 0 = Sunday ... 6 = Saturday.
    until : date
        Last date the series may reach.
    limit : int
        Maximum number of instances.

    Returns
    -------
    List[date]
        Ordered, duplicate-free dates.

    Raises
    ------
    ValueError
        If ``until`` precedes ``start`` or a weekday is outside 0..6.
    LimitExceeded
        If the expansion would produce more than ``limit`` instances.
    """
    wanted = set(weekdays)
    if any(not isinstance(d, int) or d < 0 or d > 6 for d in wanted):
        raise ValueError("Repeat weekdays must be integers between 0 (Sunday) and 6 (Saturday)")
    if until < start:
        raise ValueError("Repeat end date must be on or after the reservation date")

    dates = [start]
    current = start + timedelta(days=1)
    while current <= until:
        if sunday_based_weekday(current) in wanted:
            dates.append(current)
            if len(dates) > limit:
                raise LimitExceeded(limit)
        current += timedelta(days=1)
    return dates
