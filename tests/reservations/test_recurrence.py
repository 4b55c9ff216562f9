from datetime import date

import pytest

from reservations_service.errors import LimitExceeded
from reservations_service.recurrence import expand_dates, sunday_based_weekday

MONDAY = date(2026, 3, 2)


def test_weekdays_are_sunday_based():
    assert sunday_based_weekday(date(2026, 3, 1)) == 0
    assert sunday_based_weekday(MONDAY) == 1
    assert sunday_based_weekday(date(2026, 3, 7)) == 6


def test_monday_wednesday_for_three_weeks_and_a_half():
    dates = expand_dates(MONDAY, [1, 3], date(2026, 3, 23))
    assert dates == [
        date(2026, 3, 2),
        date(2026, 3, 4),
        date(2026, 3, 9),
        date(2026, 3, 11),
        date(2026, 3, 16),
        date(2026, 3, 18),
        date(2026, 3, 23),
    ]


def test_start_is_first_even_when_not_a_selected_weekday():
    # Tuesday start, repeating on Thursdays
    dates = expand_dates(date(2026, 3, 3), [4], date(2026, 3, 12))
    assert dates == [date(2026, 3, 3), date(2026, 3, 5), date(2026, 3, 12)]


def test_expansion_is_deterministic_and_duplicate_free():
    first = expand_dates(MONDAY, [1, 1, 3], date(2026, 6, 1))
    second = expand_dates(MONDAY, [3, 1], date(2026, 6, 1))
    assert first == second
    assert len(first) == len(set(first))
    assert first == sorted(first)


def test_until_equal_to_start_gives_one_instance():
    assert expand_dates(MONDAY, [1], MONDAY) == [MONDAY]


def test_daily_repetition_over_the_cap_is_refused():
    # 301 consecutive days
    with pytest.raises(LimitExceeded) as excinfo:
        expand_dates(date(2026, 1, 1), range(7), date(2026, 10, 28))
    assert excinfo.value.code == "TOO_MANY_INSTANCES"
    assert excinfo.value.limit == 300


def test_exactly_at_the_cap_is_allowed():
    dates = expand_dates(date(2026, 1, 1), range(7), date(2026, 10, 27))
    assert len(dates) == 300


def test_invalid_input_is_rejected():
    with pytest.raises(ValueError):
        expand_dates(MONDAY, [7], date(2026, 3, 9))
    with pytest.raises(ValueError):
        expand_dates(MONDAY, [1], date(2026, 3, 1))
