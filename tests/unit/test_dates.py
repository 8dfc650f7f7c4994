"""
Unit tests -- Pacific calendar bounds converted to UTC instants.
"""
import datetime

import pytest

from tablegate.core.errors import InvalidValue
from tablegate.query.dates import PACIFIC, UTC, is_date_like, pacific_bound_to_utc, pacific_today


def _utc(*args):
    return datetime.datetime(*args, tzinfo=UTC)


def test_is_date_like():
    assert is_date_like("2025-01-15")
    assert is_date_like("2025-01-15 13:45:00")
    assert not is_date_like("2025-1-15")
    assert not is_date_like("yesterday")
    assert not is_date_like("2025-01-15\n")
    assert not is_date_like(20250115)


def test_winter_date_is_utc_minus_8():
    assert pacific_bound_to_utc("2025-01-15") == _utc(2025, 1, 15, 8)


def test_summer_date_is_utc_minus_7():
    assert pacific_bound_to_utc("2025-07-04") == _utc(2025, 7, 4, 7)


def test_end_of_range_is_next_day_midnight():
    assert pacific_bound_to_utc("2025-01-15", end_of_range=True) == _utc(2025, 1, 16, 8)


def test_spring_forward_day_is_23_hours():
    start = pacific_bound_to_utc("2025-03-09")
    end = pacific_bound_to_utc("2025-03-09", end_of_range=True)
    assert start == _utc(2025, 3, 9, 8)
    assert end == _utc(2025, 3, 10, 7)
    assert end - start == datetime.timedelta(hours=23)


def test_fall_back_day_is_25_hours():
    start = pacific_bound_to_utc("2025-11-02")
    end = pacific_bound_to_utc("2025-11-02", end_of_range=True)
    assert end - start == datetime.timedelta(hours=25)


def test_datetime_midnight_is_start_of_day():
    assert pacific_bound_to_utc("2025-01-15 00:00:00") == _utc(2025, 1, 15, 8)


def test_datetime_end_of_day_is_next_midnight():
    assert pacific_bound_to_utc("2025-01-15 23:59:59") == _utc(2025, 1, 16, 8)


def test_datetime_wall_time_converted_as_is():
    assert pacific_bound_to_utc("2025-07-04 12:30:00") == _utc(2025, 7, 4, 19, 30)


@pytest.mark.parametrize("value", ["2025-02-30", "2025-13-01", "2025-01-15 25:00:00", "not a date"])
def test_invalid_dates_rejected(value):
    with pytest.raises(InvalidValue):
        pacific_bound_to_utc(value)


def test_pacific_today_is_a_pacific_calendar_day():
    before = datetime.datetime.now(PACIFIC).date()
    today = pacific_today()
    after = datetime.datetime.now(PACIFIC).date()
    assert before <= today <= after
