"""Unit tests for calendar-day parsing."""

from datetime import date, datetime, timedelta, timezone

import pytest

from portal.utils.dates import calendar_day, parse_datetime, try_calendar_day


@pytest.mark.parametrize(
    "value,expected",
    [
        ("2024-03-11", date(2024, 3, 11)),
        ("2024-03-11T10:15:00", date(2024, 3, 11)),
        ("2024-03-11T10:15:00Z", date(2024, 3, 11)),
        ("2024/03/11", date(2024, 3, 11)),
        ("11/03/2024", date(2024, 3, 11)),
        ("11/03/2024 08:00", date(2024, 3, 11)),
        ("11-03-2024", date(2024, 3, 11)),
        ("11 Mar 2024", date(2024, 3, 11)),
        ("11 March 2024", date(2024, 3, 11)),
        (date(2024, 3, 11), date(2024, 3, 11)),
        (datetime(2024, 3, 11, 23, 59), date(2024, 3, 11)),
    ],
)
def test_calendar_day_formats(value, expected):
    assert calendar_day(value) == expected


def test_aware_values_convert_to_target_zone():
    late_utc = "2024-03-10T23:30:00Z"

    assert calendar_day(late_utc) == date(2024, 3, 10)
    assert calendar_day(late_utc, timezone(timedelta(hours=2))) == date(2024, 3, 11)


def test_naive_values_are_taken_as_local():
    assert calendar_day("2024-03-10T23:30:00", timezone(timedelta(hours=2))) == date(2024, 3, 10)


def test_parse_keeps_offset():
    assert parse_datetime("2024-03-11T10:00:00+02:00").utcoffset() == timedelta(hours=2)


@pytest.mark.parametrize("value", [None, "", "   ", "not a date", "2024-13-45"])
def test_unparseable_values(value):
    with pytest.raises(ValueError):
        parse_datetime(value)
    assert try_calendar_day(value) is None
