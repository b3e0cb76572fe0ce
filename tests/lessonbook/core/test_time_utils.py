from datetime import date, time

import pytest

from lessonbook.core.time_utils import intervals_overlap, is_valid_time_string, parse_time, sunday_weekday


@pytest.mark.parametrize('value', ['00:00', '9:05', '09:05', '23:59'])
def test_valid_time_strings(value: str) -> None:
    assert is_valid_time_string(value) is True


@pytest.mark.parametrize('value', ['24:00', '12:60', '9:5', '12:00:00', '', None, 900])
def test_invalid_time_strings(value) -> None:
    assert is_valid_time_string(value) is False
    with pytest.raises(ValueError):
        parse_time(value)


def test_parse_time() -> None:
    assert parse_time('7:30') == time(7, 30)


def test_sunday_weekday_starts_on_sunday() -> None:
    assert sunday_weekday(date(2026, 3, 1)) == 0
    assert sunday_weekday(date(2026, 3, 2)) == 1
    assert sunday_weekday(date(2026, 3, 7)) == 6


def test_intervals_overlap_is_half_open() -> None:
    assert intervals_overlap(1, 3, 2, 4) is True
    assert intervals_overlap(1, 2, 2, 3) is False
    assert intervals_overlap(2, 3, 1, 2) is False
    assert intervals_overlap(1, 4, 2, 3) is True
