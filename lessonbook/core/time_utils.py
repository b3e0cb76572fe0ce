import re
from datetime import date, datetime, time, timedelta

TIME_PATTERN = re.compile(r'^([01]?[0-9]|2[0-3]):([0-5][0-9])$')

WEEKDAY_MIN = 0
WEEKDAY_MAX = 6


def is_valid_time_string(value: str) -> bool:
    return isinstance(value, str) and TIME_PATTERN.fullmatch(value) is not None


def parse_time(value: str) -> time:
    """Parse a 24-hour ``HH:MM`` string. Raises ``ValueError`` on anything else."""
    match = TIME_PATTERN.fullmatch(value) if isinstance(value, str) else None
    if match is None:
        raise ValueError(f'Invalid time {value!r}, expected HH:MM.')
    return time(int(match.group(1)), int(match.group(2)))


def format_time(value: time) -> str:
    return value.strftime('%H:%M')


def sunday_weekday(day: date) -> int:
    """Weekday with 0=Sunday ... 6=Saturday."""
    return day.isoweekday() % 7


def intervals_overlap(start_a, end_a, start_b, end_b) -> bool:
    # Half-open intervals: touching endpoints do not overlap.
    return start_a < end_b and end_a > start_b


def iterate_dates(start: date, days: int):
    for offset in range(days):
        yield start + timedelta(days=offset)


def combine(day: date, value: time) -> datetime:
    return datetime.combine(day, value).replace(second=0, microsecond=0)
