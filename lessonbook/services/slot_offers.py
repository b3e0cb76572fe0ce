"""Expands a teacher's weekly template into concrete lesson starts a student can book."""

from dataclasses import dataclass
from datetime import date, datetime, timedelta

from sqlalchemy.orm import Session

from lessonbook.core import config
from lessonbook.core.exceptions import ValidationError
from lessonbook.core.time_utils import combine, intervals_overlap, iterate_dates, sunday_weekday
from lessonbook.services import availability_store, conflict_checker


@dataclass(frozen=True)
class BookableSlot:
    start: datetime
    end: datetime
    weekday: int

    def as_dict(self) -> dict:
        return {
            'date': self.start.date().isoformat(),
            'weekday': self.weekday,
            'start_time': self.start.strftime('%H:%M'),
            'end_time': self.end.strftime('%H:%M'),
            'reserve_time': self.start.isoformat(),
        }


def bookable_slots(
    db: Session,
    teacher_id: int,
    from_date: date,
    days: int,
    now: datetime | None = None,
) -> list[BookableSlot]:
    if not 1 <= days <= config.BOOKABLE_RANGE_MAX_DAYS:
        raise ValidationError(
            'Invalid date range.',
            errors={'days': [f'days must be between 1 and {config.BOOKABLE_RANGE_MAX_DAYS}.']},
            code='invalid_date_range',
        )

    availability_store.get_teacher(db, teacher_id)

    now = now or datetime.now()
    earliest = now + timedelta(hours=config.MIN_ADVANCE_BOOKING_HOURS)
    lesson = timedelta(minutes=config.LESSON_DURATION_MINUTES)

    slots_by_weekday: dict[int, list] = {}
    for slot in availability_store.active_slots(db, teacher_id):
        slots_by_weekday.setdefault(slot.weekday, []).append(slot)

    range_start = combine(from_date, datetime.min.time())
    range_end = range_start + timedelta(days=days)
    booked = [
        (reservation.reserve_time, reservation.end_time)
        for reservation in conflict_checker.live_reservations(db, teacher_id, range_start, range_end)
    ]

    offers: dict[datetime, BookableSlot] = {}
    for day in iterate_dates(from_date, days):
        weekday = sunday_weekday(day)
        for slot in slots_by_weekday.get(weekday, []):
            start = combine(day, slot.start_time)
            slot_end = combine(day, slot.end_time)
            while start + lesson <= slot_end:
                end = start + lesson
                if start >= earliest and start not in offers:
                    if not any(intervals_overlap(start, end, b_start, b_end) for b_start, b_end in booked):
                        offers[start] = BookableSlot(start=start, end=end, weekday=weekday)
                start += lesson

    return [offers[start] for start in sorted(offers)]
