"""Overlap detection between candidate lesson times and existing bookings.

Every check here uses half-open intervals: ``[s1, e1)`` and ``[s2, e2)``
overlap iff ``s1 < e2 and e1 > s2``. A lesson ending at 11:00 and another
starting at 11:00 do not conflict. Cancelled bookings never conflict.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta

from sqlalchemy.orm import Session

from lessonbook.core import config
from lessonbook.core.exceptions import ValidationError
from lessonbook.core.time_utils import (
    WEEKDAY_MAX,
    WEEKDAY_MIN,
    combine,
    intervals_overlap,
    sunday_weekday,
)
from lessonbook.models.reservation import Reservation, ReservationStatus
from lessonbook.services import availability_store

# Widest lesson we ever need to look back for when scanning by start time.
MAX_LESSON_SPAN = timedelta(days=1)


@dataclass
class Conflict:
    reservation_id: int
    uuid: str
    student_id: int
    reserve_time: datetime
    end_time: datetime
    teacher_status: str
    student_status: str
    reason: str

    def as_dict(self) -> dict:
        return {
            'reservation_id': self.reservation_id,
            'uuid': self.uuid,
            'student_id': self.student_id,
            'reserve_time': self.reserve_time.isoformat(),
            'end_time': self.end_time.isoformat(),
            'teacher_status': self.teacher_status,
            'student_status': self.student_status,
            'reason': self.reason,
        }


@dataclass
class ConflictReport:
    from_date: date
    to_date: date
    within_availability: bool
    conflicts: list[Conflict] = field(default_factory=list)

    @property
    def has_conflict(self) -> bool:
        return len(self.conflicts) > 0


def _to_conflict(reservation: Reservation, start: datetime, end: datetime) -> Conflict:
    return Conflict(
        reservation_id=reservation.id,
        uuid=reservation.uuid,
        student_id=reservation.student_id,
        reserve_time=reservation.reserve_time,
        end_time=reservation.end_time,
        teacher_status=reservation.teacher_status.value,
        student_status=reservation.student_status.value,
        reason=(
            f'Booking {reservation.reserve_time:%Y-%m-%d %H:%M}-{reservation.end_time:%H:%M} '
            f'overlaps {start:%Y-%m-%d %H:%M}-{end:%H:%M}'
        ),
    )


def live_reservations(db: Session, teacher_id: int, range_start: datetime, range_end: datetime) -> list[Reservation]:
    """Non-cancelled bookings for a teacher that could touch ``[range_start, range_end)``."""
    return (
        db.query(Reservation)
        .filter(
            Reservation.teacher_id == teacher_id,
            Reservation.teacher_status != ReservationStatus.CANCELLED,
            Reservation.student_status != ReservationStatus.CANCELLED,
            Reservation.reserve_time < range_end,
            Reservation.reserve_time > range_start - MAX_LESSON_SPAN,
        )
        .order_by(Reservation.reserve_time.asc())
        .all()
    )


def find_booking_conflicts(
    db: Session,
    teacher_id: int,
    start: datetime,
    end: datetime,
    exclude_id: int | None = None,
) -> list[Conflict]:
    """Every non-cancelled booking of ``teacher_id`` overlapping ``[start, end)``."""
    conflicts = []
    for reservation in live_reservations(db, teacher_id, start, end):
        if exclude_id is not None and reservation.id == exclude_id:
            continue
        if intervals_overlap(start, end, reservation.reserve_time, reservation.end_time):
            conflicts.append(_to_conflict(reservation, start, end))
    return conflicts


def _check_window(from_date: date | None, to_date: date | None, today: date) -> tuple[date, date]:
    from_date = from_date or today
    to_date = to_date or from_date + timedelta(days=config.CONFLICT_CHECK_DEFAULT_DAYS)

    if from_date >= to_date:
        raise ValidationError(
            'Invalid date range.',
            errors={'to_date': ['to_date must be later than from_date.']},
            code='invalid_date_range',
        )
    if (to_date - from_date).days > config.CONFLICT_CHECK_MAX_RANGE_DAYS:
        raise ValidationError(
            'Invalid date range.',
            errors={'to_date': [f'Range cannot exceed {config.CONFLICT_CHECK_MAX_RANGE_DAYS} days.']},
            code='invalid_date_range',
        )
    return from_date, to_date


def check_conflict(
    db: Session,
    teacher_id: int,
    weekday: int,
    start: time,
    end: time,
    from_date: date | None = None,
    to_date: date | None = None,
    today: date | None = None,
) -> ConflictReport:
    """Dry-run a weekly window against the teacher's bookings in ``[from_date, to_date)``.

    Used while editing availability: for every date in the window that falls on
    ``weekday`` the candidate ``[start, end)`` is laid on that date and compared
    with the bookings there.
    """
    errors: dict[str, list[str]] = {}
    if isinstance(weekday, bool) or not isinstance(weekday, int) or not WEEKDAY_MIN <= weekday <= WEEKDAY_MAX:
        errors['weekday'] = [availability_store.WEEKDAY_INVALID]
    if end <= start:
        errors['end_time'] = [availability_store.TIME_ORDER_INVALID]
    if errors:
        raise ValidationError('Conflict check validation failed.', errors=errors)

    from_date, to_date = _check_window(from_date, to_date, today or date.today())

    slots = availability_store.active_slots(db, teacher_id, weekday)
    within = any(availability_store.slot_contains(slot, start, end) for slot in slots)

    report = ConflictReport(from_date=from_date, to_date=to_date, within_availability=within)

    reservations = live_reservations(
        db,
        teacher_id,
        combine(from_date, time(0, 0)),
        combine(to_date, time(0, 0)),
    )
    for reservation in reservations:
        day = reservation.reserve_time.date()
        if not from_date <= day < to_date or sunday_weekday(day) != weekday:
            continue
        candidate_start = combine(day, start)
        candidate_end = combine(day, end)
        if intervals_overlap(candidate_start, candidate_end, reservation.reserve_time, reservation.end_time):
            report.conflicts.append(_to_conflict(reservation, candidate_start, candidate_end))

    return report
