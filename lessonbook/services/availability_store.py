"""Teacher weekly availability: validation and wholesale replacement."""

import logging
from dataclasses import dataclass
from datetime import time
from typing import Any, Mapping, Sequence

from sqlalchemy.orm import Session

from lessonbook.core import config
from lessonbook.core.exceptions import NotFoundError, ValidationError
from lessonbook.core.time_utils import WEEKDAY_MAX, WEEKDAY_MIN, is_valid_time_string, parse_time
from lessonbook.models.availability import TeacherAvailableSlot
from lessonbook.models.user import ROLE_TEACHER, User

logger = logging.getLogger(__name__)

WEEKDAY_REQUIRED = 'Weekday is required.'
WEEKDAY_INVALID = 'Weekday must be an integer between 0 (Sunday) and 6 (Saturday).'
START_TIME_REQUIRED = 'Start time is required.'
END_TIME_REQUIRED = 'End time is required.'
INVALID_TIME_FORMAT = 'Time must use 24-hour HH:MM format.'
TIME_ORDER_INVALID = 'End time must be later than start time.'
IS_ACTIVE_INVALID = 'is_active must be a boolean.'


@dataclass
class ScheduleReplacement:
    slots: list[TeacherAvailableSlot]
    updated_count: int
    created_count: int
    deleted_count: int


def get_teacher(db: Session, teacher_id: int) -> User:
    teacher = db.query(User).filter(User.id == teacher_id, User.role == ROLE_TEACHER).first()
    if teacher is None:
        raise NotFoundError('Teacher not found.', code='teacher_not_found', details={'teacher_id': teacher_id})
    return teacher


def validate_slot(slot: Mapping[str, Any]) -> list[tuple[str, str]]:
    """Return ``(field, message)`` pairs for everything wrong with one slot."""
    errors: list[tuple[str, str]] = []

    weekday = slot.get('weekday')
    if weekday is None:
        errors.append(('weekday', WEEKDAY_REQUIRED))
    elif isinstance(weekday, bool) or not isinstance(weekday, int) or not WEEKDAY_MIN <= weekday <= WEEKDAY_MAX:
        errors.append(('weekday', WEEKDAY_INVALID))

    start_time = slot.get('start_time')
    end_time = slot.get('end_time')

    if not start_time:
        errors.append(('start_time', START_TIME_REQUIRED))
    elif not is_valid_time_string(start_time):
        errors.append(('start_time', INVALID_TIME_FORMAT))

    if not end_time:
        errors.append(('end_time', END_TIME_REQUIRED))
    elif not is_valid_time_string(end_time):
        errors.append(('end_time', INVALID_TIME_FORMAT))

    if is_valid_time_string(start_time) and is_valid_time_string(end_time):
        if parse_time(end_time) <= parse_time(start_time):
            errors.append(('end_time', TIME_ORDER_INVALID))

    is_active = slot.get('is_active', True)
    if is_active is not None and not isinstance(is_active, bool):
        errors.append(('is_active', IS_ACTIVE_INVALID))

    return errors


def validate_schedule(slots: Sequence[Mapping[str, Any]]) -> None:
    errors: dict[str, list[str]] = {}

    if len(slots) > config.MAX_SLOTS_PER_TEACHER:
        errors['available_slots'] = [f'A teacher may have at most {config.MAX_SLOTS_PER_TEACHER} slots.']

    for index, slot in enumerate(slots):
        for field, message in validate_slot(slot):
            errors.setdefault(f'available_slots[{index}].{field}', []).append(message)

    if errors:
        raise ValidationError('Schedule validation failed.', errors=errors)


def get_schedule(db: Session, teacher_id: int) -> list[TeacherAvailableSlot]:
    return (
        db.query(TeacherAvailableSlot)
        .filter(TeacherAvailableSlot.teacher_id == teacher_id)
        .order_by(TeacherAvailableSlot.weekday.asc(), TeacherAvailableSlot.start_time.asc())
        .all()
    )


def active_slots(
    db: Session,
    teacher_id: int,
    weekday: int | None = None,
    lock: bool = False,
) -> list[TeacherAvailableSlot]:
    query = db.query(TeacherAvailableSlot).filter(
        TeacherAvailableSlot.teacher_id == teacher_id,
        TeacherAvailableSlot.is_active.is_(True),
    )
    if weekday is not None:
        query = query.filter(TeacherAvailableSlot.weekday == weekday)
    if lock:
        query = query.with_for_update()
    return query.order_by(TeacherAvailableSlot.weekday.asc(), TeacherAvailableSlot.start_time.asc()).all()


def slot_contains(slot: TeacherAvailableSlot, start: time, end: time) -> bool:
    return slot.start_time <= start and end <= slot.end_time


def is_within_availability(
    db: Session,
    teacher_id: int,
    weekday: int,
    start: time,
    end: time,
    lock: bool = False,
) -> bool:
    """True iff a single active slot fully contains ``[start, end)``.

    With ``lock=True`` the teacher's active slots for that weekday stay locked
    until the caller's transaction ends, which serializes concurrent bookings
    for the same teacher.
    """
    slots = active_slots(db, teacher_id, weekday, lock=lock)
    if end <= start:
        return False
    return any(slot_contains(slot, start, end) for slot in slots)


def replace_schedule(db: Session, teacher_id: int, slots: Sequence[Mapping[str, Any]]) -> ScheduleReplacement:
    """Validate every slot, then swap the teacher's whole slot set in one transaction."""
    validate_schedule(slots)

    try:
        existing = db.query(TeacherAvailableSlot).filter(TeacherAvailableSlot.teacher_id == teacher_id).all()
        for slot in existing:
            db.delete(slot)
        db.flush()

        new_slots = [
            TeacherAvailableSlot(
                teacher_id=teacher_id,
                weekday=slot['weekday'],
                start_time=parse_time(slot['start_time']),
                end_time=parse_time(slot['end_time']),
                is_active=True if slot.get('is_active') is None else slot['is_active'],
            )
            for slot in slots
        ]
        db.add_all(new_slots)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        'Replaced schedule teacher_id=%s deleted=%s created=%s', teacher_id, len(existing), len(new_slots),
    )

    return ScheduleReplacement(
        slots=get_schedule(db, teacher_id),
        updated_count=0,
        created_count=len(new_slots),
        deleted_count=len(existing),
    )
