from datetime import date, datetime, time

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from lessonbook.auth.dependencies import get_current_user, require_teacher
from lessonbook.core.exceptions import DatabaseUnavailableError, ValidationError
from lessonbook.core.time_utils import format_time, parse_time
from lessonbook.database import get_db
from lessonbook.models.user import User
from lessonbook.services import availability_store, conflict_checker, slot_offers

router = APIRouter(tags=['schedule'])


class AvailableSlotRequest(BaseModel):
    # Field checks live in availability_store.validate_slot.
    weekday: int | None = None
    start_time: str | None = None
    end_time: str | None = None
    is_active: bool | None = None

    @field_validator('start_time', 'end_time')
    @classmethod
    def strip_time(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip()


class ReplaceScheduleRequest(BaseModel):
    available_slots: list[AvailableSlotRequest]


class AvailableSlotResponse(BaseModel):
    id: int
    teacher_id: int
    weekday: int
    start_time: str
    end_time: str
    is_active: bool
    created_at: datetime
    updated_at: datetime

    @field_validator('start_time', 'end_time', mode='before')
    @classmethod
    def format_clock(cls, value):
        if isinstance(value, time):
            return format_time(value)
        return value

    class Config:
        from_attributes = True


class ScheduleResponse(BaseModel):
    available_slots: list[AvailableSlotResponse]
    total_slots: int


class ReplaceScheduleResponse(BaseModel):
    available_slots: list[AvailableSlotResponse]
    updated_count: int
    created_count: int
    deleted_count: int


class ConflictResponse(BaseModel):
    reservation_id: int
    uuid: str
    student_id: int
    reserve_time: datetime
    end_time: datetime
    teacher_status: str
    student_status: str
    reason: str


class CheckPeriodResponse(BaseModel):
    from_date: date
    to_date: date


class ConflictCheckResponse(BaseModel):
    has_conflict: bool
    conflicts: list[ConflictResponse]
    total_conflicts: int
    within_availability: bool
    check_period: CheckPeriodResponse


class BookableSlotResponse(BaseModel):
    date: date
    weekday: int
    start_time: str
    end_time: str
    reserve_time: datetime


class BookableSlotsResponse(BaseModel):
    teacher_id: int
    from_date: date
    days: int
    slots: list[BookableSlotResponse]


def _parse_query_times(start_time: str, end_time: str) -> tuple[time, time]:
    errors: dict[str, list[str]] = {}
    parsed: dict[str, time] = {}
    for field, value in (('start_time', start_time), ('end_time', end_time)):
        try:
            parsed[field] = parse_time(value.strip())
        except ValueError:
            errors[field] = [availability_store.INVALID_TIME_FORMAT]
    if errors:
        raise ValidationError('Conflict check validation failed.', errors=errors)
    return parsed['start_time'], parsed['end_time']


@router.get('/teachers/schedule', response_model=ScheduleResponse)
def get_schedule(
    teacher: User = Depends(require_teacher),
    db: Session = Depends(get_db),
):
    try:
        slots = availability_store.get_schedule(db, teacher.id)
    except SQLAlchemyError as exc:
        raise DatabaseUnavailableError() from exc

    return ScheduleResponse(
        available_slots=[AvailableSlotResponse.model_validate(slot) for slot in slots],
        total_slots=len(slots),
    )


@router.put('/teachers/schedule', response_model=ReplaceScheduleResponse)
def replace_schedule(
    data: ReplaceScheduleRequest,
    teacher: User = Depends(require_teacher),
    db: Session = Depends(get_db),
):
    slots = [slot.model_dump() for slot in data.available_slots]

    try:
        replacement = availability_store.replace_schedule(db, teacher.id, slots)
    except SQLAlchemyError as exc:
        raise DatabaseUnavailableError() from exc

    return ReplaceScheduleResponse(
        available_slots=[AvailableSlotResponse.model_validate(slot) for slot in replacement.slots],
        updated_count=replacement.updated_count,
        created_count=replacement.created_count,
        deleted_count=replacement.deleted_count,
    )


@router.get('/teachers/schedule/conflicts', response_model=ConflictCheckResponse)
def check_schedule_conflicts(
    weekday: int = Query(...),
    start_time: str = Query(...),
    end_time: str = Query(...),
    from_date: date | None = Query(default=None),
    to_date: date | None = Query(default=None),
    teacher: User = Depends(require_teacher),
    db: Session = Depends(get_db),
):
    start, end = _parse_query_times(start_time, end_time)

    try:
        report = conflict_checker.check_conflict(
            db,
            teacher.id,
            weekday,
            start,
            end,
            from_date=from_date,
            to_date=to_date,
        )
    except SQLAlchemyError as exc:
        raise DatabaseUnavailableError() from exc

    return ConflictCheckResponse(
        has_conflict=report.has_conflict,
        conflicts=[ConflictResponse(**conflict.as_dict()) for conflict in report.conflicts],
        total_conflicts=len(report.conflicts),
        within_availability=report.within_availability,
        check_period=CheckPeriodResponse(from_date=report.from_date, to_date=report.to_date),
    )


@router.get('/teachers/{teacher_id}/bookable-slots', response_model=BookableSlotsResponse)
def list_bookable_slots(
    teacher_id: int,
    from_date: date | None = Query(default=None),
    days: int = Query(default=14),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    del user
    from_date = from_date or date.today()

    try:
        offers = slot_offers.bookable_slots(db, teacher_id, from_date, days)
    except SQLAlchemyError as exc:
        raise DatabaseUnavailableError() from exc

    return BookableSlotsResponse(
        teacher_id=teacher_id,
        from_date=from_date,
        days=days,
        slots=[BookableSlotResponse(**offer.as_dict()) for offer in offers],
    )
