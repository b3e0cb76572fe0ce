from datetime import date, datetime

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from lessonbook.auth.dependencies import get_current_user, require_student, require_teacher
from lessonbook.core.exceptions import DatabaseUnavailableError
from lessonbook.database import get_db
from lessonbook.models.reservation import ReservationStatus
from lessonbook.models.user import User
from lessonbook.services import reservation_state_machine

router = APIRouter(prefix='/reservations', tags=['reservations'])

MAX_REASON_LENGTH = 500


def _normalize_reason(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > MAX_REASON_LENGTH:
        raise ValueError(f'Reason must be {MAX_REASON_LENGTH} characters or fewer.')

    return normalized


class CreateReservationRequest(BaseModel):
    course_id: int
    teacher_id: int
    reserve_date: date
    reserve_time: str

    @field_validator('reserve_time')
    @classmethod
    def strip_reserve_time(cls, value: str) -> str:
        return value.strip()


class RespondReservationRequest(BaseModel):
    action: str
    reason: str | None = None

    @field_validator('action')
    @classmethod
    def validate_action(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in reservation_state_machine.ACTIONS:
            raise ValueError('Action must be confirm or reject.')
        return normalized

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _normalize_reason(value)


class CancelReservationRequest(BaseModel):
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _normalize_reason(value)


class ReservationResponse(BaseModel):
    id: int
    uuid: str
    course_id: int
    teacher_id: int
    student_id: int
    reserve_time: datetime
    end_time: datetime
    duration_minutes: int
    teacher_status: ReservationStatus
    student_status: ReservationStatus
    overall_status: str
    response_deadline: datetime | None = None
    rejection_reason: str | None = None
    cancel_reason: str | None = None
    cancelled_by: str | None = None
    cancelled_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class RemainingLessonsResponse(BaseModel):
    total: int
    used: int
    remaining: int


class CreateReservationResponse(BaseModel):
    reservation: ReservationResponse
    remaining_lessons: RemainingLessonsResponse


class ReservationEnvelope(BaseModel):
    reservation: ReservationResponse


class CompleteReservationResponse(BaseModel):
    reservation: ReservationResponse
    is_fully_completed: bool


class CancelReservationResponse(BaseModel):
    reservation: ReservationResponse
    refunded_lessons: int
    remaining_lessons: RemainingLessonsResponse


class PaginationResponse(BaseModel):
    page: int
    per_page: int
    total: int
    total_pages: int


class ReservationListResponse(BaseModel):
    reservations: list[ReservationResponse]
    pagination: PaginationResponse


@router.post('', response_model=CreateReservationResponse, status_code=status.HTTP_201_CREATED)
def create_reservation(
    data: CreateReservationRequest,
    student: User = Depends(require_student),
    db: Session = Depends(get_db),
):
    try:
        created = reservation_state_machine.create(
            db,
            student_id=student.id,
            course_id=data.course_id,
            teacher_id=data.teacher_id,
            reserve_date=data.reserve_date,
            reserve_time=data.reserve_time,
        )
    except SQLAlchemyError as exc:
        raise DatabaseUnavailableError() from exc

    return CreateReservationResponse(
        reservation=ReservationResponse.model_validate(created.reservation),
        remaining_lessons=RemainingLessonsResponse(**created.remaining_lessons.as_dict()),
    )


@router.get('', response_model=ReservationListResponse)
def list_reservations(
    status_filter: str | None = Query(default=None, alias='status'),
    course_id: int | None = Query(default=None),
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=10, ge=1, le=reservation_state_machine.MAX_PER_PAGE),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        result = reservation_state_machine.list_reservations(
            db,
            actor_id=user.id,
            role=user.role,
            status=status_filter,
            course_id=course_id,
            date_from=date_from,
            date_to=date_to,
            page=page,
            per_page=per_page,
        )
    except SQLAlchemyError as exc:
        raise DatabaseUnavailableError() from exc

    return ReservationListResponse(
        reservations=[ReservationResponse.model_validate(reservation) for reservation in result.reservations],
        pagination=PaginationResponse(
            page=result.page,
            per_page=result.per_page,
            total=result.total,
            total_pages=result.total_pages,
        ),
    )


@router.get('/{reservation_id}', response_model=ReservationEnvelope)
def get_reservation(
    reservation_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        reservation = reservation_state_machine.get_reservation(db, reservation_id, user.id)
    except SQLAlchemyError as exc:
        raise DatabaseUnavailableError() from exc

    return ReservationEnvelope(reservation=ReservationResponse.model_validate(reservation))


@router.patch('/{reservation_id}/respond', response_model=ReservationEnvelope)
def respond_to_reservation(
    reservation_id: int,
    data: RespondReservationRequest,
    teacher: User = Depends(require_teacher),
    db: Session = Depends(get_db),
):
    try:
        reservation = reservation_state_machine.teacher_respond(
            db,
            reservation_id,
            teacher.id,
            data.action,
            reason=data.reason,
        )
    except SQLAlchemyError as exc:
        raise DatabaseUnavailableError() from exc

    return ReservationEnvelope(reservation=ReservationResponse.model_validate(reservation))


@router.patch('/{reservation_id}/complete', response_model=CompleteReservationResponse)
def complete_reservation(
    reservation_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        result = reservation_state_machine.mark_complete(db, reservation_id, user.id, user.role)
    except SQLAlchemyError as exc:
        raise DatabaseUnavailableError() from exc

    return CompleteReservationResponse(
        reservation=ReservationResponse.model_validate(result.reservation),
        is_fully_completed=result.is_fully_completed,
    )


@router.post('/{reservation_id}/cancel', response_model=CancelReservationResponse)
def cancel_reservation(
    reservation_id: int,
    data: CancelReservationRequest | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    reason = data.reason if data else None

    try:
        result = reservation_state_machine.cancel(db, reservation_id, user.id, reason=reason)
    except SQLAlchemyError as exc:
        raise DatabaseUnavailableError() from exc

    return CancelReservationResponse(
        reservation=ReservationResponse.model_validate(result.reservation),
        refunded_lessons=result.refunded_lessons,
        remaining_lessons=RemainingLessonsResponse(**result.remaining_lessons.as_dict()),
    )
