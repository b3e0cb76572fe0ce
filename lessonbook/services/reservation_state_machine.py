"""
Booking creation and the two-sided status machine.

Each side (teacher, student) moves independently through::

    pending -> reserved -> completed
        \\          \\
         +-> cancelled <-+

``completed`` and ``cancelled`` are terminal for a side. Cancellation is always
written to both sides in the same transaction, and every credit movement rides
in the transaction of the transition that caused it.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lessonbook.core import config
from lessonbook.core.exceptions import BusinessError, ForbiddenError, NotFoundError, ValidationError
from lessonbook.core.teacher_lock import teacher_lock
from lessonbook.core.time_utils import combine, parse_time, sunday_weekday
from lessonbook.models.reservation import (
    CANCELLED_BY_STUDENT,
    CANCELLED_BY_TEACHER,
    Reservation,
    ReservationStatus,
)
from lessonbook.services import availability_store, conflict_checker, notifications
from lessonbook.services.lesson_ledger import LessonLedger, RemainingLessons, lesson_ledger
from lessonbook.services.notifications import ReservationEvent

logger = logging.getLogger(__name__)

SIDE_TEACHER = 'teacher'
SIDE_STUDENT = 'student'
SIDES = (SIDE_TEACHER, SIDE_STUDENT)

ACTION_CONFIRM = 'confirm'
ACTION_REJECT = 'reject'
ACTIONS = (ACTION_CONFIRM, ACTION_REJECT)

MAX_PER_PAGE = 100


@dataclass
class CreatedReservation:
    reservation: Reservation
    remaining_lessons: RemainingLessons


@dataclass
class CompletionResult:
    reservation: Reservation
    is_fully_completed: bool


@dataclass
class CancellationResult:
    reservation: Reservation
    refunded_lessons: int
    remaining_lessons: RemainingLessons


@dataclass
class ReservationPage:
    reservations: list[Reservation]
    total: int
    page: int
    per_page: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.per_page - 1) // self.per_page


def _now(now: datetime | None) -> datetime:
    return (now or datetime.now()).replace(microsecond=0)


def _get_reservation(db: Session, reservation_id: int, lock: bool = False) -> Reservation:
    query = db.query(Reservation).filter(Reservation.id == reservation_id)
    if lock:
        query = query.populate_existing().with_for_update()
    reservation = query.first()
    if reservation is None:
        raise NotFoundError(
            'Reservation not found.',
            code='reservation_not_found',
            details={'reservation_id': reservation_id},
        )
    return reservation


def _invalid_status(reservation: Reservation, message: str) -> BusinessError:
    return BusinessError(
        message,
        code='invalid_status',
        details={
            'teacher_status': reservation.teacher_status.value,
            'student_status': reservation.student_status.value,
        },
    )


def _validate_booking_window(start: datetime, now: datetime) -> None:
    if start <= now:
        raise BusinessError('Lessons cannot be booked in the past.', code='reservation_in_past')

    if start < now + timedelta(hours=config.MIN_ADVANCE_BOOKING_HOURS):
        raise BusinessError(
            f'Lessons must be booked at least {config.MIN_ADVANCE_BOOKING_HOURS} hours in advance.',
            code='advance_notice_too_short',
        )

    if start > now + timedelta(days=config.MAX_ADVANCE_BOOKING_DAYS):
        raise BusinessError(
            f'Lessons can be booked at most {config.MAX_ADVANCE_BOOKING_DAYS} days in advance.',
            code='too_far_in_advance',
        )


def _apply_transition(db: Session, reservation: Reservation, **values) -> bool:
    """UPDATE the row only if both sides still hold the statuses read under lock.

    Returns False when another writer (usually the expiration sweeper) moved the
    row first. The caller must not move credits in that case.
    """
    result = db.execute(
        update(Reservation)
        .where(
            Reservation.id == reservation.id,
            Reservation.teacher_status == reservation.teacher_status,
            Reservation.student_status == reservation.student_status,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _reload_after_lost_transition(db: Session, reservation_id: int) -> Reservation:
    db.rollback()
    reservation = _get_reservation(db, reservation_id)
    logger.info(
        'Reservation %s changed concurrently teacher_status=%s student_status=%s',
        reservation_id, reservation.teacher_status.value, reservation.student_status.value,
    )
    return reservation


def _slot_occupied(conflicts: list[conflict_checker.Conflict] | None = None) -> BusinessError:
    return BusinessError(
        'The teacher already has a booking at this time.',
        code='slot_occupied',
        details={'conflicts': [conflict.as_dict() for conflict in conflicts or []]},
        status_code=409,
    )


def create(
    db: Session,
    student_id: int,
    course_id: int,
    teacher_id: int,
    reserve_date: date,
    reserve_time: str,
    now: datetime | None = None,
    ledger: LessonLedger = lesson_ledger,
) -> CreatedReservation:
    now = _now(now)

    try:
        start_clock = parse_time(reserve_time)
    except ValueError:
        raise ValidationError(
            'Reservation validation failed.',
            errors={'reserve_time': [availability_store.INVALID_TIME_FORMAT]},
        ) from None

    start = combine(reserve_date, start_clock)
    duration_minutes = config.LESSON_DURATION_MINUTES
    end = start + timedelta(minutes=duration_minutes)

    _validate_booking_window(start, now)
    availability_store.get_teacher(db, teacher_id)

    weekday = sunday_weekday(start.date())
    # A lesson running past midnight can never sit inside one weekly slot.
    end_clock = end.time() if end.date() == start.date() else start_clock

    with teacher_lock(teacher_id):
        try:
            if not availability_store.is_within_availability(
                db, teacher_id, weekday, start_clock, end_clock, lock=True,
            ):
                raise BusinessError(
                    'The teacher is not available at this time.',
                    code='slot_unavailable',
                    details={'weekday': weekday, 'reserve_time': start.isoformat()},
                )

            conflicts = conflict_checker.find_booking_conflicts(db, teacher_id, start, end)
            if conflicts:
                raise _slot_occupied(conflicts)

            remaining = ledger.reserve(db, student_id, course_id)

            reservation = Reservation(
                course_id=course_id,
                teacher_id=teacher_id,
                student_id=student_id,
                reserve_time=start,
                duration_minutes=duration_minutes,
                teacher_status=ReservationStatus.PENDING,
                student_status=ReservationStatus.PENDING,
                response_deadline=min(now + timedelta(hours=config.TEACHER_RESPONSE_WINDOW_HOURS), start),
            )
            db.add(reservation)
            db.commit()
        except IntegrityError:
            db.rollback()
            raise _slot_occupied() from None
        except Exception:
            db.rollback()
            raise

    db.refresh(reservation)
    logger.info(
        'Reservation %s created teacher_id=%s student_id=%s reserve_time=%s',
        reservation.id, teacher_id, student_id, reservation.reserve_time.isoformat(),
    )
    notifications.publish(ReservationEvent.CREATED, reservation)
    return CreatedReservation(reservation=reservation, remaining_lessons=remaining)


def teacher_respond(
    db: Session,
    reservation_id: int,
    teacher_id: int,
    action: str,
    reason: str | None = None,
    now: datetime | None = None,
    ledger: LessonLedger = lesson_ledger,
) -> Reservation:
    if action not in ACTIONS:
        raise ValidationError(
            'Invalid response action.',
            errors={'action': [f'Action must be one of: {", ".join(ACTIONS)}.']},
        )
    now = _now(now)

    reservation = _get_reservation(db, reservation_id)
    if reservation.teacher_id != teacher_id:
        raise ForbiddenError('Only the booked teacher can respond to this reservation.')

    with teacher_lock(reservation.teacher_id):
        try:
            reservation = _get_reservation(db, reservation_id, lock=True)

            if reservation.teacher_status != ReservationStatus.PENDING:
                raise _invalid_status(reservation, 'Only pending reservations can be confirmed or rejected.')

            if action == ACTION_CONFIRM:
                if reservation.response_deadline is not None and reservation.response_deadline < now:
                    raise BusinessError(
                        'The response deadline for this reservation has passed.',
                        code='response_deadline_passed',
                    )
                values = {
                    'teacher_status': ReservationStatus.RESERVED,
                    'student_status': ReservationStatus.RESERVED,
                    'response_deadline': None,
                }
            else:
                values = {
                    'teacher_status': ReservationStatus.CANCELLED,
                    'student_status': ReservationStatus.CANCELLED,
                    'response_deadline': None,
                    'rejection_reason': reason,
                    'cancel_reason': reason or 'rejected',
                    'cancelled_by': CANCELLED_BY_TEACHER,
                    'cancelled_at': now,
                }

            if not _apply_transition(db, reservation, updated_at=now, **values):
                reservation = _reload_after_lost_transition(db, reservation_id)
                raise _invalid_status(reservation, 'Only pending reservations can be confirmed or rejected.')

            if action == ACTION_REJECT:
                ledger.refund(db, reservation.student_id, reservation.course_id)

            db.commit()
        except Exception:
            db.rollback()
            raise

    db.refresh(reservation)
    if action == ACTION_CONFIRM:
        logger.info('Reservation %s confirmed by teacher_id=%s', reservation.id, teacher_id)
        notifications.publish(ReservationEvent.CONFIRMED, reservation)
    else:
        logger.info('Reservation %s rejected by teacher_id=%s', reservation.id, teacher_id)
        notifications.publish(ReservationEvent.REJECTED, reservation, reason=reason)
    return reservation


def mark_complete(db: Session, reservation_id: int, actor_id: int, side: str) -> CompletionResult:
    if side not in SIDES:
        raise ValidationError('Invalid side.', errors={'side': [f'Side must be one of: {", ".join(SIDES)}.']})

    reservation = _get_reservation(db, reservation_id)
    owner_id = reservation.teacher_id if side == SIDE_TEACHER else reservation.student_id
    if owner_id != actor_id:
        raise ForbiddenError(f'Only the booked {side} can complete their side of this reservation.')

    transitioned = False
    with teacher_lock(reservation.teacher_id):
        try:
            reservation = _get_reservation(db, reservation_id, lock=True)
            current = reservation.status_for(side)

            if current == ReservationStatus.RESERVED:
                column = 'teacher_status' if side == SIDE_TEACHER else 'student_status'
                if not _apply_transition(db, reservation, **{column: ReservationStatus.COMPLETED}):
                    reservation = _reload_after_lost_transition(db, reservation_id)
                    raise _invalid_status(reservation, 'Only reserved lessons can be marked complete.')
                transitioned = True
            elif current != ReservationStatus.COMPLETED:
                raise _invalid_status(reservation, 'Only reserved lessons can be marked complete.')

            db.commit()
        except Exception:
            db.rollback()
            raise

    db.refresh(reservation)
    if transitioned:
        logger.info('Reservation %s completed by %s actor_id=%s', reservation.id, side, actor_id)
        notifications.publish(
            ReservationEvent.COMPLETED,
            reservation,
            side=side,
            is_fully_completed=reservation.is_fully_completed,
        )
    return CompletionResult(reservation=reservation, is_fully_completed=reservation.is_fully_completed)


def cancel(
    db: Session,
    reservation_id: int,
    actor_id: int,
    reason: str | None = None,
    now: datetime | None = None,
    ledger: LessonLedger = lesson_ledger,
) -> CancellationResult:
    now = _now(now)

    reservation = _get_reservation(db, reservation_id)
    if reservation.teacher_id == actor_id:
        side = CANCELLED_BY_TEACHER
    elif reservation.student_id == actor_id:
        side = CANCELLED_BY_STUDENT
    else:
        raise ForbiddenError('Only the teacher or student of this reservation can cancel it.')

    with teacher_lock(reservation.teacher_id):
        try:
            reservation = _get_reservation(db, reservation_id, lock=True)

            if ReservationStatus.COMPLETED in (reservation.teacher_status, reservation.student_status):
                raise BusinessError('Completed reservations cannot be cancelled.', code='already_completed')
            if reservation.is_cancelled:
                raise BusinessError('Reservation is already cancelled.', code='already_cancelled')

            cutoff = config.CANCEL_CUTOFF_HOURS
            if cutoff > 0 and reservation.reserve_time - now < timedelta(hours=cutoff):
                raise BusinessError(
                    f'Cancellation is not allowed within {cutoff} hours of the lesson.',
                    code='cancel_window_closed',
                )

            transitioned = _apply_transition(
                db,
                reservation,
                teacher_status=ReservationStatus.CANCELLED,
                student_status=ReservationStatus.CANCELLED,
                response_deadline=None,
                cancel_reason=reason or f'cancelled_by_{side}',
                cancelled_by=side,
                cancelled_at=now,
                updated_at=now,
            )
            if not transitioned:
                reservation = _reload_after_lost_transition(db, reservation_id)
                if reservation.is_cancelled:
                    raise BusinessError('Reservation is already cancelled.', code='already_cancelled')
                raise _invalid_status(reservation, 'Reservation changed while it was being cancelled.')

            refunded = ledger.refund(db, reservation.student_id, reservation.course_id)
            remaining = ledger.remaining(db, reservation.student_id, reservation.course_id)

            db.commit()
        except Exception:
            db.rollback()
            raise

    db.refresh(reservation)
    logger.info('Reservation %s cancelled by %s actor_id=%s refunded=%s', reservation.id, side, actor_id, refunded)
    notifications.publish(ReservationEvent.CANCELLED, reservation, cancelled_by=side, reason=reservation.cancel_reason)
    return CancellationResult(reservation=reservation, refunded_lessons=refunded, remaining_lessons=remaining)


def get_reservation(db: Session, reservation_id: int, actor_id: int) -> Reservation:
    reservation = _get_reservation(db, reservation_id)
    if actor_id not in (reservation.teacher_id, reservation.student_id):
        raise ForbiddenError('Only participants can view this reservation.')
    return reservation


def list_reservations(
    db: Session,
    actor_id: int,
    role: str,
    status: str | None = None,
    course_id: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    page: int = 1,
    per_page: int = 10,
) -> ReservationPage:
    """The caller's bookings, newest lesson first. ``status`` filters the caller's side."""
    errors: dict[str, list[str]] = {}
    if role not in SIDES:
        errors['role'] = [f'Role must be one of: {", ".join(SIDES)}.']
    if status is not None and status not in {member.value for member in ReservationStatus}:
        errors['status'] = ['Unknown reservation status.']
    if page < 1:
        errors['page'] = ['Page must be 1 or greater.']
    if not 1 <= per_page <= MAX_PER_PAGE:
        errors['per_page'] = [f'per_page must be between 1 and {MAX_PER_PAGE}.']
    if date_from and date_to and date_from > date_to:
        errors['date_to'] = ['date_to must not be earlier than date_from.']
    if errors:
        raise ValidationError('Reservation query validation failed.', errors=errors)

    if role == SIDE_TEACHER:
        query = db.query(Reservation).filter(Reservation.teacher_id == actor_id)
        status_column = Reservation.teacher_status
    else:
        query = db.query(Reservation).filter(Reservation.student_id == actor_id)
        status_column = Reservation.student_status

    if status is not None:
        query = query.filter(status_column == ReservationStatus(status))
    if course_id is not None:
        query = query.filter(Reservation.course_id == course_id)
    if date_from is not None:
        query = query.filter(Reservation.reserve_time >= datetime.combine(date_from, datetime.min.time()))
    if date_to is not None:
        query = query.filter(Reservation.reserve_time < datetime.combine(date_to + timedelta(days=1), datetime.min.time()))

    total = query.count()
    reservations = (
        query.order_by(Reservation.reserve_time.desc(), Reservation.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return ReservationPage(reservations=reservations, total=total, page=page, per_page=per_page)
