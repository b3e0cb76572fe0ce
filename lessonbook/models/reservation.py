"""Reservation model definitions."""

import enum
from uuid import uuid4
from datetime import datetime, timedelta

from sqlalchemy import Column, DateTime, Enum, Index, Integer, String, text
from lessonbook.database import Base


class ReservationStatus(str, enum.Enum):
    PENDING = "pending"
    RESERVED = "reserved"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


CANCELLED_BY_TEACHER = "teacher"
CANCELLED_BY_STUDENT = "student"
CANCELLED_BY_SYSTEM = "system"


def _status_column() -> Column:
    return Column(
        Enum(
            ReservationStatus,
            native_enum=False,
            length=20,
            values_callable=lambda members: [member.value for member in members],
        ),
        nullable=False,
        default=ReservationStatus.PENDING,
    )


class Reservation(Base):
    """A single lesson booked at an absolute time, with a status per side."""
    __tablename__ = "reservations"
    __table_args__ = (
        Index("idx_reservation_teacher_time", "teacher_id", "reserve_time"),
        Index("idx_reservation_student_time", "student_id", "reserve_time"),
        Index("idx_reservation_pending_deadline", "teacher_status", "response_deadline"),
        # Two live bookings for one teacher can never share a start time.
        Index(
            "uq_reservation_teacher_start_active",
            "teacher_id",
            "reserve_time",
            unique=True,
            sqlite_where=text("teacher_status <> 'cancelled'"),
            postgresql_where=text("teacher_status <> 'cancelled'"),
        ),
    )

    id = Column(Integer, primary_key=True)
    uuid = Column(String(36), nullable=False, unique=True, default=lambda: str(uuid4()))
    course_id = Column(Integer, nullable=False, index=True)
    teacher_id = Column(Integer, nullable=False)
    student_id = Column(Integer, nullable=False)
    reserve_time = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    teacher_status = _status_column()
    student_status = _status_column()
    response_deadline = Column(DateTime, nullable=True)
    rejection_reason = Column(String(500), nullable=True)
    cancel_reason = Column(String(500), nullable=True)
    cancelled_by = Column(String(20), nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)

    @property
    def end_time(self) -> datetime:
        return self.reserve_time + timedelta(minutes=self.duration_minutes)

    @property
    def is_cancelled(self) -> bool:
        return (
            self.teacher_status == ReservationStatus.CANCELLED
            or self.student_status == ReservationStatus.CANCELLED
        )

    @property
    def is_fully_completed(self) -> bool:
        return (
            self.teacher_status == ReservationStatus.COMPLETED
            and self.student_status == ReservationStatus.COMPLETED
        )

    @property
    def overall_status(self) -> str:
        if self.is_cancelled:
            return ReservationStatus.CANCELLED.value
        if self.teacher_status == ReservationStatus.PENDING:
            return ReservationStatus.PENDING.value
        if self.is_fully_completed:
            return ReservationStatus.COMPLETED.value
        return ReservationStatus.RESERVED.value

    def status_for(self, side: str) -> ReservationStatus:
        return self.teacher_status if side == "teacher" else self.student_status
