"""Availability model definitions."""

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Index, Integer, SmallInteger, Time
from lessonbook.database import Base


class TeacherAvailableSlot(Base):
    """A recurring weekly window in which a teacher accepts lessons."""
    __tablename__ = "teacher_available_slots"
    __table_args__ = (
        CheckConstraint("weekday >= 0 AND weekday <= 6", name="ck_available_slot_weekday"),
        CheckConstraint("start_time < end_time", name="ck_available_slot_time_order"),
        Index("idx_available_slot_teacher_weekday", "teacher_id", "weekday", "start_time"),
    )

    id = Column(Integer, primary_key=True)
    teacher_id = Column(Integer, nullable=False, index=True)
    weekday = Column(SmallInteger, nullable=False)  # 0 = Sunday ... 6 = Saturday
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)
