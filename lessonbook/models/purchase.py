"""Lesson credit ledger model definitions."""

from sqlalchemy import Column, Integer, UniqueConstraint
from lessonbook.database import Base


class LessonPurchase(Base):
    """Lesson credits a student owns for one course."""
    __tablename__ = "lesson_purchases"
    __table_args__ = (
        UniqueConstraint("user_id", "course_id", name="uq_lesson_purchase_user_course"),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, nullable=False, index=True)
    course_id = Column(Integer, nullable=False)
    quantity_total = Column(Integer, nullable=False, default=0)
    quantity_used = Column(Integer, nullable=False, default=0)

    @property
    def quantity_remaining(self) -> int:
        return self.quantity_total - self.quantity_used
