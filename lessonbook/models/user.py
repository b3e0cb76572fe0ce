"""User model definitions."""

from sqlalchemy import Column, Integer, String
from lessonbook.database import Base

ROLE_TEACHER = "teacher"
ROLE_STUDENT = "student"


class User(Base):
    """Represents an authenticated marketplace user."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    role = Column(String(20), nullable=False)  # teacher/student

    @property
    def is_teacher(self) -> bool:
        return self.role == ROLE_TEACHER

    @property
    def is_student(self) -> bool:
        return self.role == ROLE_STUDENT
