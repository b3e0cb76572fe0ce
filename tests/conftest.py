import os
from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')
os.environ['SWEEPER_ENABLED'] = 'false'
os.environ.setdefault('JWT_SECRET_KEY', 'test-secret-key-with-at-least-32-bytes')

from lessonbook.database import Base  # noqa: E402
from lessonbook.models.availability import TeacherAvailableSlot  # noqa: E402,F401
from lessonbook.models.purchase import LessonPurchase  # noqa: E402
from lessonbook.models.reservation import Reservation  # noqa: E402,F401
from lessonbook.models.user import ROLE_STUDENT, ROLE_TEACHER, User  # noqa: E402
from lessonbook.services import availability_store  # noqa: E402

# Friday. The Monday after is 2026-03-02.
NOW = datetime(2026, 2, 27, 9, 0)
MONDAY = 1
COURSE_ID = 7


@pytest.fixture
def engine():
    engine = create_engine(
        'sqlite:///:memory:',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def _add_user(db, email: str, role: str) -> User:
    user = User(email=email, role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def teacher(db) -> User:
    return _add_user(db, 'teacher@example.edu', ROLE_TEACHER)


@pytest.fixture
def other_teacher(db) -> User:
    return _add_user(db, 'other.teacher@example.edu', ROLE_TEACHER)


@pytest.fixture
def student(db) -> User:
    return _add_user(db, 'student@example.edu', ROLE_STUDENT)


@pytest.fixture
def other_student(db) -> User:
    return _add_user(db, 'other.student@example.edu', ROLE_STUDENT)


@pytest.fixture
def grant_lessons(db):
    def _grant(student_id: int, quantity: int, course_id: int = COURSE_ID) -> LessonPurchase:
        purchase = LessonPurchase(user_id=student_id, course_id=course_id, quantity_total=quantity, quantity_used=0)
        db.add(purchase)
        db.commit()
        db.refresh(purchase)
        return purchase

    return _grant


@pytest.fixture
def monday_morning(db, teacher):
    """Teacher available Mondays 09:00-12:00."""
    availability_store.replace_schedule(
        db,
        teacher.id,
        [{'weekday': MONDAY, 'start_time': '09:00', 'end_time': '12:00', 'is_active': True}],
    )
    return teacher
