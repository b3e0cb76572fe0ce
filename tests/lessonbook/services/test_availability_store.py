from datetime import time

import pytest

from lessonbook.core import config
from lessonbook.core.exceptions import NotFoundError, ValidationError
from lessonbook.models.availability import TeacherAvailableSlot
from lessonbook.services import availability_store

MONDAY = 1


def _slot(weekday=MONDAY, start_time='09:00', end_time='12:00', is_active=True) -> dict:
    return {'weekday': weekday, 'start_time': start_time, 'end_time': end_time, 'is_active': is_active}


def test_replace_schedule_creates_slots_and_reports_counts(db, teacher) -> None:
    result = availability_store.replace_schedule(
        db,
        teacher.id,
        [_slot(weekday=3, start_time='14:00', end_time='16:00'), _slot()],
    )

    assert result.created_count == 2
    assert result.deleted_count == 0
    assert result.updated_count == 0
    assert [(slot.weekday, slot.start_time) for slot in result.slots] == [(1, time(9, 0)), (3, time(14, 0))]


def test_replace_schedule_swaps_the_whole_set(db, teacher) -> None:
    availability_store.replace_schedule(db, teacher.id, [_slot(), _slot(weekday=2)])

    result = availability_store.replace_schedule(db, teacher.id, [_slot(weekday=5, start_time='08:00', end_time='09:30')])

    assert result.deleted_count == 2
    assert result.created_count == 1
    stored = availability_store.get_schedule(db, teacher.id)
    assert [(slot.weekday, slot.start_time, slot.end_time) for slot in stored] == [(5, time(8, 0), time(9, 30))]


def test_replace_schedule_with_empty_list_clears_schedule(db, teacher) -> None:
    availability_store.replace_schedule(db, teacher.id, [_slot()])

    result = availability_store.replace_schedule(db, teacher.id, [])

    assert result.deleted_count == 1
    assert availability_store.get_schedule(db, teacher.id) == []


def test_replace_schedule_allows_overlapping_slots_on_same_weekday(db, teacher) -> None:
    result = availability_store.replace_schedule(
        db,
        teacher.id,
        [_slot(start_time='09:00', end_time='11:00'), _slot(start_time='10:00', end_time='12:00')],
    )

    assert result.created_count == 2


def test_replace_schedule_collects_every_error_with_index(db, teacher) -> None:
    with pytest.raises(ValidationError) as exception_info:
        availability_store.replace_schedule(
            db,
            teacher.id,
            [
                _slot(),
                _slot(weekday=7),
                _slot(start_time='9:60'),
                _slot(start_time='12:00', end_time='12:00'),
                {'start_time': None, 'end_time': '25:00'},
            ],
        )

    errors = exception_info.value.errors
    assert 'available_slots[0].weekday' not in errors
    assert errors['available_slots[1].weekday'] == [availability_store.WEEKDAY_INVALID]
    assert errors['available_slots[2].start_time'] == [availability_store.INVALID_TIME_FORMAT]
    assert errors['available_slots[3].end_time'] == [availability_store.TIME_ORDER_INVALID]
    assert errors['available_slots[4].weekday'] == [availability_store.WEEKDAY_REQUIRED]
    assert errors['available_slots[4].start_time'] == [availability_store.START_TIME_REQUIRED]
    assert errors['available_slots[4].end_time'] == [availability_store.INVALID_TIME_FORMAT]
    assert exception_info.value.status_code == 400


def test_replace_schedule_writes_nothing_when_any_slot_is_invalid(db, teacher) -> None:
    availability_store.replace_schedule(db, teacher.id, [_slot(weekday=4)])

    with pytest.raises(ValidationError):
        availability_store.replace_schedule(db, teacher.id, [_slot(), _slot(weekday=-1)])

    stored = availability_store.get_schedule(db, teacher.id)
    assert [slot.weekday for slot in stored] == [4]


def test_replace_schedule_rejects_too_many_slots(db, teacher, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, 'MAX_SLOTS_PER_TEACHER', 2)

    with pytest.raises(ValidationError) as exception_info:
        availability_store.replace_schedule(db, teacher.id, [_slot(), _slot(), _slot()])

    assert 'available_slots' in exception_info.value.errors


def test_replace_schedule_rolls_back_when_insert_fails(db, teacher, monkeypatch: pytest.MonkeyPatch) -> None:
    availability_store.replace_schedule(db, teacher.id, [_slot(weekday=4)])

    def failing_commit():
        raise RuntimeError('disk full')

    monkeypatch.setattr(db, 'commit', failing_commit)

    with pytest.raises(RuntimeError):
        availability_store.replace_schedule(db, teacher.id, [_slot()])

    monkeypatch.undo()
    stored = db.query(TeacherAvailableSlot).filter(TeacherAvailableSlot.teacher_id == teacher.id).all()
    assert [slot.weekday for slot in stored] == [4]


@pytest.mark.parametrize(
    ('start', 'end', 'expected'),
    [
        (time(9, 0), time(10, 0), True),
        (time(11, 0), time(12, 0), True),
        (time(8, 30), time(9, 30), False),
        (time(11, 30), time(12, 30), False),
        (time(10, 0), time(10, 0), False),
    ],
)
def test_is_within_availability_requires_full_containment(db, monday_morning, start, end, expected) -> None:
    assert availability_store.is_within_availability(db, monday_morning.id, MONDAY, start, end) is expected


def test_is_within_availability_does_not_span_adjacent_slots(db, teacher) -> None:
    availability_store.replace_schedule(
        db,
        teacher.id,
        [_slot(start_time='09:00', end_time='10:00'), _slot(start_time='10:00', end_time='11:00')],
    )

    assert availability_store.is_within_availability(db, teacher.id, MONDAY, time(9, 30), time(10, 30)) is False


def test_is_within_availability_ignores_inactive_slots(db, teacher) -> None:
    availability_store.replace_schedule(db, teacher.id, [_slot(is_active=False)])

    assert availability_store.is_within_availability(db, teacher.id, MONDAY, time(9, 0), time(10, 0)) is False
    assert len(availability_store.get_schedule(db, teacher.id)) == 1


def test_get_teacher_raises_for_unknown_or_student_user(db, student) -> None:
    with pytest.raises(NotFoundError) as exception_info:
        availability_store.get_teacher(db, student.id)

    assert exception_info.value.code == 'teacher_not_found'
