from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient
from pydantic import ValidationError as PydanticValidationError

from lessonbook.auth.jwt_handler import create_access_token
from lessonbook.core.exceptions import ValidationError
from lessonbook.core.time_utils import sunday_weekday
from lessonbook.database import get_db
from lessonbook.main import app
from lessonbook.routes.schedule_routes import (
    AvailableSlotRequest,
    ReplaceScheduleRequest,
    get_schedule,
    replace_schedule,
)


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_db, None)


def _auth(user) -> dict:
    return {'Authorization': f'Bearer {create_access_token(user.id)}'}


def test_available_slot_request_strips_times() -> None:
    request = AvailableSlotRequest(weekday=1, start_time=' 09:00 ', end_time='10:00 ')

    assert request.start_time == '09:00'
    assert request.end_time == '10:00'


def test_available_slot_request_rejects_non_integer_weekday() -> None:
    with pytest.raises(PydanticValidationError):
        AvailableSlotRequest(weekday='monday', start_time='09:00', end_time='10:00')


def test_replace_schedule_route_returns_counts(db, teacher) -> None:
    data = ReplaceScheduleRequest(
        available_slots=[
            AvailableSlotRequest(weekday=1, start_time='09:00', end_time='12:00'),
            AvailableSlotRequest(weekday=3, start_time='14:00', end_time='16:00', is_active=False),
        ]
    )

    response = replace_schedule(data, teacher=teacher, db=db)

    assert response.created_count == 2
    assert response.deleted_count == 0
    assert [(slot.weekday, slot.start_time, slot.is_active) for slot in response.available_slots] == [
        (1, '09:00', True),
        (3, '14:00', False),
    ]

    schedule = get_schedule(teacher=teacher, db=db)
    assert schedule.total_slots == 2


def test_replace_schedule_route_reports_indexed_errors(db, teacher) -> None:
    data = ReplaceScheduleRequest(available_slots=[AvailableSlotRequest(weekday=1, start_time='12:00', end_time='9:00')])

    with pytest.raises(ValidationError) as exception_info:
        replace_schedule(data, teacher=teacher, db=db)

    assert exception_info.value.errors == {'available_slots[0].end_time': ['End time must be later than start time.']}


def test_schedule_endpoints_require_a_token(client) -> None:
    response = client.get('/teachers/schedule')

    assert response.status_code == 401
    assert response.json()['detail']['code'] == 'unauthorized'


def test_schedule_endpoints_reject_students(client, student) -> None:
    response = client.put('/teachers/schedule', json={'available_slots': []}, headers=_auth(student))

    assert response.status_code == 403
    assert response.json()['detail']['code'] == 'forbidden'


def test_put_schedule_validation_error_envelope(client, teacher) -> None:
    response = client.put(
        '/teachers/schedule',
        json={'available_slots': [{'weekday': 8, 'start_time': '09:00'}]},
        headers=_auth(teacher),
    )

    assert response.status_code == 400
    body = response.json()['detail']
    assert body['code'] == 'validation_error'
    assert set(body['details']['errors']) == {'available_slots[0].weekday', 'available_slots[0].end_time'}


def test_put_then_get_schedule(client, teacher) -> None:
    put_response = client.put(
        '/teachers/schedule',
        json={'available_slots': [{'weekday': 2, 'start_time': '08:00', 'end_time': '10:30'}]},
        headers=_auth(teacher),
    )
    get_response = client.get('/teachers/schedule', headers=_auth(teacher))

    assert put_response.status_code == 200
    assert put_response.json()['created_count'] == 1
    assert get_response.status_code == 200
    slots = get_response.json()['available_slots']
    assert [(slot['weekday'], slot['start_time'], slot['end_time']) for slot in slots] == [(2, '08:00', '10:30')]


def test_conflict_check_endpoint(client, teacher) -> None:
    client.put(
        '/teachers/schedule',
        json={'available_slots': [{'weekday': 1, 'start_time': '09:00', 'end_time': '12:00'}]},
        headers=_auth(teacher),
    )

    response = client.get(
        '/teachers/schedule/conflicts',
        params={'weekday': 1, 'start_time': '10:00', 'end_time': '11:00'},
        headers=_auth(teacher),
    )

    assert response.status_code == 200
    body = response.json()
    assert body['has_conflict'] is False
    assert body['total_conflicts'] == 0
    assert body['within_availability'] is True
    assert body['check_period']['from_date'] == date.today().isoformat()


def test_conflict_check_rejects_bad_time(client, teacher) -> None:
    response = client.get(
        '/teachers/schedule/conflicts',
        params={'weekday': 1, 'start_time': '10am', 'end_time': '11:00'},
        headers=_auth(teacher),
    )

    assert response.status_code == 400
    assert 'start_time' in response.json()['detail']['details']['errors']


def test_bookable_slots_endpoint(client, teacher, student) -> None:
    lesson_day = date.today() + timedelta(days=3)
    client.put(
        '/teachers/schedule',
        json={
            'available_slots': [
                {'weekday': sunday_weekday(lesson_day), 'start_time': '09:00', 'end_time': '11:00'},
            ]
        },
        headers=_auth(teacher),
    )

    response = client.get(
        f'/teachers/{teacher.id}/bookable-slots',
        params={'from_date': lesson_day.isoformat(), 'days': 1},
        headers=_auth(student),
    )

    assert response.status_code == 200
    body = response.json()
    assert body['teacher_id'] == teacher.id
    assert [slot['start_time'] for slot in body['slots']] == ['09:00', '10:00']


def test_bookable_slots_unknown_teacher(client, student) -> None:
    response = client.get('/teachers/999/bookable-slots', headers=_auth(student))

    assert response.status_code == 404
    assert response.json()['detail']['code'] == 'teacher_not_found'
