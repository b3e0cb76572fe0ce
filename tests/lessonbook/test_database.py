import pytest
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import IntegrityError

from lessonbook import database


def test_ensure_reservation_schema_adds_missing_columns(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    engine = create_engine(f'sqlite:///{tmp_path / "legacy.db"}')
    with engine.begin() as connection:
        connection.execute(
            text(
                'CREATE TABLE reservations ('
                'id INTEGER PRIMARY KEY, teacher_id INTEGER, student_id INTEGER, '
                'reserve_time TIMESTAMP, teacher_status VARCHAR(20), response_deadline TIMESTAMP)'
            )
        )
    monkeypatch.setattr(database, '_reservation_schema_checked', False)

    database.ensure_reservation_schema(bind=engine)

    inspector = inspect(engine)
    columns = {column['name'] for column in inspector.get_columns('reservations')}
    assert {'duration_minutes', 'rejection_reason', 'cancel_reason', 'cancelled_by', 'cancelled_at'} <= columns
    indexes = {index['name'] for index in inspector.get_indexes('reservations')}
    assert 'idx_reservation_pending_deadline' in indexes
    engine.dispose()


def test_ensure_reservation_schema_skips_missing_table(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    engine = create_engine(f'sqlite:///{tmp_path / "empty.db"}')
    monkeypatch.setattr(database, '_reservation_schema_checked', False)

    database.ensure_reservation_schema(bind=engine)

    assert database._reservation_schema_checked is True
    engine.dispose()


def test_ensure_reservation_schema_adds_active_slot_unique_index(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    engine = create_engine(f'sqlite:///{tmp_path / "legacy.db"}')
    with engine.begin() as connection:
        connection.execute(
            text(
                'CREATE TABLE reservations ('
                'id INTEGER PRIMARY KEY, teacher_id INTEGER, student_id INTEGER, '
                'reserve_time TIMESTAMP, teacher_status VARCHAR(20), response_deadline TIMESTAMP)'
            )
        )
    monkeypatch.setattr(database, '_reservation_schema_checked', False)

    database.ensure_reservation_schema(bind=engine)

    insert = text(
        'INSERT INTO reservations (teacher_id, student_id, reserve_time, teacher_status) '
        'VALUES (1, :student_id, :reserve_time, :status)'
    )
    with engine.begin() as connection:
        connection.execute(insert, {'student_id': 2, 'reserve_time': '2026-03-02 10:00:00', 'status': 'cancelled'})
        connection.execute(insert, {'student_id': 3, 'reserve_time': '2026-03-02 10:00:00', 'status': 'pending'})

    with pytest.raises(IntegrityError):
        with engine.begin() as connection:
            connection.execute(insert, {'student_id': 4, 'reserve_time': '2026-03-02 10:00:00', 'status': 'reserved'})

    indexes = {index['name']: index for index in inspect(engine).get_indexes('reservations')}
    assert indexes['uq_reservation_teacher_start_active']['unique']
    engine.dispose()
