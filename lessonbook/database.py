from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from lessonbook.core import config


DATABASE_URL = config.DATABASE_URL

_connect_args = {'check_same_thread': False} if DATABASE_URL.startswith('sqlite') else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_reservation_schema_checked = False


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_reservation_schema(bind=None) -> None:
    """Add columns and indexes that older reservation tables may be missing."""
    global _reservation_schema_checked

    if _reservation_schema_checked:
        return

    bind = bind or engine

    with _schema_lock:
        if _reservation_schema_checked:
            return

        inspector = inspect(bind)

        if 'reservations' not in inspector.get_table_names():
            _reservation_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('reservations')}
        migration_steps = [
            ('duration_minutes', 'ALTER TABLE reservations ADD COLUMN duration_minutes INTEGER'),
            ('rejection_reason', 'ALTER TABLE reservations ADD COLUMN rejection_reason VARCHAR(500)'),
            ('cancel_reason', 'ALTER TABLE reservations ADD COLUMN cancel_reason VARCHAR(500)'),
            ('cancelled_by', 'ALTER TABLE reservations ADD COLUMN cancelled_by VARCHAR(20)'),
            ('cancelled_at', 'ALTER TABLE reservations ADD COLUMN cancelled_at TIMESTAMP'),
        ]

        with bind.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_reservation_teacher_time ON reservations(teacher_id, reserve_time)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_reservation_student_time ON reservations(student_id, reserve_time)')
            )
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_reservation_pending_deadline '
                    'ON reservations(teacher_status, response_deadline)'
                )
            )
            if bind.dialect.name in ('sqlite', 'postgresql'):
                connection.execute(
                    text(
                        'CREATE UNIQUE INDEX IF NOT EXISTS uq_reservation_teacher_start_active '
                        'ON reservations(teacher_id, reserve_time) '
                        "WHERE teacher_status <> 'cancelled'"
                    )
                )

        _reservation_schema_checked = True
