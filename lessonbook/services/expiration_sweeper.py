"""Cancels pending reservations whose teacher response deadline has passed.

Each candidate is expired in its own session with a conditional UPDATE keyed on
``teacher_status = 'pending'``. If a teacher confirms or rejects the same row
concurrently, exactly one of the two writes matches and the other becomes a
no-op, so a booking is never both confirmed and expired and a credit is never
refunded twice.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from sqlalchemy import update
from sqlalchemy.orm import Session

from lessonbook.core import config
from lessonbook.database import SessionLocal
from lessonbook.models.reservation import CANCELLED_BY_SYSTEM, Reservation, ReservationStatus
from lessonbook.services import notifications
from lessonbook.services.lesson_ledger import LessonLedger, lesson_ledger
from lessonbook.services.notifications import ReservationEvent

logger = logging.getLogger(__name__)

EXPIRED_REASON = 'expired'


@dataclass
class SweepResult:
    count: int = 0
    expired_ids: list[int] = field(default_factory=list)
    failed_ids: list[int] = field(default_factory=list)


def _overdue_ids(db: Session, now: datetime) -> list[int]:
    rows = (
        db.query(Reservation.id)
        .filter(
            Reservation.teacher_status == ReservationStatus.PENDING,
            Reservation.response_deadline.isnot(None),
            Reservation.response_deadline < now,
        )
        .order_by(Reservation.response_deadline.asc(), Reservation.id.asc())
        .all()
    )
    return [row.id for row in rows]


def _expire_one(db: Session, reservation_id: int, now: datetime, ledger: LessonLedger) -> Reservation | None:
    """Expire one row. Returns the reservation if this call won the transition."""
    try:
        result = db.execute(
            update(Reservation)
            .where(
                Reservation.id == reservation_id,
                Reservation.teacher_status == ReservationStatus.PENDING,
            )
            .values(
                teacher_status=ReservationStatus.CANCELLED,
                student_status=ReservationStatus.CANCELLED,
                response_deadline=None,
                cancel_reason=EXPIRED_REASON,
                cancelled_by=CANCELLED_BY_SYSTEM,
                cancelled_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            return None

        reservation = db.query(Reservation).filter(Reservation.id == reservation_id).one()
        ledger.refund(db, reservation.student_id, reservation.course_id)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(reservation)
    return reservation


def sweep(
    session_factory: Callable[[], Session] = SessionLocal,
    now: datetime | None = None,
    ledger: LessonLedger = lesson_ledger,
) -> SweepResult:
    """Expire every overdue pending reservation.

    A failure on one row is logged and does not stop the rest of the batch.
    Running the sweep twice over the same state expires nothing the second time.
    """
    now = (now or datetime.now()).replace(microsecond=0)

    db = session_factory()
    try:
        candidates = _overdue_ids(db, now)
    finally:
        db.close()

    result = SweepResult()
    for reservation_id in candidates:
        db = session_factory()
        try:
            reservation = _expire_one(db, reservation_id, now, ledger)
            if reservation is None:
                logger.debug('Reservation %s no longer pending, skipped', reservation_id)
                continue
            result.count += 1
            result.expired_ids.append(reservation_id)
            notifications.publish(ReservationEvent.EXPIRED, reservation, reason=EXPIRED_REASON)
        except Exception:
            result.failed_ids.append(reservation_id)
            logger.exception('Failed to expire reservation %s', reservation_id)
        finally:
            db.close()

    if candidates:
        logger.info(
            'Expiration sweep finished candidates=%s expired=%s failed=%s',
            len(candidates), result.count, len(result.failed_ids),
        )
    return result


class ExpirationSweeperWorker:
    """Runs :func:`sweep` on a fixed interval until ``stop()`` is called.

    ``run()`` blocks, so the API lifespan hands it to a thread.
    """

    def __init__(
        self,
        interval_seconds: int | None = None,
        session_factory: Callable[[], Session] = SessionLocal,
    ):
        self.interval_seconds = max(1, interval_seconds or config.SWEEP_INTERVAL_SECONDS)
        self.session_factory = session_factory
        self.stop_event = threading.Event()

    def run_once(self) -> SweepResult | None:
        try:
            return sweep(self.session_factory)
        except Exception:
            logger.exception('Expiration sweep failed')
            return None

    def run(self) -> None:
        logger.info('Expiration sweeper started interval=%ss', self.interval_seconds)
        while not self.stop_event.is_set():
            self.run_once()
            self.stop_event.wait(self.interval_seconds)
        logger.info('Expiration sweeper stopped')

    def stop(self) -> None:
        self.stop_event.set()
