import enum
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from lessonbook.models.reservation import Reservation

logger = logging.getLogger(__name__)


class ReservationEvent(str, enum.Enum):
    CREATED = "reservation.created"
    CONFIRMED = "reservation.confirmed"
    REJECTED = "reservation.rejected"
    CANCELLED = "reservation.cancelled"
    COMPLETED = "reservation.completed"
    EXPIRED = "reservation.expired"


@dataclass(frozen=True)
class ReservationNotice:
    event: ReservationEvent
    reservation_id: int
    teacher_id: int
    student_id: int
    reserve_time: datetime
    payload: dict = field(default_factory=dict)


Listener = Callable[[ReservationNotice], None]

_listeners: list[Listener] = []
_listeners_lock = threading.Lock()


def subscribe(listener: Listener) -> None:
    with _listeners_lock:
        if listener not in _listeners:
            _listeners.append(listener)


def unsubscribe(listener: Listener) -> None:
    with _listeners_lock:
        if listener in _listeners:
            _listeners.remove(listener)


def publish(event: ReservationEvent, reservation: Reservation, **payload) -> ReservationNotice:
    """Hand a committed reservation change to every listener.

    Listener failures are logged and swallowed; delivery never affects the
    booking itself.
    """
    notice = ReservationNotice(
        event=event,
        reservation_id=reservation.id,
        teacher_id=reservation.teacher_id,
        student_id=reservation.student_id,
        reserve_time=reservation.reserve_time,
        payload=payload,
    )
    logger.info(
        "%s reservation_id=%s teacher_id=%s student_id=%s",
        event.value, notice.reservation_id, notice.teacher_id, notice.student_id,
    )

    with _listeners_lock:
        listeners = list(_listeners)

    for listener in listeners:
        try:
            listener(notice)
        except Exception:
            logger.exception("Notification listener failed for %s reservation_id=%s", event.value, notice.reservation_id)

    return notice
