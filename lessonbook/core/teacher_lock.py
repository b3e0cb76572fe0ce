from contextlib import contextmanager
import logging
import threading
from typing import Iterator

logger = logging.getLogger(__name__)

_REGISTRY_LOCK = threading.Lock()
_TEACHER_LOCKS: dict[int, threading.Lock] = {}


def _lock_for(teacher_id: int) -> threading.Lock:
    with _REGISTRY_LOCK:
        lock = _TEACHER_LOCKS.get(teacher_id)
        if lock is None:
            lock = threading.Lock()
            _TEACHER_LOCKS[teacher_id] = lock
        return lock


@contextmanager
def teacher_lock(teacher_id: int) -> Iterator[None]:
    """Serialize conflict checks and transitions for one teacher within this process.

    Cross-process serialization comes from the row locks taken inside the
    transaction (``SELECT ... FOR UPDATE``).
    """
    lock = _lock_for(teacher_id)
    lock.acquire()
    logger.debug("teacher_lock acquired teacher_id=%s", teacher_id)
    try:
        yield
    finally:
        lock.release()
        logger.debug("teacher_lock released teacher_id=%s", teacher_id)
