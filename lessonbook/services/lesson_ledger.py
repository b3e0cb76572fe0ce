"""Lesson-credit ledger backed by the ``lesson_purchases`` table.

The ledger never commits. Callers run it inside the transaction of the status
transition that moves the credits, so a booking and its credit either both
persist or neither does.
"""

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from lessonbook.core.exceptions import BusinessError
from lessonbook.models.purchase import LessonPurchase

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RemainingLessons:
    total: int
    used: int
    remaining: int

    def as_dict(self) -> dict:
        return {'total': self.total, 'used': self.used, 'remaining': self.remaining}


def _snapshot(purchase: LessonPurchase) -> RemainingLessons:
    return RemainingLessons(
        total=purchase.quantity_total,
        used=purchase.quantity_used,
        remaining=purchase.quantity_remaining,
    )


class LessonLedger:
    def _find_purchase(self, db: Session, student_id: int, course_id: int, lock: bool = False) -> LessonPurchase | None:
        query = db.query(LessonPurchase).filter(
            LessonPurchase.user_id == student_id,
            LessonPurchase.course_id == course_id,
        )
        if lock:
            query = query.with_for_update()
        return query.first()

    def remaining(self, db: Session, student_id: int, course_id: int) -> RemainingLessons:
        purchase = self._find_purchase(db, student_id, course_id)
        if purchase is None:
            return RemainingLessons(total=0, used=0, remaining=0)
        return _snapshot(purchase)

    def reserve(self, db: Session, student_id: int, course_id: int, count: int = 1) -> RemainingLessons:
        """Consume ``count`` credits or raise ``insufficient_lessons``."""
        purchase = self._find_purchase(db, student_id, course_id, lock=True)
        if purchase is None:
            raise BusinessError(
                'Student has not purchased this course.',
                code='insufficient_lessons',
                details={'course_id': course_id, 'remaining': 0},
            )

        if purchase.quantity_remaining < count:
            raise BusinessError(
                'No remaining lessons for this course.',
                code='insufficient_lessons',
                details={'course_id': course_id, 'remaining': purchase.quantity_remaining},
            )

        purchase.quantity_used += count
        db.flush()
        logger.info(
            'Reserved %s lesson credit(s) student_id=%s course_id=%s remaining=%s',
            count, student_id, course_id, purchase.quantity_remaining,
        )
        return _snapshot(purchase)

    def refund(self, db: Session, student_id: int, course_id: int, count: int = 1) -> int:
        """Return up to ``count`` credits. Returns how many were actually refunded."""
        purchase = self._find_purchase(db, student_id, course_id, lock=True)
        if purchase is None or purchase.quantity_used <= 0:
            logger.warning(
                'Nothing to refund student_id=%s course_id=%s', student_id, course_id,
            )
            return 0

        refunded = min(count, purchase.quantity_used)
        purchase.quantity_used -= refunded
        db.flush()
        logger.info(
            'Refunded %s lesson credit(s) student_id=%s course_id=%s', refunded, student_id, course_id,
        )
        return refunded


lesson_ledger = LessonLedger()
