# backend/tutorbook/repositories/lesson_repository.py
"""
Lesson Repository for TutorBook

Data access for lessons, including the conditional writes every status
change relies on. A conditional write touches the row only when its status
(and optionally its version) still matches what the caller read; it reports
whether a row was affected instead of raising.
"""

from datetime import datetime, timedelta
import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query, Session

from ..core.enums import ACTIVE_LESSON_STATUSES, LessonStatus
from ..core.exceptions import RepositoryException
from ..core.timezone_utils import ensure_utc
from ..models.lesson import Lesson
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

# Longest lesson we expect when scanning for overlaps.
_MAX_LESSON_SPAN = timedelta(hours=12)
# Tolerance when matching a duplicate submission of the same booking.
_DUPLICATE_TOLERANCE = timedelta(minutes=1)


def _status_values(statuses: Iterable[LessonStatus | str]) -> List[str]:
    return [LessonStatus(s).value for s in statuses]


class LessonRepository(BaseRepository[Lesson]):
    """Repository for lesson data access."""

    def __init__(self, db: Session):
        super().__init__(db, Lesson)

    def _build_query(self) -> Query:
        # Conditional writes bypass the identity map, so reads always refresh.
        return self.db.query(Lesson).populate_existing()

    # Conditional writes

    def update_if_status(
        self,
        lesson_id: str,
        expected: Iterable[LessonStatus | str],
        values: Dict[str, Any],
        *,
        expected_version: Optional[int] = None,
    ) -> bool:
        """
        Apply ``values`` only if the lesson's status is still one of ``expected``.

        Returns:
            True if the row was updated, False if the guard did not match
        """
        stmt = update(Lesson).where(
            Lesson.id == lesson_id, Lesson.status.in_(_status_values(expected))
        )
        if expected_version is not None:
            stmt = stmt.where(Lesson.version == expected_version)
        stmt = stmt.values(**values, version=Lesson.version + 1).execution_options(
            synchronize_session=False
        )
        try:
            result = self.db.execute(stmt)
        except IntegrityError:
            # Unique slot violations are a booking conflict for the caller to map.
            raise
        except SQLAlchemyError as e:
            self.logger.error(f"Conditional update of lesson {lesson_id} failed: {str(e)}")
            raise RepositoryException(f"Failed to update lesson: {str(e)}")
        return (result.rowcount or 0) == 1

    def delete_if_status(self, lesson_id: str, expected: LessonStatus | str) -> bool:
        """Delete the lesson only if it is still in ``expected`` status."""
        stmt = (
            delete(Lesson)
            .where(Lesson.id == lesson_id, Lesson.status == LessonStatus(expected).value)
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
        except SQLAlchemyError as e:
            self.logger.error(f"Conditional delete of lesson {lesson_id} failed: {str(e)}")
            raise RepositoryException(f"Failed to delete lesson: {str(e)}")
        return (result.rowcount or 0) == 1

    def set_created_at_if_missing(self, lesson_id: str, created_at: datetime) -> bool:
        stmt = (
            update(Lesson)
            .where(Lesson.id == lesson_id, Lesson.created_at.is_(None))
            .values(created_at=created_at)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        return (result.rowcount or 0) == 1

    # Queries

    def find_by_payment_intent(self, payment_intent_id: str) -> Optional[Lesson]:
        try:
            return (
                self._build_query()
                .filter(Lesson.payment_intent_id == payment_intent_id)
                .order_by(Lesson.created_at.desc())
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error finding lesson by payment intent: {str(e)}")
            raise RepositoryException(f"Failed to find lesson: {str(e)}")

    def find_duplicate_booking(
        self, tutor_id: str, student_id: str, start: datetime
    ) -> Optional[Lesson]:
        """Active lesson for the same pair starting within a minute of ``start``."""
        start_utc = ensure_utc(start)
        assert start_utc is not None
        query = self._build_query().filter(
            Lesson.tutor_id == tutor_id,
            Lesson.student_id == student_id,
            Lesson.status.in_(_status_values(ACTIVE_LESSON_STATUSES)),
            Lesson.date >= start_utc - _DUPLICATE_TOLERANCE,
            Lesson.date <= start_utc + _DUPLICATE_TOLERANCE,
        )
        return query.first()

    def find_tutor_conflicts(
        self,
        tutor_id: str,
        start: datetime,
        duration_minutes: int,
        *,
        exclude_lesson_id: Optional[str] = None,
    ) -> List[Lesson]:
        """
        Active lessons for ``tutor_id`` whose time range overlaps the requested one.

        Two ranges overlap when each starts before the other ends.
        """
        start_utc = ensure_utc(start)
        assert start_utc is not None
        end_utc = start_utc + timedelta(minutes=duration_minutes)

        query = self._build_query().filter(
            Lesson.tutor_id == tutor_id,
            Lesson.status.in_(_status_values(ACTIVE_LESSON_STATUSES)),
            Lesson.date < end_utc,
            Lesson.date > start_utc - _MAX_LESSON_SPAN,
        )
        if exclude_lesson_id:
            query = query.filter(Lesson.id != exclude_lesson_id)

        conflicts = []
        for lesson in self._execute_query(query):
            other_start = lesson.start_utc
            other_end = other_start + timedelta(minutes=lesson.duration or 60)
            if other_start < end_utc and other_end > start_utc:
                conflicts.append(lesson)
        return conflicts

    def get_booked_starts(self, tutor_id: str, start: datetime, end: datetime) -> List[Lesson]:
        query = (
            self._build_query()
            .filter(
                Lesson.tutor_id == tutor_id,
                Lesson.status.in_(_status_values(ACTIVE_LESSON_STATUSES)),
                Lesson.date >= ensure_utc(start),
                Lesson.date < ensure_utc(end),
            )
            .order_by(Lesson.date.asc())
        )
        return self._execute_query(query)

    def list_for_user(self, user_id: str, limit: int = 100) -> List[Lesson]:
        query = (
            self._build_query()
            .filter((Lesson.tutor_id == user_id) | (Lesson.student_id == user_id))
            .order_by(Lesson.date.desc())
            .limit(limit)
        )
        return self._execute_query(query)

    def list_missing_created_at(self, limit: int = 500) -> List[Lesson]:
        query = self._build_query().filter(Lesson.created_at.is_(None)).limit(limit)
        return self._execute_query(query)
