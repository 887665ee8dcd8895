"""Admin maintenance jobs over many lessons."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import Callable, List, Optional

import ulid
from sqlalchemy.orm import Session

from ..core.exceptions import ForbiddenException
from ..core.timezone_utils import ensure_utc, utc_now
from ..core.ulid_helper import is_valid_ulid
from ..database import SessionLocal
from ..models.user import User
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)


@dataclass
class BackfillSummary:
    updated: int = 0
    failed: int = 0
    failed_ids: List[str] = field(default_factory=list)


def creation_time_for(lesson_id: str, fallback: datetime) -> datetime:
    """Best estimate of when a lesson was created: its ULID timestamp, else ``fallback``."""
    if not is_valid_ulid(lesson_id):
        return fallback
    return ulid.ULID.from_str(lesson_id).datetime


class LessonMaintenanceService(BaseService):
    def __init__(
        self,
        db: Session,
        *,
        session_factory: Callable[[], Session] = SessionLocal,
        batch_size: int = 500,
        max_concurrency: int = 8,
    ):
        super().__init__(db)
        self.session_factory = session_factory
        self.batch_size = batch_size
        self.max_concurrency = max_concurrency
        self.lesson_repository = RepositoryFactory.create_lesson_repository(db)

    @BaseService.measure_operation("backfill_created_at")
    async def backfill_created_at(
        self, admin: User, *, now: Optional[datetime] = None
    ) -> BackfillSummary:
        """
        Stamp ``created_at`` on lessons that lack it.

        Items are fanned out to worker threads, each with its own session and
        commit, and joined once. A failing lesson is counted and skipped
        without aborting the rest.
        """
        if not admin.is_admin:
            raise ForbiddenException("You must be an admin to perform this action")

        current = ensure_utc(now) or utc_now()
        lessons = await asyncio.to_thread(
            self.lesson_repository.list_missing_created_at, limit=self.batch_size
        )
        lesson_ids = [lesson.id for lesson in lessons]
        self.logger.info("Found %d lessons missing created_at", len(lesson_ids))

        limiter = asyncio.Semaphore(self.max_concurrency)

        async def run(lesson_id: str) -> bool:
            async with limiter:
                return await asyncio.to_thread(self._backfill_one, lesson_id, current)

        results = await asyncio.gather(
            *(run(lesson_id) for lesson_id in lesson_ids), return_exceptions=True
        )

        summary = BackfillSummary()
        for lesson_id, outcome in zip(lesson_ids, results):
            if isinstance(outcome, BaseException):
                self.logger.error("Failed to backfill created_at for lesson %s: %s", lesson_id, outcome)
                summary.failed += 1
                summary.failed_ids.append(lesson_id)
            elif outcome:
                summary.updated += 1

        self.logger.info(
            "created_at backfill finished: %d updated, %d failed", summary.updated, summary.failed
        )
        return summary

    def _backfill_one(self, lesson_id: str, now: datetime) -> bool:
        # Sessions are not thread-safe; every worker opens its own.
        db = self.session_factory()
        try:
            repository = RepositoryFactory.create_lesson_repository(db)
            updated = repository.set_created_at_if_missing(
                lesson_id, creation_time_for(lesson_id, now)
            )
            db.commit()
            return updated
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
