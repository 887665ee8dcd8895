# backend/tutorbook/models/lesson.py
"""
Lesson model for TutorBook.

A lesson is one tutoring session between a tutor and a student. Its
``status`` is the lifecycle state; ``payment_status`` tracks the payment
hold separately. Every write that changes ``status`` goes through a
compare-and-set on ``status`` and ``version`` (see LessonRepository).
"""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any, Dict, Optional

import sqlalchemy as sa
from sqlalchemy import Boolean, DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from ..core.enums import ACTIVE_LESSON_STATUSES, LessonStatus, PaymentStatus
from ..core.timezone_utils import ensure_utc
from ..core.ulid_helper import generate_ulid
from ..database import Base

logger = logging.getLogger(__name__)

_ACTIVE_STATUS_SQL = "status IN ({})".format(
    ", ".join(f"'{status.value}'" for status in ACTIVE_LESSON_STATUSES)
)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class Lesson(Base):
    """
    A booked (or in-flight) lesson.

    Attributes:
        id: ULID primary key
        tutor_id / student_id: Participants; never change after creation
        course_code: Course the lesson belongs to
        date: Scheduled start instant (UTC)
        duration: Length in minutes
        price: Amount in minor currency units
        payment_intent_id: Gateway authorization hold, set once a hold exists
        status: Lifecycle state
        version: Incremented on every conditional write
    """

    __tablename__ = "lessons"

    __table_args__ = (
        # At most one live lesson per tutor per start instant.
        sa.Index(
            "uq_lessons_tutor_active_slot",
            "tutor_id",
            "date",
            unique=True,
            postgresql_where=sa.text(_ACTIVE_STATUS_SQL),
            sqlite_where=sa.text(_ACTIVE_STATUS_SQL),
        ),
        sa.Index("ix_lessons_student_date", "student_id", "date"),
        sa.Index("ix_lessons_payment_intent_id", "payment_intent_id"),
        sa.Index("ix_lessons_created_at", "created_at"),
        sa.CheckConstraint(
            "status IN ('pending_payment', 'scheduled', 'rescheduled', 'completed', 'cancelled')",
            name="ck_lessons_status",
        ),
        sa.CheckConstraint(
            "payment_status IS NULL OR payment_status IN ('paid', 'failed', 'charged')",
            name="ck_lessons_payment_status",
        ),
        sa.CheckConstraint("price >= 0", name="ck_lessons_price_non_negative"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    tutor_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    student_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    course_code: Mapped[str] = mapped_column(String(50), nullable=False)

    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False, default=60)
    original_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    reschedule_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    notes: Mapped[Optional[str]] = mapped_column(Text)

    price: Mapped[int] = mapped_column(Integer, nullable=False)
    payment_amount: Mapped[Optional[int]] = mapped_column(Integer)
    payment_intent_id: Mapped[Optional[str]] = mapped_column(String(255))
    payment_status: Mapped[Optional[str]] = mapped_column(String(20))
    payment_id: Mapped[Optional[str]] = mapped_column(String(255))
    payment_error_message: Mapped[Optional[str]] = mapped_column(Text)
    payment_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    payment_captured_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    payment_captured_by: Mapped[Optional[str]] = mapped_column(String(26))

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=LessonStatus.PENDING_PAYMENT.value
    )
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text)
    cancellation_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancelled_by: Mapped[Optional[str]] = mapped_column(String(20))
    completion_notes: Mapped[Optional[str]] = mapped_column(Text)
    completion_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    reviewed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Nullable so legacy rows without a creation timestamp can be repaired in place.
    created_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), default=_now_utc, server_default=func.now()
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), onupdate=_now_utc
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    def __repr__(self) -> str:
        return (
            f"<Lesson {self.id} tutor={self.tutor_id} student={self.student_id} "
            f"{self.status} {self.date}>"
        )

    @property
    def status_enum(self) -> LessonStatus:
        return LessonStatus(self.status)

    @property
    def start_utc(self) -> datetime:
        start = ensure_utc(self.date)
        assert start is not None
        return start

    @property
    def is_pending_payment(self) -> bool:
        return self.status == LessonStatus.PENDING_PAYMENT.value

    @property
    def is_charged(self) -> bool:
        return self.payment_status == PaymentStatus.CHARGED.value

    def is_participant(self, user_id: str) -> bool:
        return user_id in (self.tutor_id, self.student_id)

    def to_dict(self) -> Dict[str, Any]:
        """Plain dict used in log context and notifications."""
        return {
            "id": self.id,
            "tutor_id": self.tutor_id,
            "student_id": self.student_id,
            "course_code": self.course_code,
            "date": self.start_utc.isoformat(),
            "duration": self.duration,
            "price": self.price,
            "status": self.status,
            "payment_status": self.payment_status,
            "payment_intent_id": self.payment_intent_id,
        }
