"""Lesson request/response schemas."""

from datetime import datetime
from typing import List, Optional

from pydantic import Field, field_validator

from ..core.timezone_utils import ensure_utc
from ._strict_base import CamelModel, StrictModel


class LessonCreate(CamelModel):
    """A student's booking request."""

    tutor_id: str
    course_code: str = Field(..., min_length=1, max_length=50)
    date: datetime = Field(..., description="Lesson start (ISO 8601, converted to UTC)")
    duration: Optional[int] = Field(default=None, ge=15, le=480)
    price: Optional[int] = Field(default=None, ge=0, description="Minor currency units")
    notes: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("date")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)  # type: ignore[return-value]


class LessonCancelRequest(CamelModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class LessonRescheduleRequest(CamelModel):
    new_date: datetime

    @field_validator("new_date")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)  # type: ignore[return-value]


class LessonCompleteRequest(CamelModel):
    notes: Optional[str] = Field(default=None, max_length=2000)


class LessonResponse(CamelModel):
    id: str
    tutor_id: str
    student_id: str
    course_code: str
    date: datetime
    duration: int
    status: str
    price: int
    payment_status: Optional[str] = None
    payment_intent_id: Optional[str] = None
    payment_amount: Optional[int] = None
    original_date: Optional[datetime] = None
    reschedule_date: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    completion_notes: Optional[str] = None
    payment_captured_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    # SQLite hands datetimes back naive; they are stored as UTC.
    @field_validator(
        "date", "original_date", "reschedule_date", "payment_captured_at", "created_at"
    )
    @classmethod
    def _as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)


class BookLessonResponse(CamelModel):
    lesson: LessonResponse
    client_secret: str


class LessonPermissionsResponse(CamelModel):
    can_cancel: bool
    can_reschedule: bool
    hours_until_start: float
    reason: Optional[str] = None


class BookedSlotsResponse(CamelModel):
    tutor_id: str
    slots: List[datetime]


class BackfillResponse(StrictModel):
    updated: int
    failed: int
    failed_ids: List[str] = Field(default_factory=list)
