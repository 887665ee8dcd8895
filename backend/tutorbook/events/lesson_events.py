"""Lesson domain events handed to the notification collaborator."""
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class LessonScheduled:
    """Fired after payment confirmation moves a lesson to scheduled."""

    lesson_id: str
    tutor_id: str
    student_id: str
    start: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class LessonCancelled:
    lesson_id: str
    cancelled_by: str  # 'student' or 'tutor'
    reason: Optional[str]
    cancelled_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class LessonRescheduled:
    lesson_id: str
    original_start: datetime
    new_start: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class LessonCompleted:
    lesson_id: str
    completed_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
