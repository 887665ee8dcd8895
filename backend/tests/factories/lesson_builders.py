"""Builders for lessons, users and gateway webhook payloads."""

from __future__ import annotations

from datetime import datetime
import json
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from tutorbook.core.enums import LessonStatus, RoleName
from tutorbook.core.ulid_helper import generate_ulid
from tutorbook.models.lesson import Lesson
from tutorbook.models.user import User
from tutorbook.repositories.lesson_repository import LessonRepository


def create_user(db: Session, role: RoleName, name: str) -> User:
    user = User(email=f"{name}@example.com", display_name=name.title(), role=role.value)
    db.add(user)
    db.commit()
    return user


def create_lesson(
    db: Session,
    *,
    tutor: User,
    student: User,
    start: datetime,
    status: LessonStatus = LessonStatus.SCHEDULED,
    price: int = 6500,
    payment_intent_id: Optional[str] = "pi_existing",
    duration: int = 60,
    **extra: Any,
) -> Lesson:
    lesson = Lesson(
        tutor_id=tutor.id,
        student_id=student.id,
        course_code="MATH101",
        date=start,
        duration=duration,
        price=price,
        payment_intent_id=payment_intent_id,
        status=status.value,
        **extra,
    )
    db.add(lesson)
    db.commit()
    return lesson


def reload_lesson(db: Session, lesson_id: str) -> Optional[Lesson]:
    """Fresh read that also reports rows deleted behind the session's back."""
    return LessonRepository(db).get_by_id(lesson_id)


def gateway_event(
    event_type: str,
    obj: Dict[str, Any],
    *,
    event_id: Optional[str] = None,
) -> Dict[str, Any]:
    return {
        "id": event_id or f"evt_{generate_ulid()}",
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }


def payment_intent_object(
    payment_intent_id: str,
    *,
    lesson_id: Optional[str] = None,
    amount: int = 6500,
    error_message: Optional[str] = None,
) -> Dict[str, Any]:
    obj: Dict[str, Any] = {
        "id": payment_intent_id,
        "object": "payment_intent",
        "amount": amount,
        "metadata": {"lesson_id": lesson_id} if lesson_id else {},
    }
    if error_message:
        obj["last_payment_error"] = {"message": error_message}
    return obj


def encode(payload: Dict[str, Any]) -> bytes:
    return json.dumps(payload).encode("utf-8")
