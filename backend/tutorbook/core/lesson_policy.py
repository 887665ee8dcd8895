"""Lifecycle rules for lessons: the transition table and the notice window for changes."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Dict, FrozenSet, Optional

from .enums import MODIFIABLE_LESSON_STATUSES, LessonStatus
from .exceptions import InvalidTransitionException, ModificationWindowException
from .timezone_utils import ensure_utc, utc_now

if TYPE_CHECKING:
    from ..models.lesson import Lesson

DEFAULT_MODIFICATION_WINDOW_HOURS = 24

_TRANSITIONS: Dict[LessonStatus, FrozenSet[LessonStatus]] = {
    LessonStatus.PENDING_PAYMENT: frozenset({LessonStatus.SCHEDULED}),
    LessonStatus.SCHEDULED: frozenset(
        {LessonStatus.RESCHEDULED, LessonStatus.CANCELLED, LessonStatus.COMPLETED}
    ),
    LessonStatus.RESCHEDULED: frozenset(
        {LessonStatus.RESCHEDULED, LessonStatus.CANCELLED, LessonStatus.COMPLETED}
    ),
    LessonStatus.COMPLETED: frozenset(),
    LessonStatus.CANCELLED: frozenset(),
}


@dataclass(frozen=True)
class ModificationCheck:
    allowed: bool
    hours_until_start: float
    reason: Optional[str] = None


def hours_until_start(start: datetime, now: Optional[datetime] = None) -> float:
    """Hours from ``now`` (server time) until ``start``; negative once the lesson began."""

    current = ensure_utc(now) if now is not None else utc_now()
    start_utc = ensure_utc(start)
    assert start_utc is not None and current is not None
    return (start_utc - current).total_seconds() / 3600


def is_within_modification_window(
    start: datetime,
    now: Optional[datetime] = None,
    window_hours: int = DEFAULT_MODIFICATION_WINDOW_HOURS,
) -> bool:
    """True when there is still enough notice to change the lesson (exactly 24h allowed)."""

    return hours_until_start(start, now) >= window_hours


def can_transition(current: LessonStatus | str, target: LessonStatus | str) -> bool:
    return LessonStatus(target) in _TRANSITIONS.get(LessonStatus(current), frozenset())


def ensure_transition(current: LessonStatus | str, target: LessonStatus | str) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionException(LessonStatus(current).value, LessonStatus(target).value)


def check_modifiable(
    lesson: "Lesson",
    now: Optional[datetime] = None,
    window_hours: int = DEFAULT_MODIFICATION_WINDOW_HOURS,
) -> ModificationCheck:
    """Evaluate whether a student/tutor may cancel or reschedule ``lesson`` right now."""

    hours = hours_until_start(lesson.date, now)
    if LessonStatus(lesson.status) not in MODIFIABLE_LESSON_STATUSES:
        return ModificationCheck(False, hours, f"Lesson is {LessonStatus(lesson.status).value}")
    if hours < window_hours:
        return ModificationCheck(False, hours, f"Less than {window_hours} hours before start")
    return ModificationCheck(True, hours)


def ensure_modifiable(
    lesson: "Lesson",
    target: LessonStatus,
    *,
    action: str,
    now: Optional[datetime] = None,
    window_hours: int = DEFAULT_MODIFICATION_WINDOW_HOURS,
) -> float:
    """
    Raise if ``lesson`` may not move to ``target`` at ``now``.

    Returns the hours until start so callers can log it.
    """

    current = LessonStatus(lesson.status)
    if current not in MODIFIABLE_LESSON_STATUSES:
        raise InvalidTransitionException(
            current.value,
            target.value,
            message=f"Only scheduled lessons can be {action}",
        )
    ensure_transition(current, target)
    hours = hours_until_start(lesson.date, now)
    if hours < window_hours:
        raise ModificationWindowException(action, window_hours, hours)
    return hours


__all__ = [
    "DEFAULT_MODIFICATION_WINDOW_HOURS",
    "ModificationCheck",
    "can_transition",
    "check_modifiable",
    "ensure_modifiable",
    "ensure_transition",
    "hours_until_start",
    "is_within_modification_window",
]
