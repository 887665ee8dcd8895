# backend/tutorbook/services/notification_service.py
"""
Lesson notifications.

Delivery channels (email, push) are outside this core; the default
implementation records each notification in the log. Callers go through
``notify_safely`` so a failed notification never undoes a lesson change.
"""

import logging
from typing import Any, Callable, Union

from ..events.lesson_events import (
    LessonCancelled,
    LessonCompleted,
    LessonRescheduled,
    LessonScheduled,
)

logger = logging.getLogger(__name__)

LessonEvent = Union[LessonScheduled, LessonCancelled, LessonRescheduled, LessonCompleted]


class NotificationService:
    """Sends lesson lifecycle notifications to participants."""

    def __init__(self) -> None:
        self.logger = logging.getLogger(self.__class__.__name__)

    def lesson_scheduled(self, event: LessonScheduled) -> None:
        self.logger.info("Notify: lesson scheduled", extra={"event": event.to_dict()})

    def lesson_cancelled(self, event: LessonCancelled) -> None:
        self.logger.info("Notify: lesson cancelled", extra={"event": event.to_dict()})

    def lesson_rescheduled(self, event: LessonRescheduled) -> None:
        self.logger.info("Notify: lesson rescheduled", extra={"event": event.to_dict()})

    def lesson_completed(self, event: LessonCompleted) -> None:
        self.logger.info("Notify: lesson completed", extra={"event": event.to_dict()})


def notify_safely(send: Callable[[Any], None], event: LessonEvent) -> bool:
    """
    Deliver ``event`` through ``send``; log and swallow any failure.

    Returns True when the notification was handed off.
    """
    try:
        send(event)
        return True
    except Exception as exc:
        logger.error(
            "Failed to send %s notification for lesson %s: %s",
            type(event).__name__,
            event.lesson_id,
            exc,
            exc_info=True,
        )
        return False
