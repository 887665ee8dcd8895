# backend/tutorbook/core/enums.py
"""
Core enums for the TutorBook backend.

String-valued so they round-trip through JSON and the database unchanged.
"""

from enum import Enum


class RoleName(str, Enum):
    """Roles read by the booking and payment core."""

    ADMIN = "admin"
    TUTOR = "tutor"
    STUDENT = "student"


class LessonStatus(str, Enum):
    """Lifecycle of a lesson."""

    PENDING_PAYMENT = "pending_payment"
    SCHEDULED = "scheduled"
    RESCHEDULED = "rescheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    """Payment state recorded on the lesson, independent of its lifecycle status."""

    PAID = "paid"  # authorization hold confirmed
    FAILED = "failed"
    CHARGED = "charged"  # hold captured


class ActorRole(str, Enum):
    """Which participant asked for a lesson change."""

    STUDENT = "student"
    TUTOR = "tutor"
    ADMIN = "admin"
    SYSTEM = "system"


# Statuses that still occupy a tutor's slot.
ACTIVE_LESSON_STATUSES = (
    LessonStatus.PENDING_PAYMENT,
    LessonStatus.SCHEDULED,
    LessonStatus.RESCHEDULED,
)

# Statuses a student or tutor may still cancel or reschedule from.
MODIFIABLE_LESSON_STATUSES = (LessonStatus.SCHEDULED, LessonStatus.RESCHEDULED)
