# backend/tutorbook/services/booking_service.py
"""
Booking Service for TutorBook

Creates lessons and their payment holds, and applies the participant-driven
lifecycle changes (cancel, reschedule, complete).

Gateway calls never run inside a database transaction. Every change follows
the same three phases:
1. Validate and read the current state
2. Talk to the payment gateway (if needed)
3. Write through a conditional update guarded on the state read in phase 1
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import List, Mapping, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.config import Settings
from ..core.enums import MODIFIABLE_LESSON_STATUSES, ActorRole, LessonStatus
from ..core.exceptions import (
    BookingConflictException,
    ConflictException,
    ForbiddenException,
    InvalidTransitionException,
    NotFoundException,
    PaymentGatewayException,
    UnauthorizedException,
    ValidationException,
)
from ..core.lesson_policy import ModificationCheck, check_modifiable, ensure_modifiable
from ..core.timezone_utils import ensure_utc, utc_now
from ..events.lesson_events import LessonCancelled, LessonCompleted, LessonRescheduled
from ..integrations.stripe_gateway import AuthorizationHold, PaymentGateway
from ..models.lesson import Lesson
from ..models.user import User
from ..repositories.factory import RepositoryFactory
from ..schemas.lesson import LessonCreate
from ..schemas.payment_schemas import CreateCheckoutSessionRequest
from .base import BaseService
from .notification_service import NotificationService, notify_safely

logger = logging.getLogger(__name__)

_CHECKOUT_REQUIRED_FIELDS = (
    "amount",
    "lesson_id",
    "tutor_id",
    "student_id",
    "course_code",
    "lesson_date",
)


@dataclass(frozen=True)
class BookedLesson:
    lesson: Lesson
    hold: AuthorizationHold


class BookingService(BaseService):
    """Service layer for lesson booking and participant-driven lifecycle changes."""

    def __init__(
        self,
        db: Session,
        gateway: PaymentGateway,
        config: Settings,
        notification_service: Optional[NotificationService] = None,
    ):
        super().__init__(db)
        self.gateway = gateway
        self.config = config
        self.notification_service = notification_service or NotificationService()
        self.lesson_repository = RepositoryFactory.create_lesson_repository(db)
        self.user_repository = RepositoryFactory.create_user_repository(db)

    # ------------------------------------------------------------------
    # Booking
    # ------------------------------------------------------------------

    @BaseService.measure_operation("create_lesson")
    def create_lesson(
        self, student: User, data: LessonCreate, *, now: Optional[datetime] = None
    ) -> Lesson:
        """
        Insert a ``pending_payment`` lesson for ``student``.

        Raises:
            ValidationException: bad date, price or self-booking
            NotFoundException: tutor does not exist
            BookingConflictException: the tutor's slot is taken, or the same
                booking already exists
        """
        current = ensure_utc(now) or utc_now()
        start = ensure_utc(data.date)
        assert start is not None

        if data.tutor_id == student.id:
            raise ValidationException("You cannot book a lesson with yourself")
        if start <= current:
            raise ValidationException(
                "Lessons must be scheduled in the future", code="LESSON_IN_PAST"
            )

        price = data.price if data.price is not None else self.config.default_lesson_price_cents
        if price < self.config.minimum_charge_cents:
            raise ValidationException(
                f"Lesson price must be at least {self.config.minimum_charge_cents}",
                code="AMOUNT_BELOW_MINIMUM",
                details={"minimum": self.config.minimum_charge_cents, "price": price},
            )
        duration = data.duration or self.config.default_lesson_duration_minutes

        tutor = self.user_repository.get_tutor(data.tutor_id)
        if tutor is None:
            raise NotFoundException("Tutor not found", code="TUTOR_NOT_FOUND")

        with self.transaction():
            duplicate = self.lesson_repository.find_duplicate_booking(
                tutor.id, student.id, start
            )
            if duplicate is not None:
                raise BookingConflictException(
                    "You already have a lesson booked at this time",
                    details={"lesson_id": duplicate.id},
                )
            if self.lesson_repository.find_tutor_conflicts(tutor.id, start, duration):
                raise BookingConflictException(
                    "The tutor is not available at this time", details={"tutor_id": tutor.id}
                )
            try:
                lesson = self.lesson_repository.create(
                    tutor_id=tutor.id,
                    student_id=student.id,
                    course_code=data.course_code,
                    date=start,
                    duration=duration,
                    price=price,
                    notes=data.notes,
                    status=LessonStatus.PENDING_PAYMENT.value,
                    created_at=current,
                )
            except IntegrityError as exc:
                # Another booking for the same slot won the race.
                raise BookingConflictException(
                    "The tutor is not available at this time", details={"tutor_id": tutor.id}
                ) from exc

        self.logger.info(
            "Created pending lesson %s for tutor %s at %s",
            lesson.id,
            lesson.tutor_id,
            start.isoformat(),
        )
        return lesson

    @BaseService.measure_operation("authorize_lesson_payment")
    def authorize_lesson_payment(self, lesson: Lesson) -> AuthorizationHold:
        """
        Place a manual-capture hold for ``lesson.price`` and record its handle.

        If the gateway refuses, the pending lesson is removed so no booking is
        left without a hold.
        """
        lesson_id = lesson.id
        try:
            hold = self.gateway.create_authorization(
                amount=lesson.price,
                metadata={
                    "lesson_id": lesson_id,
                    "tutor_id": lesson.tutor_id,
                    "student_id": lesson.student_id,
                    "course_code": lesson.course_code,
                },
                idempotency_key=f"lesson-hold-{lesson_id}",
            )
        except PaymentGatewayException:
            with self.transaction():
                removed = self.lesson_repository.delete_if_status(
                    lesson_id, LessonStatus.PENDING_PAYMENT
                )
            self.logger.warning(
                "Payment hold failed for lesson %s; pending lesson removed=%s", lesson_id, removed
            )
            raise

        with self.transaction():
            stored = self.lesson_repository.update_if_status(
                lesson_id,
                (LessonStatus.PENDING_PAYMENT, LessonStatus.SCHEDULED),
                {"payment_intent_id": hold.payment_intent_id},
            )

        if not stored:
            self.logger.error(
                "Lesson %s disappeared before its hold %s was recorded; releasing hold",
                lesson_id,
                hold.payment_intent_id,
            )
            self._release_hold_safely(hold.payment_intent_id)
            raise NotFoundException("Lesson no longer exists", code="LESSON_NOT_FOUND")

        return hold

    def book_lesson(
        self, student: User, data: LessonCreate, *, now: Optional[datetime] = None
    ) -> BookedLesson:
        """Create the pending lesson and its payment hold in one call."""
        lesson = self.create_lesson(student, data, now=now)
        hold = self.authorize_lesson_payment(lesson)
        refreshed = self.lesson_repository.get_by_id(lesson.id)
        return BookedLesson(lesson=refreshed or lesson, hold=hold)

    @BaseService.measure_operation("create_payment_intent")
    def create_payment_intent(
        self, user: Optional[User], amount: int, metadata: Mapping[str, str]
    ) -> str:
        """
        Generic hold used by the booking widget; returns the client secret.

        Raises:
            UnauthorizedException: no caller
            ValidationException: amount below the minimum charge
            PaymentGatewayException: the gateway call failed
        """
        if user is None:
            raise UnauthorizedException("You must be logged in to make a payment")
        if amount < self.config.minimum_charge_cents:
            raise ValidationException(
                f"Amount must be at least {self.config.minimum_charge_cents}",
                code="AMOUNT_BELOW_MINIMUM",
                details={"minimum": self.config.minimum_charge_cents, "amount": amount},
            )

        hold = self.gateway.create_authorization(
            amount=amount, metadata={**metadata, "user_id": user.id}
        )
        self.logger.info("Created payment hold %s for user %s", hold.payment_intent_id, user.id)
        return hold.client_secret

    @BaseService.measure_operation("create_checkout_session")
    def create_checkout_session(
        self,
        request: CreateCheckoutSessionRequest,
        *,
        origin: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> str:
        """Create a hosted checkout session for a lesson and return its redirect URL."""
        missing = [name for name in _CHECKOUT_REQUIRED_FIELDS if not getattr(request, name)]
        if missing:
            raise ValidationException(
                "Missing required parameters",
                code="MISSING_PARAMETERS",
                details={"missing": missing},
            )
        assert request.amount is not None
        if request.amount < self.config.minimum_charge_cents:
            raise ValidationException(
                f"Amount must be at least {self.config.minimum_charge_cents}",
                code="AMOUNT_BELOW_MINIMUM",
            )

        current = ensure_utc(now) or utc_now()
        expires_at = int(
            (current + timedelta(minutes=self.config.checkout_session_ttl_minutes)).timestamp()
        )
        base_url = (origin or self.config.frontend_url).rstrip("/")
        success_url = request.success_url or (
            f"{base_url}/tutor/{request.tutor_id}?booking=success&lesson_id={request.lesson_id}"
        )
        cancel_url = request.cancel_url or (
            f"{base_url}/tutor/{request.tutor_id}?booking=cancelled&reason=timeout"
        )
        metadata = {
            "lesson_id": str(request.lesson_id),
            "tutor_id": str(request.tutor_id),
            "student_id": str(request.student_id),
            "course_code": str(request.course_code),
            "lesson_date": str(request.lesson_date),
        }

        session = self.gateway.create_checkout_session(
            amount=request.amount,
            product_name=f"Tutoring Session - {request.course_code}",
            success_url=success_url,
            cancel_url=cancel_url,
            expires_at=expires_at,
            metadata=metadata,
        )
        self.logger.info(
            "Created checkout session %s for lesson %s", session.session_id, request.lesson_id
        )
        return session.url

    # ------------------------------------------------------------------
    # Participant actions
    # ------------------------------------------------------------------

    def get_lesson_for_user(self, user: User, lesson_id: str) -> Lesson:
        lesson = self.lesson_repository.get_by_id(lesson_id)
        if lesson is None:
            raise NotFoundException("Lesson not found", code="LESSON_NOT_FOUND")
        if not (user.is_admin or lesson.is_participant(user.id)):
            raise ForbiddenException("You do not have access to this lesson")
        return lesson

    def _actor_for(self, user: User, lesson: Lesson) -> ActorRole:
        if user.id == lesson.student_id:
            return ActorRole.STUDENT
        if user.id == lesson.tutor_id:
            return ActorRole.TUTOR
        raise ForbiddenException("Only the lesson's student or tutor can change it")

    @BaseService.measure_operation("cancel_lesson")
    def cancel_lesson(
        self,
        user: User,
        lesson_id: str,
        reason: Optional[str] = None,
        *,
        now: Optional[datetime] = None,
    ) -> Lesson:
        """
        Cancel a scheduled lesson at least 24 hours before it starts.

        Either participant may cancel. The payment hold is released afterwards
        on a best-effort basis.
        """
        current = ensure_utc(now) or utc_now()
        lesson = self.get_lesson_for_user(user, lesson_id)
        actor = self._actor_for(user, lesson)

        hours = ensure_modifiable(
            lesson,
            LessonStatus.CANCELLED,
            action="cancelled",
            now=current,
            window_hours=self.config.modification_window_hours,
        )
        final_reason = reason or f"Cancelled by {actor.value}"

        with self.transaction():
            updated = self.lesson_repository.update_if_status(
                lesson.id,
                MODIFIABLE_LESSON_STATUSES,
                {
                    "status": LessonStatus.CANCELLED.value,
                    "cancellation_reason": final_reason,
                    "cancellation_date": current,
                    "cancelled_by": actor.value,
                },
                expected_version=lesson.version,
            )
        if not updated:
            raise ConflictException(
                "Lesson was changed by another request, please reload and retry",
                code="LESSON_CHANGED",
            )

        self.logger.info(
            "Lesson %s cancelled by %s %.1f hours before start", lesson.id, actor.value, hours
        )
        if lesson.payment_intent_id and not lesson.is_charged:
            self._release_hold_safely(lesson.payment_intent_id)

        notify_safely(
            self.notification_service.lesson_cancelled,
            LessonCancelled(
                lesson_id=lesson.id,
                cancelled_by=actor.value,
                reason=final_reason,
                cancelled_at=current,
            ),
        )
        return self._reload(lesson.id)

    @BaseService.measure_operation("reschedule_lesson")
    def reschedule_lesson(
        self,
        user: User,
        lesson_id: str,
        new_date: datetime,
        *,
        now: Optional[datetime] = None,
    ) -> Lesson:
        """Move a scheduled lesson to ``new_date`` (24 hour notice on the current start)."""
        current = ensure_utc(now) or utc_now()
        new_start = ensure_utc(new_date)
        assert new_start is not None

        lesson = self.get_lesson_for_user(user, lesson_id)
        self._actor_for(user, lesson)

        ensure_modifiable(
            lesson,
            LessonStatus.RESCHEDULED,
            action="rescheduled",
            now=current,
            window_hours=self.config.modification_window_hours,
        )
        if new_start <= current:
            raise ValidationException(
                "Lessons must be scheduled in the future", code="LESSON_IN_PAST"
            )
        if new_start == lesson.start_utc:
            raise ValidationException("The new time is the same as the current time")

        previous_start = lesson.start_utc
        with self.transaction():
            if self.lesson_repository.find_tutor_conflicts(
                lesson.tutor_id, new_start, lesson.duration, exclude_lesson_id=lesson.id
            ):
                raise BookingConflictException("The tutor is not available at the new time")
            try:
                updated = self.lesson_repository.update_if_status(
                    lesson.id,
                    MODIFIABLE_LESSON_STATUSES,
                    {
                        "status": LessonStatus.RESCHEDULED.value,
                        "original_date": previous_start,
                        "date": new_start,
                        "reschedule_date": current,
                    },
                    expected_version=lesson.version,
                )
            except IntegrityError as exc:
                raise BookingConflictException("The tutor is not available at the new time") from exc
        if not updated:
            raise ConflictException(
                "Lesson was changed by another request, please reload and retry",
                code="LESSON_CHANGED",
            )

        self.logger.info(
            "Lesson %s rescheduled from %s to %s",
            lesson.id,
            previous_start.isoformat(),
            new_start.isoformat(),
        )
        notify_safely(
            self.notification_service.lesson_rescheduled,
            LessonRescheduled(
                lesson_id=lesson.id, original_start=previous_start, new_start=new_start
            ),
        )
        return self._reload(lesson.id)

    @BaseService.measure_operation("complete_lesson")
    def complete_lesson(
        self,
        tutor: User,
        lesson_id: str,
        notes: Optional[str] = None,
        *,
        now: Optional[datetime] = None,
    ) -> Lesson:
        """Tutor marks a scheduled lesson as taught, which makes its payment capturable."""
        current = ensure_utc(now) or utc_now()
        lesson = self.lesson_repository.get_by_id(lesson_id)
        if lesson is None:
            raise NotFoundException("Lesson not found", code="LESSON_NOT_FOUND")
        if lesson.tutor_id != tutor.id:
            raise ForbiddenException("Only the tutor for this lesson can complete it")
        if lesson.status_enum not in MODIFIABLE_LESSON_STATUSES:
            raise InvalidTransitionException(lesson.status, LessonStatus.COMPLETED.value)

        with self.transaction():
            updated = self.lesson_repository.update_if_status(
                lesson.id,
                MODIFIABLE_LESSON_STATUSES,
                {
                    "status": LessonStatus.COMPLETED.value,
                    "completion_notes": notes,
                    "completion_date": current,
                },
                expected_version=lesson.version,
            )
        if not updated:
            raise ConflictException(
                "Lesson was changed by another request, please reload and retry",
                code="LESSON_CHANGED",
            )

        self.logger.info("Lesson %s marked completed by tutor %s", lesson.id, tutor.id)
        notify_safely(
            self.notification_service.lesson_completed,
            LessonCompleted(lesson_id=lesson.id, completed_at=current),
        )
        return self._reload(lesson.id)

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    def get_modification_permissions(
        self, user: User, lesson_id: str, *, now: Optional[datetime] = None
    ) -> Tuple[ModificationCheck, bool]:
        """
        Whether ``user`` may cancel/reschedule the lesson right now.

        Returns the check and whether the caller is a participant at all.
        """
        lesson = self.get_lesson_for_user(user, lesson_id)
        check = check_modifiable(
            lesson, now=now, window_hours=self.config.modification_window_hours
        )
        return check, lesson.is_participant(user.id)

    def get_booked_slots(self, tutor_id: str, start: datetime, end: datetime) -> List[datetime]:
        if end <= start:
            raise ValidationException("End must be after start")
        return [
            lesson.start_utc
            for lesson in self.lesson_repository.get_booked_starts(tutor_id, start, end)
        ]

    # ------------------------------------------------------------------

    def _reload(self, lesson_id: str) -> Lesson:
        lesson = self.lesson_repository.get_by_id(lesson_id)
        if lesson is None:
            raise NotFoundException("Lesson not found", code="LESSON_NOT_FOUND")
        return lesson

    def _release_hold_safely(self, payment_intent_id: str) -> None:
        try:
            self.gateway.refund(payment_intent_id)
        except Exception as exc:
            self.logger.error(
                "Failed to release payment hold %s: %s", payment_intent_id, exc, exc_info=True
            )
