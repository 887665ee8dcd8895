# backend/tutorbook/services/capture_service.py
"""
Completion capture for TutorBook.

Turns the payment hold of a completed lesson into a charge. Guards run in a
fixed order and each failure has its own error, so the client can tell an
unauthenticated call from a wrong tutor, a missing lesson, a lesson that is
not completed yet, or a mismatched payment handle. No guard failure writes
to the lesson.
"""

from datetime import datetime
import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..core.config import Settings
from ..core.enums import LessonStatus, PaymentStatus
from ..core.exceptions import (
    ForbiddenException,
    LessonNotCompletedException,
    NotFoundException,
    PaymentAlreadyFinalizedException,
    PaymentMismatchException,
    UnauthorizedException,
    ValidationException,
)
from ..core.timezone_utils import ensure_utc, utc_now
from ..integrations.stripe_gateway import CaptureResult, PaymentGateway
from ..models.user import User
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)


class CaptureService(BaseService):
    def __init__(self, db: Session, gateway: PaymentGateway, config: Settings):
        super().__init__(db)
        self.gateway = gateway
        self.config = config
        self.lesson_repository = RepositoryFactory.create_lesson_repository(db)

    @BaseService.measure_operation("capture_lesson_payment")
    def capture_lesson_payment(
        self,
        user: Optional[User],
        lesson_id: Optional[str],
        payment_intent_id: Optional[str],
        *,
        now: Optional[datetime] = None,
    ) -> CaptureResult:
        """
        Capture the hold for a completed lesson on behalf of its tutor.

        Raises:
            UnauthorizedException: no authenticated caller
            ValidationException: lesson id or payment intent id missing
            NotFoundException: lesson does not exist
            ForbiddenException: caller is not the lesson's tutor
            LessonNotCompletedException: lesson status is not completed
            PaymentMismatchException: handle differs from the stored one
            PaymentAlreadyFinalizedException: hold already captured or cancelled
            PaymentGatewayException: any other gateway failure
        """
        if user is None:
            raise UnauthorizedException("Unauthorized")
        if not lesson_id or not payment_intent_id:
            raise ValidationException("Missing required parameters", code="MISSING_PARAMETERS")

        lesson = self.lesson_repository.get_by_id(lesson_id)
        if lesson is None:
            raise NotFoundException("Lesson not found", code="LESSON_NOT_FOUND")
        if lesson.tutor_id != user.id:
            raise ForbiddenException(
                "Only the tutor for this lesson can capture the payment",
                code="NOT_LESSON_TUTOR",
            )
        if lesson.status != LessonStatus.COMPLETED.value:
            raise LessonNotCompletedException(lesson.status)
        if lesson.payment_intent_id != payment_intent_id:
            raise PaymentMismatchException()
        if lesson.is_charged:
            raise PaymentAlreadyFinalizedException(payment_intent_id, "Lesson already charged")

        amount = lesson.price if self.config.capture_amount_from_price and lesson.price else None
        try:
            result = self.gateway.capture(payment_intent_id, amount_to_capture=amount)
        except Exception:
            prometheus_metrics.record_capture("error")
            raise

        current = ensure_utc(now) or utc_now()
        with self.transaction():
            recorded = self.lesson_repository.update_if_status(
                lesson.id,
                (LessonStatus.COMPLETED,),
                {
                    "payment_status": PaymentStatus.CHARGED.value,
                    "payment_captured_at": current,
                    "payment_captured_by": user.id,
                },
            )
        if not recorded:
            self.logger.error(
                "Captured %s for lesson %s but the lesson could not be updated",
                payment_intent_id,
                lesson.id,
            )

        prometheus_metrics.record_capture("success")
        self.logger.info(
            "Captured payment %s for lesson %s (amount %s, status %s)",
            payment_intent_id,
            lesson.id,
            amount if amount is not None else "full hold",
            result.status,
        )
        return result
