# backend/tutorbook/services/webhook_reconciler.py
"""
Webhook Reconciler for TutorBook

Matches gateway notifications to lessons and applies the resulting
transition. Each event is handled on its own, in any order, any number of
times: every write is a conditional update on the status that was read, so
a redelivered or reordered event resolves to a logged no-op.

Processing errors that are part of the normal asynchronous protocol
(orphaned holds, lessons already confirmed) are acknowledged so the gateway
does not retry them. Only unexpected failures propagate.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
import logging
from typing import Optional, Union

from sqlalchemy.orm import Session

from ..core.enums import LessonStatus, PaymentStatus
from ..core.exceptions import WebhookSignatureException
from ..core.timezone_utils import ensure_utc, utc_now
from ..database import with_db_retry
from ..events.gateway_events import (
    AuthorizationFailed,
    AuthorizationSucceeded,
    CheckoutCompleted,
    CheckoutExpired,
    GatewayEvent,
    UnhandledEvent,
    parse_gateway_event,
)
from ..events.lesson_events import LessonScheduled
from ..integrations.stripe_gateway import PaymentGateway
from ..models.lesson import Lesson
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .notification_service import NotificationService, notify_safely
from .webhook_ledger_service import WebhookLedgerService

logger = logging.getLogger(__name__)

_FAILURE_MARKABLE_STATUSES = (
    LessonStatus.SCHEDULED,
    LessonStatus.RESCHEDULED,
    LessonStatus.COMPLETED,
    LessonStatus.CANCELLED,
)


class ReconcileOutcome(str, Enum):
    SCHEDULED = "scheduled"
    ALREADY_PROCESSED = "already_processed"
    ORPHAN_REFUNDED = "orphan_refunded"
    ORPHAN_REFUND_FAILED = "orphan_refund_failed"
    SLOT_FREED = "slot_freed"
    MARKED_FAILED = "marked_failed"
    LESSON_MISSING = "lesson_missing"
    NO_LESSON_ID = "no_lesson_id"
    IGNORED = "ignored"


@dataclass(frozen=True)
class ReconciliationResult:
    outcome: ReconcileOutcome
    event_type: str
    lesson_id: Optional[str] = None


_Confirmation = Union[AuthorizationSucceeded, CheckoutCompleted]


class WebhookReconciler(BaseService):
    """Applies verified gateway events to lessons."""

    def __init__(
        self,
        db: Session,
        gateway: PaymentGateway,
        notification_service: Optional[NotificationService] = None,
        ledger: Optional[WebhookLedgerService] = None,
    ):
        super().__init__(db)
        self.gateway = gateway
        self.notification_service = notification_service or NotificationService()
        self.ledger = ledger or WebhookLedgerService(db)
        self.lesson_repository = RepositoryFactory.create_lesson_repository(db)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def verify_and_parse(self, raw_body: Optional[bytes], signature: Optional[str]) -> GatewayEvent:
        """
        Verify the signature over the raw body and parse the event.

        Raises:
            WebhookSignatureException: body or signature missing, or verification failed
        """
        if not raw_body:
            raise WebhookSignatureException("Missing request body")
        if not signature:
            raise WebhookSignatureException("Missing stripe-signature header")
        payload = self.gateway.construct_event(raw_body, signature)
        return parse_gateway_event(payload)

    @BaseService.measure_operation("handle_webhook")
    def handle(
        self,
        raw_body: Optional[bytes],
        signature: Optional[str],
        *,
        now: Optional[datetime] = None,
    ) -> ReconciliationResult:
        """Verify, record and reconcile one webhook delivery."""
        event = self.verify_and_parse(raw_body, signature)
        entry = self.ledger.log_received(
            event_id=event.event_id or f"unidentified:{event.event_type}",
            event_type=event.event_type,
            payload=event.to_dict(),
        )

        try:
            result = self.reconcile(event, now=now)
        except Exception as exc:
            self.db.rollback()
            self.ledger.mark_failed(entry, str(exc))
            prometheus_metrics.record_webhook_event(event.event_type, "error")
            raise

        self.ledger.mark_processed(
            entry,
            outcome=result.outcome.value,
            lesson_id=result.lesson_id,
            ignored=result.outcome is ReconcileOutcome.IGNORED,
        )
        prometheus_metrics.record_webhook_event(event.event_type, result.outcome.value)
        return result

    def reconcile(
        self, event: GatewayEvent, *, now: Optional[datetime] = None
    ) -> ReconciliationResult:
        current = ensure_utc(now) or utc_now()

        if isinstance(event, (AuthorizationSucceeded, CheckoutCompleted)):
            return self._handle_confirmation(event, current)
        if isinstance(event, AuthorizationFailed):
            return self._handle_authorization_failed(event)
        if isinstance(event, CheckoutExpired):
            return self._handle_checkout_expired(event)
        if isinstance(event, UnhandledEvent):
            self.logger.info("Ignoring unhandled webhook event type %s", event.event_type)
            return ReconciliationResult(ReconcileOutcome.IGNORED, event.event_type)
        raise TypeError(f"Unknown gateway event {type(event).__name__}")

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _handle_confirmation(self, event: _Confirmation, now: datetime) -> ReconciliationResult:
        payment_intent_id = event.payment_intent_id
        lesson_id = self._resolve_lesson_id(event.lesson_id, payment_intent_id)
        if not lesson_id:
            self.logger.warning(
                "No lesson id for %s (payment intent %s); acknowledging",
                event.event_type,
                payment_intent_id,
            )
            return ReconciliationResult(ReconcileOutcome.NO_LESSON_ID, event.event_type)

        lesson = self._load(lesson_id)
        if lesson is None:
            return self._refund_orphan(event.event_type, lesson_id, payment_intent_id)

        stored_intent_id = lesson.payment_intent_id
        if not lesson.is_pending_payment:
            self.logger.info(
                "Lesson %s already %s; %s is a replay", lesson_id, lesson.status, event.event_type
            )
            if payment_intent_id and stored_intent_id and payment_intent_id != stored_intent_id:
                # A second hold for a lesson that is already paid for.
                self._release_hold_safely(payment_intent_id, lesson_id)
            return ReconciliationResult(
                ReconcileOutcome.ALREADY_PROCESSED, event.event_type, lesson_id
            )

        amount = event.amount if event.amount is not None else lesson.price
        if amount < lesson.price:
            self.logger.warning(
                "Hold for lesson %s is %s, below the lesson price %s", lesson_id, amount, lesson.price
            )

        # The hold that was actually funded becomes the one capture uses.
        funded_intent_id = payment_intent_id or stored_intent_id
        tutor_id, student_id, start = lesson.tutor_id, lesson.student_id, lesson.start_utc
        with self.transaction():
            updated = self.lesson_repository.update_if_status(
                lesson_id,
                (LessonStatus.PENDING_PAYMENT,),
                {
                    "status": LessonStatus.SCHEDULED.value,
                    "payment_status": PaymentStatus.PAID.value,
                    "payment_id": payment_intent_id,
                    "payment_intent_id": funded_intent_id,
                    "payment_amount": amount,
                    "payment_date": now,
                },
            )

        if not updated:
            # Lost a race with another delivery for the same lesson.
            latest = self._load(lesson_id)
            if latest is None:
                return self._refund_orphan(event.event_type, lesson_id, payment_intent_id)
            self.logger.info(
                "Lesson %s changed to %s concurrently; %s is a replay",
                lesson_id,
                latest.status,
                event.event_type,
            )
            return ReconciliationResult(
                ReconcileOutcome.ALREADY_PROCESSED, event.event_type, lesson_id
            )

        self.logger.info(
            "Lesson %s scheduled after payment %s (amount %s)", lesson_id, payment_intent_id, amount
        )
        if stored_intent_id and stored_intent_id != funded_intent_id:
            self.logger.info(
                "Lesson %s was paid with %s; releasing unused hold %s",
                lesson_id,
                funded_intent_id,
                stored_intent_id,
            )
            self._release_hold_safely(stored_intent_id, lesson_id)
        notify_safely(
            self.notification_service.lesson_scheduled,
            LessonScheduled(
                lesson_id=lesson_id,
                tutor_id=tutor_id,
                student_id=student_id,
                start=start,
            ),
        )
        return ReconciliationResult(ReconcileOutcome.SCHEDULED, event.event_type, lesson_id)

    def _handle_authorization_failed(self, event: AuthorizationFailed) -> ReconciliationResult:
        lesson_id = self._resolve_lesson_id(event.lesson_id, event.payment_intent_id)
        if not lesson_id:
            self.logger.warning(
                "No lesson id for failed payment %s; acknowledging", event.payment_intent_id
            )
            return ReconciliationResult(ReconcileOutcome.NO_LESSON_ID, event.event_type)

        lesson = self._load(lesson_id)
        if lesson is None:
            self.logger.info("Failed payment for lesson %s which no longer exists", lesson_id)
            return ReconciliationResult(
                ReconcileOutcome.LESSON_MISSING, event.event_type, lesson_id
            )

        if lesson.is_pending_payment:
            with self.transaction():
                deleted = self.lesson_repository.delete_if_status(
                    lesson_id, LessonStatus.PENDING_PAYMENT
                )
            if deleted:
                self.logger.info(
                    "Deleted pending lesson %s after failed payment %s: %s",
                    lesson_id,
                    event.payment_intent_id,
                    event.error_message,
                )
                return ReconciliationResult(
                    ReconcileOutcome.SLOT_FREED, event.event_type, lesson_id
                )
            lesson = self._load(lesson_id)
            if lesson is None:
                return ReconciliationResult(
                    ReconcileOutcome.LESSON_MISSING, event.event_type, lesson_id
                )

        if lesson.is_charged or lesson.payment_status == PaymentStatus.FAILED.value:
            self.logger.info(
                "Lesson %s payment already %s; failure event ignored",
                lesson_id,
                lesson.payment_status,
            )
            return ReconciliationResult(
                ReconcileOutcome.ALREADY_PROCESSED, event.event_type, lesson_id
            )

        status = lesson.status
        with self.transaction():
            updated = self.lesson_repository.update_if_status(
                lesson_id,
                _FAILURE_MARKABLE_STATUSES,
                {
                    "payment_status": PaymentStatus.FAILED.value,
                    "payment_error_message": event.error_message or "Payment failed",
                },
                expected_version=lesson.version,
            )
        if not updated:
            self.logger.info("Lesson %s changed concurrently; failure event is a replay", lesson_id)
            return ReconciliationResult(
                ReconcileOutcome.ALREADY_PROCESSED, event.event_type, lesson_id
            )

        self.logger.warning(
            "Payment failed for %s lesson %s: %s", status, lesson_id, event.error_message
        )
        return ReconciliationResult(ReconcileOutcome.MARKED_FAILED, event.event_type, lesson_id)

    def _handle_checkout_expired(self, event: CheckoutExpired) -> ReconciliationResult:
        lesson_id = event.lesson_id
        if not lesson_id:
            self.logger.info("Expired checkout session %s has no lesson id", event.session_id)
            return ReconciliationResult(ReconcileOutcome.NO_LESSON_ID, event.event_type)

        with self.transaction():
            deleted = self.lesson_repository.delete_if_status(
                lesson_id, LessonStatus.PENDING_PAYMENT
            )
        if deleted:
            self.logger.info(
                "Deleted pending lesson %s after checkout session %s expired",
                lesson_id,
                event.session_id,
            )
            return ReconciliationResult(ReconcileOutcome.SLOT_FREED, event.event_type, lesson_id)

        self.logger.info("Checkout session %s expired; lesson %s not pending", event.session_id, lesson_id)
        return ReconciliationResult(ReconcileOutcome.ALREADY_PROCESSED, event.event_type, lesson_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load(self, lesson_id: str) -> Optional[Lesson]:
        return with_db_retry("load_lesson", lambda: self.lesson_repository.get_by_id(lesson_id))

    def _resolve_lesson_id(
        self, metadata_lesson_id: Optional[str], payment_intent_id: Optional[str]
    ) -> Optional[str]:
        """
        Find the lesson an event refers to.

        Order: event metadata, the hold recorded on a lesson, then the
        checkout session that created the hold.
        """
        if metadata_lesson_id:
            return metadata_lesson_id
        if not payment_intent_id:
            return None

        lesson = self.lesson_repository.find_by_payment_intent(payment_intent_id)
        if lesson is not None:
            return lesson.id

        session = self.gateway.find_checkout_session_for_payment_intent(payment_intent_id)
        if session is None:
            return None
        return session.metadata.get("lesson_id") or session.metadata.get("lessonId")

    def _refund_orphan(
        self, event_type: str, lesson_id: str, payment_intent_id: Optional[str]
    ) -> ReconciliationResult:
        """Release a hold whose lesson is gone. Failures are logged, never raised."""
        if not payment_intent_id:
            self.logger.error(
                "Lesson %s not found and %s carries no payment intent to refund",
                lesson_id,
                event_type,
            )
            return ReconciliationResult(ReconcileOutcome.LESSON_MISSING, event_type, lesson_id)

        self.logger.warning(
            "Lesson %s not found for payment %s; refunding orphaned hold",
            lesson_id,
            payment_intent_id,
        )
        try:
            refund = self.gateway.refund(payment_intent_id)
        except Exception as exc:
            self.logger.error(
                "Refund of orphaned hold %s for lesson %s failed: %s",
                payment_intent_id,
                lesson_id,
                exc,
                exc_info=True,
            )
            prometheus_metrics.record_orphan_refund("error")
            return ReconciliationResult(
                ReconcileOutcome.ORPHAN_REFUND_FAILED, event_type, lesson_id
            )

        self.logger.info(
            "Refunded orphaned hold %s for lesson %s (%s)", payment_intent_id, lesson_id, refund.status
        )
        prometheus_metrics.record_orphan_refund("success")
        return ReconciliationResult(ReconcileOutcome.ORPHAN_REFUNDED, event_type, lesson_id)

    def _release_hold_safely(self, payment_intent_id: str, lesson_id: str) -> None:
        try:
            self.gateway.refund(payment_intent_id)
        except Exception as exc:
            self.logger.error(
                "Could not release hold %s for lesson %s: %s",
                payment_intent_id,
                lesson_id,
                exc,
                exc_info=True,
            )
