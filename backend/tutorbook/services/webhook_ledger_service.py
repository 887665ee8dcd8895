"""Service for recording inbound gateway webhook events."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models.webhook_event import WebhookEvent
from ..repositories.factory import RepositoryFactory
from .base import BaseService

_MAX_ERROR_LENGTH = 2000


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class WebhookLedgerService(BaseService):
    """
    Audit trail of gateway events.

    The ledger does not decide whether an event is applied; redeliveries are
    re-run against the lesson state guards, which turn them into no-ops.
    """

    def __init__(self, db: Session) -> None:
        super().__init__(db)
        self.repository = RepositoryFactory.create_webhook_event_repository(db)

    def log_received(
        self,
        *,
        event_id: str,
        event_type: str,
        payload: Optional[dict[str, Any]] = None,
        source: str = "stripe",
    ) -> WebhookEvent:
        """Record a verified event before processing; a redelivery bumps its counter."""
        with self.transaction():
            existing = self.repository.get_by_event_id(event_id, source=source)
            if existing:
                existing.delivery_count = (existing.delivery_count or 0) + 1
                existing.status = "received"
                self.db.flush()
                return existing

        try:
            created = self.repository.create(
                source=source,
                event_id=event_id,
                event_type=event_type or "unknown",
                payload=payload,
                status="received",
                received_at=_now_utc(),
            )
            self.db.commit()
            return created
        except IntegrityError:
            # A concurrent delivery inserted the row first.
            self.db.rollback()
            with self.transaction():
                existing = self.repository.get_by_event_id(event_id, source=source)
                assert existing is not None
                existing.delivery_count = (existing.delivery_count or 0) + 1
                return existing

    def mark_processed(
        self,
        event: WebhookEvent,
        *,
        outcome: str,
        lesson_id: Optional[str] = None,
        ignored: bool = False,
    ) -> None:
        with self.transaction():
            event.status = "ignored" if ignored else "processed"
            event.outcome = outcome
            event.lesson_id = lesson_id
            event.processing_error = None
            event.processed_at = _now_utc()

    def mark_failed(self, event: WebhookEvent, error: str) -> None:
        with self.transaction():
            event.status = "failed"
            event.processing_error = error[:_MAX_ERROR_LENGTH]
            event.processed_at = _now_utc()

    def list_events(self, *, status: Optional[str] = None, limit: int = 50) -> list[WebhookEvent]:
        return self.repository.list_recent(status=status, limit=limit)
