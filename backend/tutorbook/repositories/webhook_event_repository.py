"""Repository for the inbound webhook ledger."""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models.webhook_event import WebhookEvent
from .base_repository import BaseRepository


class WebhookEventRepository(BaseRepository[WebhookEvent]):
    def __init__(self, db: Session):
        super().__init__(db, WebhookEvent)

    def get_by_event_id(self, event_id: str, source: str = "stripe") -> Optional[WebhookEvent]:
        stmt = select(WebhookEvent).where(
            WebhookEvent.source == source, WebhookEvent.event_id == event_id
        )
        return self.db.execute(stmt).scalars().first()

    def list_recent(
        self,
        *,
        status: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: int = 50,
    ) -> List[WebhookEvent]:
        stmt = select(WebhookEvent)
        if status:
            stmt = stmt.where(WebhookEvent.status == status)
        if since:
            stmt = stmt.where(WebhookEvent.received_at >= since)
        stmt = stmt.order_by(WebhookEvent.received_at.desc()).limit(limit)
        return list(self.db.execute(stmt).scalars().all())
