"""Admin maintenance routes - API v1."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from ...auth import get_current_user
from ...core.exceptions import ForbiddenException
from ...models.user import User
from ...schemas.lesson import BackfillResponse
from ...schemas.payment_schemas import WebhookEventListResponse, WebhookEventResponse
from ...services.dependencies import get_lesson_maintenance_service, get_webhook_ledger_service
from ...services.lesson_maintenance_service import LessonMaintenanceService
from ...services.webhook_ledger_service import WebhookLedgerService

router = APIRouter(tags=["admin"])


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_admin:
        raise ForbiddenException("You must be an admin to perform this action")
    return current_user


@router.post("/lessons/backfill-created-at", response_model=BackfillResponse)
async def backfill_lesson_created_at(
    current_user: User = Depends(get_current_user),
    maintenance_service: LessonMaintenanceService = Depends(get_lesson_maintenance_service),
) -> BackfillResponse:
    summary = await maintenance_service.backfill_created_at(current_user)
    return BackfillResponse(
        updated=summary.updated, failed=summary.failed, failed_ids=summary.failed_ids
    )


@router.get("/webhook-events", response_model=WebhookEventListResponse)
def list_webhook_events(
    status: Optional[str] = Query(default=None, description="received, processed, ignored or failed"),
    limit: int = Query(default=50, ge=1, le=200),
    _: User = Depends(require_admin),
    ledger: WebhookLedgerService = Depends(get_webhook_ledger_service),
) -> WebhookEventListResponse:
    """Recent gateway deliveries, newest first."""
    events = ledger.list_events(status=status, limit=limit)
    return WebhookEventListResponse(
        events=[WebhookEventResponse.model_validate(event) for event in events]
    )
