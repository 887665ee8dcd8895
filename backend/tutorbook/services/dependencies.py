# backend/tutorbook/services/dependencies.py
"""
Dependency injection functions for services.

Usage in routes:
    booking_service: BookingService = Depends(get_booking_service)
"""

from functools import lru_cache
from typing import Callable

from fastapi import Depends
from sqlalchemy.orm import Session

from ..core.config import Settings, settings
from ..database import SessionLocal, get_db
from ..integrations.stripe_gateway import PaymentGateway, build_stripe_gateway
from .booking_service import BookingService
from .capture_service import CaptureService
from .lesson_maintenance_service import LessonMaintenanceService
from .notification_service import NotificationService
from .webhook_ledger_service import WebhookLedgerService
from .webhook_reconciler import WebhookReconciler


def get_settings() -> Settings:
    return settings


@lru_cache(maxsize=1)
def _gateway_singleton() -> PaymentGateway:
    return build_stripe_gateway(settings)


def get_payment_gateway() -> PaymentGateway:
    """One gateway per process, built from the start-up settings."""
    return _gateway_singleton()


def get_notification_service() -> NotificationService:
    return NotificationService()


def get_booking_service(
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    config: Settings = Depends(get_settings),
    notification_service: NotificationService = Depends(get_notification_service),
) -> BookingService:
    return BookingService(db, gateway, config, notification_service)


def get_capture_service(
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    config: Settings = Depends(get_settings),
) -> CaptureService:
    return CaptureService(db, gateway, config)


def get_webhook_reconciler(
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notification_service: NotificationService = Depends(get_notification_service),
) -> WebhookReconciler:
    return WebhookReconciler(db, gateway, notification_service)


def get_session_factory() -> Callable[[], Session]:
    """Session source for work that runs outside the request session."""
    return SessionLocal


def get_lesson_maintenance_service(
    db: Session = Depends(get_db),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
    config: Settings = Depends(get_settings),
) -> LessonMaintenanceService:
    return LessonMaintenanceService(
        db,
        session_factory=session_factory,
        batch_size=config.backfill_batch_size,
        max_concurrency=config.backfill_max_concurrency,
    )


def get_webhook_ledger_service(db: Session = Depends(get_db)) -> WebhookLedgerService:
    return WebhookLedgerService(db)
