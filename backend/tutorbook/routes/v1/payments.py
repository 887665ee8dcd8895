# backend/tutorbook/routes/v1/payments.py
"""
Payment routes - API v1

Endpoints:
    POST /payments/intents            → Create a payment hold, returns client secret
    POST /payments/checkout-sessions  → Create a hosted checkout session, returns URL
    POST /payments/capture            → Tutor captures the hold of a completed lesson
    POST /payments/webhooks/stripe    → Gateway webhook (signature verified)
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ...auth import get_current_user_optional
from ...core.exceptions import DomainException, WebhookSignatureException
from ...models.user import User
from ...schemas.payment_schemas import (
    CapturedPaymentIntent,
    CapturePaymentRequest,
    CapturePaymentResponse,
    CheckoutSessionResponse,
    CreateCheckoutSessionRequest,
    CreatePaymentIntentRequest,
    PaymentIntentResponse,
    WebhookResponse,
)
from ...services.booking_service import BookingService
from ...services.capture_service import CaptureService
from ...services.dependencies import (
    get_booking_service,
    get_capture_service,
    get_webhook_reconciler,
)
from ...services.webhook_reconciler import WebhookReconciler

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments"])


@router.post("/intents", response_model=PaymentIntentResponse)
async def create_payment_intent(
    payload: CreatePaymentIntentRequest,
    current_user: Optional[User] = Depends(get_current_user_optional),
    booking_service: BookingService = Depends(get_booking_service),
) -> PaymentIntentResponse:
    client_secret = await asyncio.to_thread(
        booking_service.create_payment_intent, current_user, payload.amount, payload.metadata
    )
    return PaymentIntentResponse(client_secret=client_secret)


@router.post("/checkout-sessions", response_model=CheckoutSessionResponse)
async def create_checkout_session(
    payload: CreateCheckoutSessionRequest,
    request: Request,
    booking_service: BookingService = Depends(get_booking_service),
) -> CheckoutSessionResponse:
    origin = request.headers.get("origin")
    url = await asyncio.to_thread(
        booking_service.create_checkout_session, payload, origin=origin
    )
    return CheckoutSessionResponse(url=url)


@router.post("/capture", response_model=CapturePaymentResponse)
async def capture_lesson_payment(
    payload: CapturePaymentRequest,
    current_user: Optional[User] = Depends(get_current_user_optional),
    capture_service: CaptureService = Depends(get_capture_service),
) -> CapturePaymentResponse:
    """
    Capture the payment hold of a completed lesson.

    Only the lesson's tutor may capture, and only with the payment intent
    stored on the lesson.
    """
    result = await asyncio.to_thread(
        capture_service.capture_lesson_payment,
        current_user,
        payload.lesson_id,
        payload.payment_intent_id,
    )
    return CapturePaymentResponse(
        success=True,
        payment_intent=CapturedPaymentIntent(id=result.payment_intent_id, status=result.status),
    )


@router.post("/webhooks/stripe", response_model=WebhookResponse)
async def handle_stripe_webhook(
    request: Request,
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler),
) -> WebhookResponse:
    """
    Handle Stripe webhook events.

    Returns 200 for every verified event, including ones that need no
    action, so the gateway does not retry them. A missing body or signature
    and a signature that does not verify are 400. A webhook secret that is
    not configured is a server fault, not a bad request, and returns 500
    like any processing error, so the gateway redelivers once it is fixed.

    Note:
        This endpoint has no authentication as it uses webhook signature verification
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    try:
        result = await asyncio.to_thread(reconciler.handle, payload, signature)
    except WebhookSignatureException as exc:
        logger.warning("Rejected webhook: %s", exc.message)
        raise exc.to_http_exception()
    except DomainException as exc:
        logger.error("Webhook processing failed: %s", exc.message)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=exc.message)
    except Exception as exc:
        logger.error("Webhook processing failed: %s", exc, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))

    logger.info(
        "Webhook %s processed: %s (lesson %s)", result.event_type, result.outcome.value, result.lesson_id
    )
    return WebhookResponse(received=True)
