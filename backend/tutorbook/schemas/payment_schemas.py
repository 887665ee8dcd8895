"""
Payment-related Pydantic schemas for TutorBook.

Request and response models for payment holds, hosted checkout, capture
and the gateway webhook.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import Field

from ._strict_base import CamelModel, StrictModel, StrictRequestModel

# ========== Request Models ==========


class CreatePaymentIntentRequest(CamelModel):
    """Generic hold request used by the booking widget."""

    amount: int = Field(..., description="Amount in minor currency units")
    metadata: Dict[str, str] = Field(default_factory=dict)


class CreateCheckoutSessionRequest(StrictRequestModel):
    """
    Hosted checkout request.

    Every field except the redirect URLs is required; presence is checked by
    the service so a missing field is reported as a 400 like other
    validation failures of this endpoint.
    """

    amount: Optional[int] = None
    lesson_id: Optional[str] = None
    tutor_id: Optional[str] = None
    student_id: Optional[str] = None
    course_code: Optional[str] = None
    lesson_date: Optional[str] = None
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class CapturePaymentRequest(CamelModel):
    lesson_id: Optional[str] = None
    payment_intent_id: Optional[str] = None


# ========== Response Models ==========


class PaymentIntentResponse(CamelModel):
    client_secret: str


class CheckoutSessionResponse(StrictModel):
    url: str


class CapturedPaymentIntent(StrictModel):
    id: str
    status: str


class CapturePaymentResponse(CamelModel):
    success: bool
    payment_intent: CapturedPaymentIntent


class WebhookResponse(StrictModel):
    received: bool = True


class WebhookEventResponse(CamelModel):
    id: str
    source: str
    event_id: str
    event_type: str
    status: str
    outcome: Optional[str] = None
    lesson_id: Optional[str] = None
    processing_error: Optional[str] = None
    delivery_count: int
    received_at: datetime
    processed_at: Optional[datetime] = None


class WebhookEventListResponse(StrictModel):
    events: List[WebhookEventResponse]
