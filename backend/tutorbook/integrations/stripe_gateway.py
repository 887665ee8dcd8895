"""
Stripe payment gateway adapter.

All calls pass ``api_key`` explicitly so the ``stripe`` module globals are
never mutated. Stripe errors are translated into domain exceptions here;
services above this layer never import ``stripe``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
from typing import Any, Dict, Mapping, Optional, Protocol

from pydantic import SecretStr
import stripe

from ..core.config import Settings
from ..core.exceptions import (
    PaymentAlreadyFinalizedException,
    PaymentGatewayException,
    WebhookSignatureException,
)

logger = logging.getLogger(__name__)

# Stripe error code for operations on an intent that is no longer capturable.
UNEXPECTED_STATE_CODE = "payment_intent_unexpected_state"


@dataclass(frozen=True)
class StripeConfig:
    """Everything the gateway needs, resolved once at start-up."""

    secret_key: SecretStr
    webhook_secret: SecretStr
    currency: str = "usd"

    @classmethod
    def from_settings(cls, settings: Settings) -> "StripeConfig":
        return cls(
            secret_key=settings.stripe_secret_key,
            webhook_secret=settings.stripe_webhook_secret,
            currency=settings.stripe_currency,
        )


@dataclass(frozen=True)
class AuthorizationHold:
    payment_intent_id: str
    client_secret: str
    amount: int
    status: str


@dataclass(frozen=True)
class CaptureResult:
    payment_intent_id: str
    status: str
    amount_received: Optional[int] = None


@dataclass(frozen=True)
class RefundResult:
    refund_id: str
    status: str


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    url: str
    payment_intent_id: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)


class PaymentGateway(Protocol):
    """Operations the booking core needs from a card processor."""

    def create_authorization(
        self,
        *,
        amount: int,
        metadata: Mapping[str, str],
        currency: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> AuthorizationHold: ...

    def capture(
        self, payment_intent_id: str, *, amount_to_capture: Optional[int] = None
    ) -> CaptureResult: ...

    def refund(self, payment_intent_id: str, *, reason: str = "requested_by_customer") -> RefundResult: ...

    def find_checkout_session_for_payment_intent(
        self, payment_intent_id: str
    ) -> Optional[CheckoutSession]: ...

    def create_checkout_session(
        self,
        *,
        amount: int,
        product_name: str,
        success_url: str,
        cancel_url: str,
        expires_at: int,
        metadata: Mapping[str, str],
        currency: Optional[str] = None,
    ) -> CheckoutSession: ...

    def construct_event(self, payload: bytes, signature: str) -> Dict[str, Any]: ...


def _get(obj: Any, key: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if isinstance(obj, Mapping):
        return obj.get(key, default)
    return getattr(obj, key, default)


def _to_str_dict(raw: Any) -> Dict[str, str]:
    if not raw:
        return {}
    return {str(k): str(v) for k, v in dict(raw).items()}


class StripePaymentGateway:
    """``PaymentGateway`` backed by the Stripe Python SDK."""

    def __init__(self, config: StripeConfig):
        self.config = config
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    def _api_key(self) -> str:
        key = self.config.secret_key.get_secret_value()
        if not key:
            raise PaymentGatewayException("Stripe secret key is not configured")
        return key

    def _request_options(self) -> Dict[str, Any]:
        return {"api_key": self._api_key}

    def create_authorization(
        self,
        *,
        amount: int,
        metadata: Mapping[str, str],
        currency: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> AuthorizationHold:
        """Create a manual-capture PaymentIntent holding ``amount`` minor units."""

        kwargs: Dict[str, Any] = {
            "amount": amount,
            "currency": currency or self.config.currency,
            "capture_method": "manual",
            "automatic_payment_methods": {"enabled": True},
            "metadata": dict(metadata),
            **self._request_options(),
        }
        if idempotency_key:
            kwargs["idempotency_key"] = idempotency_key

        try:
            intent = stripe.PaymentIntent.create(**kwargs)
        except stripe.StripeError as e:
            self.logger.error(f"Stripe error creating payment intent: {str(e)}")
            raise PaymentGatewayException(
                f"Failed to create payment intent: {str(e)}",
                gateway_code=getattr(e, "code", None),
            ) from e

        return AuthorizationHold(
            payment_intent_id=_get(intent, "id"),
            client_secret=_get(intent, "client_secret"),
            amount=int(_get(intent, "amount", amount)),
            status=_get(intent, "status", "requires_payment_method"),
        )

    def capture(
        self, payment_intent_id: str, *, amount_to_capture: Optional[int] = None
    ) -> CaptureResult:
        """
        Capture a held PaymentIntent.

        Raises:
            PaymentAlreadyFinalizedException: the intent was already captured or cancelled
            PaymentGatewayException: any other Stripe failure
        """
        kwargs: Dict[str, Any] = dict(self._request_options())
        if amount_to_capture is not None:
            kwargs["amount_to_capture"] = amount_to_capture

        try:
            intent = stripe.PaymentIntent.capture(payment_intent_id, **kwargs)
        except stripe.StripeError as e:
            if getattr(e, "code", None) == UNEXPECTED_STATE_CODE:
                self.logger.info(
                    "Capture rejected, payment intent %s already finalized", payment_intent_id
                )
                raise PaymentAlreadyFinalizedException(
                    payment_intent_id, getattr(e, "user_message", None) or str(e)
                ) from e
            self.logger.error(f"Stripe error capturing payment intent: {str(e)}")
            raise PaymentGatewayException(
                f"Failed to capture payment: {str(e)}", gateway_code=getattr(e, "code", None)
            ) from e

        amount_received = _get(intent, "amount_received")
        return CaptureResult(
            payment_intent_id=_get(intent, "id", payment_intent_id),
            status=_get(intent, "status", "succeeded"),
            amount_received=int(amount_received) if amount_received is not None else None,
        )

    def refund(self, payment_intent_id: str, *, reason: str = "requested_by_customer") -> RefundResult:
        """
        Return the customer's money for ``payment_intent_id``.

        An uncaptured hold is released by cancelling the intent; only an
        intent that was already captured gets a real refund.
        """
        try:
            intent = stripe.PaymentIntent.cancel(
                payment_intent_id, cancellation_reason="abandoned", **self._request_options()
            )
            return RefundResult(
                refund_id=_get(intent, "id", payment_intent_id),
                status=_get(intent, "status", "canceled"),
            )
        except stripe.StripeError as e:
            if getattr(e, "code", None) != UNEXPECTED_STATE_CODE:
                self.logger.error(
                    f"Stripe error releasing payment intent {payment_intent_id}: {str(e)}"
                )
                raise PaymentGatewayException(
                    f"Failed to release payment: {str(e)}", gateway_code=getattr(e, "code", None)
                ) from e

        try:
            refund = stripe.Refund.create(
                payment_intent=payment_intent_id,
                reason=reason,
                **self._request_options(),
            )
        except stripe.StripeError as e:
            self.logger.error(f"Stripe error refunding payment intent {payment_intent_id}: {str(e)}")
            raise PaymentGatewayException(
                f"Failed to refund payment: {str(e)}", gateway_code=getattr(e, "code", None)
            ) from e
        return RefundResult(refund_id=_get(refund, "id"), status=_get(refund, "status", "pending"))

    def find_checkout_session_for_payment_intent(
        self, payment_intent_id: str
    ) -> Optional[CheckoutSession]:
        """Look up the checkout session that produced ``payment_intent_id``, if any."""

        try:
            sessions = stripe.checkout.Session.list(
                payment_intent=payment_intent_id, limit=1, **self._request_options()
            )
        except stripe.StripeError as e:
            self.logger.error(f"Stripe error listing checkout sessions: {str(e)}")
            raise PaymentGatewayException(
                f"Failed to look up checkout session: {str(e)}",
                gateway_code=getattr(e, "code", None),
            ) from e

        data = _get(sessions, "data") or []
        if not data:
            return None
        session = data[0]
        return CheckoutSession(
            session_id=_get(session, "id"),
            url=_get(session, "url") or "",
            payment_intent_id=payment_intent_id,
            metadata=_to_str_dict(_get(session, "metadata")),
        )

    def create_checkout_session(
        self,
        *,
        amount: int,
        product_name: str,
        success_url: str,
        cancel_url: str,
        expires_at: int,
        metadata: Mapping[str, str],
        currency: Optional[str] = None,
    ) -> CheckoutSession:
        """Create a hosted, manual-capture checkout session for one lesson."""

        try:
            session = stripe.checkout.Session.create(
                mode="payment",
                line_items=[
                    {
                        "price_data": {
                            "currency": currency or self.config.currency,
                            "product_data": {"name": product_name},
                            "unit_amount": amount,
                        },
                        "quantity": 1,
                    }
                ],
                payment_intent_data={
                    "capture_method": "manual",
                    "metadata": dict(metadata),
                },
                metadata=dict(metadata),
                success_url=success_url,
                cancel_url=cancel_url,
                expires_at=expires_at,
                **self._request_options(),
            )
        except stripe.StripeError as e:
            self.logger.error(f"Stripe error creating checkout session: {str(e)}")
            raise PaymentGatewayException(
                f"Failed to create checkout session: {str(e)}",
                gateway_code=getattr(e, "code", None),
            ) from e

        return CheckoutSession(
            session_id=_get(session, "id"),
            url=_get(session, "url") or "",
            payment_intent_id=_get(session, "payment_intent"),
            metadata=_to_str_dict(_get(session, "metadata")),
        )

    def construct_event(self, payload: bytes, signature: str) -> Dict[str, Any]:
        """
        Verify the webhook signature and return the event payload as a dict.

        Raises:
            WebhookSignatureException: verification failed
            PaymentGatewayException: the webhook secret is not configured
        """
        secret = self.config.webhook_secret.get_secret_value()
        if not secret:
            raise PaymentGatewayException("Webhook secret not configured")

        try:
            stripe.Webhook.construct_event(payload, signature, secret)
        except stripe.SignatureVerificationError as e:
            self.logger.warning("Invalid webhook signature")
            raise WebhookSignatureException(f"Webhook signature verification failed: {str(e)}") from e
        except ValueError as e:
            self.logger.warning("Webhook payload is not valid JSON")
            raise WebhookSignatureException("Invalid webhook payload") from e

        return json.loads(payload)


def build_stripe_gateway(settings: Settings) -> StripePaymentGateway:
    return StripePaymentGateway(StripeConfig.from_settings(settings))
