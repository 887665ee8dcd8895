"""
Payment gateway events, parsed from verified webhook payloads.

``GatewayEvent`` is a closed union: the reconciler handles each member
explicitly and everything it does not care about arrives as
``UnhandledEvent``.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Mapping, Optional, Union

# Both spellings appear in metadata written by older clients.
_LESSON_ID_KEYS = ("lesson_id", "lessonId")


def _lesson_id_from(metadata: Mapping[str, Any]) -> Optional[str]:
    for key in _LESSON_ID_KEYS:
        value = metadata.get(key)
        if value:
            return str(value)
    return None


@dataclass(frozen=True)
class AuthorizationSucceeded:
    """The payment hold was authorized."""

    event_id: str
    event_type: str
    payment_intent_id: str
    amount: Optional[int] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def lesson_id(self) -> Optional[str]:
        return _lesson_id_from(self.metadata)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AuthorizationFailed:
    """The payment hold was declined."""

    event_id: str
    event_type: str
    payment_intent_id: str
    error_message: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def lesson_id(self) -> Optional[str]:
        return _lesson_id_from(self.metadata)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CheckoutCompleted:
    """A hosted checkout session finished and its payment hold exists."""

    event_id: str
    event_type: str
    session_id: str
    payment_intent_id: Optional[str] = None
    amount: Optional[int] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def lesson_id(self) -> Optional[str]:
        return _lesson_id_from(self.metadata)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CheckoutExpired:
    """A hosted checkout session lapsed without payment."""

    event_id: str
    event_type: str
    session_id: str
    payment_intent_id: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def lesson_id(self) -> Optional[str]:
        return _lesson_id_from(self.metadata)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class UnhandledEvent:
    event_id: str
    event_type: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


GatewayEvent = Union[
    AuthorizationSucceeded,
    AuthorizationFailed,
    CheckoutCompleted,
    CheckoutExpired,
    UnhandledEvent,
]

AUTHORIZATION_SUCCEEDED_TYPES = frozenset(
    {"payment_intent.succeeded", "payment_intent.amount_capturable_updated"}
)


def _metadata(obj: Mapping[str, Any]) -> Dict[str, str]:
    raw = obj.get("metadata") or {}
    return {str(k): str(v) for k, v in dict(raw).items() if v is not None}


def _optional_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _intent_id(value: Any) -> Optional[str]:
    # Expanded objects carry the id under "id"; collapsed ones are the id itself.
    if isinstance(value, Mapping):
        return value.get("id")
    return str(value) if value else None


def parse_gateway_event(payload: Mapping[str, Any]) -> GatewayEvent:
    """Map a verified Stripe event payload onto the gateway event union."""

    event_id = str(payload.get("id") or "")
    event_type = str(payload.get("type") or "")
    obj: Mapping[str, Any] = (payload.get("data") or {}).get("object") or {}

    if event_type in AUTHORIZATION_SUCCEEDED_TYPES:
        amount = _optional_int(obj.get("amount_capturable")) or _optional_int(obj.get("amount"))
        return AuthorizationSucceeded(
            event_id=event_id,
            event_type=event_type,
            payment_intent_id=str(obj.get("id") or ""),
            amount=amount,
            metadata=_metadata(obj),
        )

    if event_type == "payment_intent.payment_failed":
        last_error = obj.get("last_payment_error") or {}
        return AuthorizationFailed(
            event_id=event_id,
            event_type=event_type,
            payment_intent_id=str(obj.get("id") or ""),
            error_message=last_error.get("message") if isinstance(last_error, Mapping) else None,
            metadata=_metadata(obj),
        )

    if event_type == "checkout.session.completed":
        return CheckoutCompleted(
            event_id=event_id,
            event_type=event_type,
            session_id=str(obj.get("id") or ""),
            payment_intent_id=_intent_id(obj.get("payment_intent")),
            amount=_optional_int(obj.get("amount_total")),
            metadata=_metadata(obj),
        )

    if event_type == "checkout.session.expired":
        return CheckoutExpired(
            event_id=event_id,
            event_type=event_type,
            session_id=str(obj.get("id") or ""),
            payment_intent_id=_intent_id(obj.get("payment_intent")),
            metadata=_metadata(obj),
        )

    return UnhandledEvent(event_id=event_id, event_type=event_type)
