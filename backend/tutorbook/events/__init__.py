from .gateway_events import (
    AuthorizationFailed,
    AuthorizationSucceeded,
    CheckoutCompleted,
    CheckoutExpired,
    GatewayEvent,
    UnhandledEvent,
    parse_gateway_event,
)
from .lesson_events import LessonCancelled, LessonCompleted, LessonRescheduled, LessonScheduled

__all__ = [
    "AuthorizationFailed",
    "AuthorizationSucceeded",
    "CheckoutCompleted",
    "CheckoutExpired",
    "GatewayEvent",
    "LessonCancelled",
    "LessonCompleted",
    "LessonRescheduled",
    "LessonScheduled",
    "UnhandledEvent",
    "parse_gateway_event",
]
