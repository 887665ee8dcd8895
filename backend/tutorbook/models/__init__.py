from .lesson import Lesson
from .user import User
from .webhook_event import WebhookEvent

__all__ = ["Lesson", "User", "WebhookEvent"]
