from .base_repository import BaseRepository, IRepository
from .factory import RepositoryFactory
from .lesson_repository import LessonRepository
from .user_repository import UserRepository
from .webhook_event_repository import WebhookEventRepository

__all__ = [
    "BaseRepository",
    "IRepository",
    "LessonRepository",
    "RepositoryFactory",
    "UserRepository",
    "WebhookEventRepository",
]
