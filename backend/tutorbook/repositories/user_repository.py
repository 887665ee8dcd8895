"""User lookups needed by the booking core."""

from typing import Optional

from sqlalchemy.orm import Session

from ..core.enums import RoleName
from ..models.user import User
from .base_repository import BaseRepository


class UserRepository(BaseRepository[User]):
    def __init__(self, db: Session):
        super().__init__(db, User)

    def get_tutor(self, user_id: str) -> Optional[User]:
        return self.find_one_by(id=user_id, role=RoleName.TUTOR.value)
