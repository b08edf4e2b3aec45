# backend/booking_core/repositories/user_repository.py
"""Read-only access to the user profile store."""

import logging

from sqlalchemy.orm import Session

from ..models.user import User
from .base_repository import BaseRepository


class UserRepository(BaseRepository[User]):
    def __init__(self, db: Session):
        super().__init__(db, User)
        self.logger = logging.getLogger(__name__)

    def has_approved_discount(self, user_id: str) -> bool:
        """Unknown users are treated as not discount-eligible."""
        user = self.get_by_id(user_id)
        return bool(user and user.has_approved_discount)
