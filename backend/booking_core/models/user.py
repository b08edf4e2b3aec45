# backend/booking_core/models/user.py
"""
User model (read-only collaborator).

Accounts are provisioned and edited by the identity/profile services. The
booking core only reads a buyer's email (for checkout prefill) and their
discount eligibility (for price tier selection).
"""

from enum import Enum

from sqlalchemy import Column, String
import ulid

from ..database import Base
from .types import UTCDateTime, utc_now


class DiscountStatus(str, Enum):
    """Review state of a buyer's discount application."""

    NONE = "none"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class User(Base):
    __tablename__ = "users"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    email = Column(String(255), unique=True, nullable=False, index=True)
    display_name = Column(String(255), nullable=True)
    discount_status = Column(String(20), nullable=False, default=DiscountStatus.NONE.value)
    created_at = Column(UTCDateTime(), nullable=False, default=utc_now)

    @property
    def has_approved_discount(self) -> bool:
        return self.discount_status == DiscountStatus.APPROVED.value

    def __repr__(self) -> str:
        return f"<User {self.id} discount={self.discount_status}>"
