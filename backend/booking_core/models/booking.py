# backend/booking_core/models/booking.py
"""
Booking model.

A booking is a buyer's claim on a slot. It is created as ``pending_payment``,
moves to ``confirmed`` when the gateway reports a successful payment, and to
``cancelled`` when the buyer cancels ahead of the lesson. Slot details are
snapshotted at creation so the booking reads the same even if the tutor later
edits availability.
"""

from enum import Enum

from sqlalchemy import CheckConstraint, Column, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import relationship
import ulid

from ..database import Base
from .types import UTCDateTime, utc_now


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    PENDING_PAYMENT = "pending_payment"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class RefundStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))

    buyer_id = Column(String(26), nullable=False, index=True)
    provider_id = Column(String(26), nullable=False, index=True)
    slot_id = Column(String(26), ForeignKey("slots.id", ondelete="RESTRICT"), nullable=False)

    # Snapshot of the slot at booking time
    subject = Column(String(100), nullable=False)
    level = Column(String(50), nullable=False)
    exam_board = Column(String(50), nullable=True)
    start = Column(UTCDateTime(), nullable=False)
    end = Column(UTCDateTime(), nullable=False)

    price = Column(Integer, nullable=False)  # minor units
    currency = Column(String(3), nullable=False)

    status = Column(String(20), nullable=False, default=BookingStatus.PENDING_PAYMENT.value)
    payment_id = Column(String(255), nullable=True, index=True)
    refund_status = Column(String(20), nullable=True)

    created_at = Column(UTCDateTime(), nullable=False, default=utc_now)
    paid_at = Column(UTCDateTime(), nullable=True)
    cancelled_at = Column(UTCDateTime(), nullable=True)

    version = Column(Integer, nullable=False, default=1)

    slot = relationship("Slot")

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending_payment', 'confirmed', 'cancelled')",
            name="ck_bookings_status",
        ),
        CheckConstraint(
            "status != 'confirmed' OR payment_id IS NOT NULL",
            name="ck_bookings_confirmed_has_payment",
        ),
        CheckConstraint("price >= 0", name="ck_bookings_price_non_negative"),
        Index("ix_bookings_slot_status", "slot_id", "status"),
        # At most one confirmed booking per slot
        Index(
            "uq_bookings_confirmed_slot",
            "slot_id",
            unique=True,
            postgresql_where=text("status = 'confirmed'"),
            sqlite_where=text("status = 'confirmed'"),
        ),
    )

    def is_owned_by(self, buyer_id: str) -> bool:
        return self.buyer_id == buyer_id

    @property
    def is_pending_payment(self) -> bool:
        return self.status == BookingStatus.PENDING_PAYMENT.value

    @property
    def is_confirmed(self) -> bool:
        return self.status == BookingStatus.CONFIRMED.value

    def to_notification_payload(self) -> dict:
        """Fields the mail worker needs to render booking emails."""
        return {
            "booking_id": self.id,
            "buyer_id": self.buyer_id,
            "provider_id": self.provider_id,
            "subject": self.subject,
            "level": self.level,
            "exam_board": self.exam_board,
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
            "price": self.price,
            "currency": self.currency,
        }

    def __repr__(self) -> str:
        return f"<Booking {self.id} slot={self.slot_id} status={self.status} v{self.version}>"
