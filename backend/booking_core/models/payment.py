"""
Payment records.

One row per settled gateway payment, keyed by the gateway's payment id. The
primary key is the idempotency guard for settlement: a replayed webhook finds
the row already present and has no further effect. Rows are immutable apart
from the refund columns.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from ..database import Base
from .types import UTCDateTime, utc_now


class PaymentStatus(str, Enum):
    SUCCEEDED = "succeeded"


class Payment(Base):
    """A captured buyer payment for one booking."""

    __tablename__ = "payments"

    payment_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    booking_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("bookings.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    buyer_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.SUCCEEDED.value
    )
    refund_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utc_now)

    def __repr__(self) -> str:
        return f"<Payment {self.payment_id} booking={self.booking_id} refund={self.refund_status}>"
