# backend/booking_core/models/__init__.py
"""
Database models for the booking core.

Importing this package registers every table on ``Base.metadata``.
"""

from .booking import Booking, BookingStatus, RefundStatus
from .event_outbox import EventOutbox, EventOutboxStatus, NotificationEvent
from .payment import Payment, PaymentStatus
from .slot import Slot
from .user import DiscountStatus, User

__all__ = [
    "Booking",
    "BookingStatus",
    "DiscountStatus",
    "EventOutbox",
    "EventOutboxStatus",
    "NotificationEvent",
    "Payment",
    "PaymentStatus",
    "RefundStatus",
    "Slot",
    "User",
]
