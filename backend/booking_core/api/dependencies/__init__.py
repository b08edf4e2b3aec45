"""FastAPI dependency providers."""

from ...auth import get_current_user_id
from ...database import get_db
from .services import (
    get_booking_service,
    get_cancellation_service,
    get_checkout_service,
    get_hold_service,
    get_settlement_service,
    get_stripe_gateway,
)

__all__ = [
    "get_booking_service",
    "get_cancellation_service",
    "get_checkout_service",
    "get_current_user_id",
    "get_db",
    "get_hold_service",
    "get_settlement_service",
    "get_stripe_gateway",
]
