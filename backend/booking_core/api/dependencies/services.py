# backend/booking_core/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

This module provides factory functions that create service instances
with their required dependencies properly injected. Every request gets
fresh services bound to its own session.
"""

from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from ...database import get_db
from ...services.booking_service import BookingService
from ...services.cancellation_service import CancellationService
from ...services.checkout_service import CheckoutService
from ...services.hold_service import HoldService
from ...services.settlement_service import SettlementService
from ...services.stripe_gateway import StripeGateway


@lru_cache(maxsize=1)
def get_stripe_gateway() -> StripeGateway:
    """Process-wide Stripe adapter (holds configuration only, no state)."""
    return StripeGateway()


def get_hold_service(db: Session = Depends(get_db)) -> HoldService:
    return HoldService(db)


def get_booking_service(db: Session = Depends(get_db)) -> BookingService:
    return BookingService(db)


def get_checkout_service(
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_stripe_gateway),
) -> CheckoutService:
    return CheckoutService(db, gateway=gateway)


def get_cancellation_service(
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_stripe_gateway),
) -> CancellationService:
    return CancellationService(db, gateway=gateway)


def get_settlement_service(
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_stripe_gateway),
) -> SettlementService:
    return SettlementService(db, gateway=gateway)
