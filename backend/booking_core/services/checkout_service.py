# backend/booking_core/services/checkout_service.py
"""
Checkout Initiator.

Turns a pending booking into a hosted payment page: secure the slot with a
hold, price the lesson for this buyer, and open a gateway checkout session.
The only state change is the hold itself; the booking is confirmed later by
the settlement webhook. If the gateway call fails the hold is left to expire.
"""

from datetime import datetime
import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..core.exceptions import (
    NotFoundException,
    NotOwnerException,
    WrongStateException,
)
from ..models.booking import Booking, BookingStatus
from ..models.types import utc_now
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .hold_service import HoldService
from .pricing_service import PricingService
from .stripe_gateway import CheckoutSession, StripeGateway

logger = logging.getLogger(__name__)


def checkout_idempotency_key(booking_id: str) -> str:
    return f"checkout-{booking_id}"


class CheckoutService(BaseService):
    def __init__(
        self,
        db: Session,
        gateway: Optional[StripeGateway] = None,
        pricing_service: Optional[PricingService] = None,
        hold_service: Optional[HoldService] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        super().__init__(db)
        self.gateway = gateway or StripeGateway()
        self.pricing_service = pricing_service or PricingService()
        self.hold_service = hold_service or HoldService(db, clock=clock)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.user_repository = RepositoryFactory.create_user_repository(db)

    def _load_owned_pending_booking(self, booking_id: str, buyer_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id)
        if booking is None:
            raise NotFoundException("Booking not found", details={"booking_id": booking_id})
        if not booking.is_owned_by(buyer_id):
            raise NotOwnerException(booking_id)
        if not booking.is_pending_payment:
            raise WrongStateException(
                booking_id, booking.status, BookingStatus.PENDING_PAYMENT.value
            )
        return booking

    @BaseService.measure_operation("start_checkout")
    def start_checkout(self, booking_id: str, buyer_id: str) -> CheckoutSession:
        """
        Begin payment for a pending booking.

        Raises:
            NotFoundException, NotOwnerException, WrongStateException
            SlotUnavailableException: the hold could not be taken
            PriceNotConfiguredException: no tier for this level/discount
            GatewayException: the gateway refused to open a session
        """
        booking = self._load_owned_pending_booking(booking_id, buyer_id)

        self.hold_service.acquire_hold(booking.slot_id, buyer_id)

        buyer = self.user_repository.get_by_id(buyer_id)
        discount_approved = bool(buyer and buyer.has_approved_discount)
        tier = self.pricing_service.resolve_tier(booking.level, discount_approved)

        session = self.gateway.create_checkout_session(
            booking_id=booking.id,
            buyer_id=buyer_id,
            slot_id=booking.slot_id,
            price_id=tier.price_id,
            customer_email=buyer.email if buyer else None,
            idempotency_key=checkout_idempotency_key(booking.id),
        )
        self.logger.info(
            "Checkout started",
            extra={
                "booking_id": booking.id,
                "slot_id": booking.slot_id,
                "tier": tier.key,
                "session_id": session.session_id,
            },
        )
        return session
