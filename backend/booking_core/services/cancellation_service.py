# backend/booking_core/services/cancellation_service.py
"""
Cancellation/Refund Handler.

A confirmed booking may be cancelled by its buyer up to the cancellation
window before the lesson (24 hours by default). The full payment is refunded
first; only once the gateway has accepted the refund is the booking marked
cancelled and the slot reopened to every buyer.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import (
    NotFoundException,
    NotOwnerException,
    TooLateException,
    WrongStateException,
)
from ..models.booking import Booking, BookingStatus, RefundStatus
from ..models.slot import Slot
from ..models.types import utc_now
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .notification_service import NotificationService
from .stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CancellationResult:
    booking_id: str
    refund_id: str
    status: str = BookingStatus.CANCELLED.value


def refund_idempotency_key(booking_id: str) -> str:
    return f"refund-{booking_id}"


class CancellationService(BaseService):
    def __init__(
        self,
        db: Session,
        gateway: Optional[StripeGateway] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        super().__init__(db)
        self.gateway = gateway or StripeGateway()
        self.clock = clock
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.slot_repository = RepositoryFactory.create_slot_repository(db)
        self.notification_service = NotificationService(db)

    def _load_cancellable_booking(self, booking_id: str, buyer_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id)
        if booking is None:
            raise NotFoundException("Booking not found", details={"booking_id": booking_id})
        if not booking.is_owned_by(buyer_id):
            raise NotOwnerException(booking_id)
        if not booking.is_confirmed:
            raise WrongStateException(booking_id, booking.status, BookingStatus.CONFIRMED.value)
        return booking

    @BaseService.measure_operation("cancel_booking")
    def cancel(self, booking_id: str, buyer_id: str) -> CancellationResult:
        """
        Cancel a confirmed booking and refund it in full.

        Raises:
            NotFoundException, NotOwnerException
            WrongStateException: only confirmed bookings can be cancelled
            TooLateException: the lesson starts inside the cancellation window
            GatewayException: the refund was refused; the booking stays confirmed
        """
        booking = self._load_cancellable_booking(booking_id, buyer_id)

        slot = self.slot_repository.get_by_id(booking.slot_id)
        start = slot.start if slot is not None else booking.start
        now = self.clock()
        window = timedelta(hours=settings.cancellation_window_hours)
        if start - now < window:
            raise TooLateException(
                settings.cancellation_window_hours, (start - now).total_seconds() / 3600
            )

        refund_id = self.gateway.create_refund(
            payment_id=booking.payment_id,
            idempotency_key=refund_idempotency_key(booking.id),
        )

        def mark_cancelled(row: Optional[Booking]) -> Dict[str, Any]:
            if row is None or not row.is_confirmed:
                raise WrongStateException(
                    booking_id,
                    row.status if row else "missing",
                    BookingStatus.CONFIRMED.value,
                )
            return {
                "status": BookingStatus.CANCELLED.value,
                "refund_status": RefundStatus.SUCCEEDED.value,
                "cancelled_at": now,
            }

        def reopen_slot(row: Optional[Slot]) -> Optional[Dict[str, Any]]:
            if row is None:
                return None
            return {"is_booked": False, "hold_by": None, "hold_until": None}

        with self.transaction():
            booking = self.booking_repository.transact(booking.id, mark_cancelled)
            self.slot_repository.transact(booking.slot_id, reopen_slot)
            self.notification_service.enqueue_booking_cancelled(booking)

        self.logger.info(
            "Booking cancelled",
            extra={"booking_id": booking.id, "slot_id": booking.slot_id, "refund_id": refund_id},
        )
        return CancellationResult(booking_id=booking.id, refund_id=refund_id)
