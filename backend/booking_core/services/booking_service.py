# backend/booking_core/services/booking_service.py
"""
Booking creation.

Records a buyer's intent to take a slot as a ``pending_payment`` booking,
priced for that buyer. No hold is placed here; checkout takes the hold.
"""

from datetime import datetime
import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..core.exceptions import (
    BusinessRuleException,
    NotFoundException,
    SlotUnavailableException,
)
from ..models.booking import Booking, BookingStatus
from ..models.types import utc_now
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .pricing_service import PricingService

logger = logging.getLogger(__name__)


class BookingService(BaseService):
    def __init__(
        self,
        db: Session,
        pricing_service: Optional[PricingService] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        super().__init__(db)
        self.pricing_service = pricing_service or PricingService()
        self.clock = clock
        self.slot_repository = RepositoryFactory.create_slot_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.user_repository = RepositoryFactory.create_user_repository(db)

    @BaseService.measure_operation("create_pending_booking")
    def create_pending_booking(
        self, buyer_id: str, slot_id: str, exam_board: Optional[str] = None
    ) -> Booking:
        """
        Create a pending-payment booking for ``slot_id``.

        Raises:
            NotFoundException: slot does not exist
            SlotUnavailableException: slot booked, or live-held by another buyer
            PriceNotConfiguredException: no price tier for the slot level
        """
        now = self.clock()
        slot = self.slot_repository.get_by_id(slot_id)
        if slot is None:
            raise NotFoundException("Time slot not found", details={"slot_id": slot_id})
        if slot.is_booked:
            raise SlotUnavailableException(slot_id, SlotUnavailableException.SLOT_BOOKED)
        if slot.held_by_other(buyer_id, now):
            raise SlotUnavailableException(slot_id, SlotUnavailableException.HELD_BY_OTHER)

        if exam_board and slot.exam_boards and exam_board not in slot.exam_boards:
            raise BusinessRuleException(
                f"Exam board {exam_board} is not offered for this slot",
                code="EXAM_BOARD_NOT_OFFERED",
                details={"slot_id": slot_id, "exam_boards": list(slot.exam_boards)},
            )

        tier = self.pricing_service.resolve_tier(
            slot.level, self.user_repository.has_approved_discount(buyer_id)
        )

        with self.transaction():
            booking = self.booking_repository.create(
                buyer_id=buyer_id,
                provider_id=slot.provider_id,
                slot_id=slot.id,
                subject=slot.subject,
                level=slot.level,
                exam_board=exam_board,
                start=slot.start,
                end=slot.end,
                price=tier.unit_amount,
                currency=tier.currency.upper(),
                status=BookingStatus.PENDING_PAYMENT.value,
                created_at=now,
            )

        self.logger.info(
            "Pending booking created",
            extra={"booking_id": booking.id, "slot_id": slot.id, "tier": tier.key},
        )
        return booking
