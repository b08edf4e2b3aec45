# backend/booking_core/services/hold_service.py
"""
Hold Manager.

A hold is a time-bounded soft lock a buyer takes on a slot while paying.
Acquisition and release are each a single atomic read-modify-write on the
slot row, so two buyers racing for the same slot are linearised: exactly
one gets the hold and the other gets SlotUnavailableException.

Retry policy for callers: never blindly retry on SlotUnavailable. Retry only
after an explicit release or once the competing hold's TTL has passed.
ConcurrentUpdateException is safe to retry.
"""

from datetime import datetime, timedelta
import logging
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import (
    NotFoundException,
    NotOwnerException,
    SlotUnavailableException,
)
from ..models.slot import Slot
from ..models.types import utc_now
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)


class HoldService(BaseService):
    """Acquires and releases slot holds."""

    def __init__(self, db: Session, clock: Callable[[], datetime] = utc_now):
        super().__init__(db)
        self.clock = clock
        self.slot_repository = RepositoryFactory.create_slot_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)

    @BaseService.measure_operation("acquire_hold")
    def acquire_hold(
        self, slot_id: str, buyer_id: str, ttl: Optional[timedelta] = None
    ) -> Slot:
        """
        Place (or refresh) ``buyer_id``'s hold on a slot.

        Stale holds and the buyer's own hold are overwritten. Safe to retry:
        the same buyer calling again just extends the TTL.

        Raises:
            SlotUnavailableException: reason ``slot_gone``, ``slot_booked`` or
                ``held_by_other``
        """
        ttl = ttl if ttl is not None else timedelta(minutes=settings.hold_ttl_minutes)
        now = self.clock()

        def mutate(slot: Optional[Slot]) -> Dict[str, Any]:
            if slot is None:
                raise SlotUnavailableException(slot_id, SlotUnavailableException.SLOT_GONE)
            if slot.is_booked:
                raise SlotUnavailableException(slot_id, SlotUnavailableException.SLOT_BOOKED)
            if slot.held_by_other(buyer_id, now):
                raise SlotUnavailableException(slot_id, SlotUnavailableException.HELD_BY_OTHER)
            return {"hold_by": buyer_id, "hold_until": now + ttl}

        try:
            with self.transaction():
                slot = self.slot_repository.transact(slot_id, mutate)
        except SlotUnavailableException as exc:
            prometheus_metrics.record_hold_outcome(exc.reason)
            self.logger.info(
                "Hold refused",
                extra={"slot_id": slot_id, "buyer_id": buyer_id, "reason": exc.reason},
            )
            raise

        prometheus_metrics.record_hold_outcome("acquired")
        self.logger.info(
            "Hold acquired",
            extra={"slot_id": slot_id, "buyer_id": buyer_id, "hold_until": slot.hold_until},
        )
        return slot

    @BaseService.measure_operation("release_hold")
    def release_hold(self, slot_id: str, buyer_id: str) -> None:
        """
        Drop ``buyer_id``'s hold on a slot. Idempotent.

        Missing or booked slots are a no-op. Another buyer's live hold is left
        alone; an expired hold is cleared whoever placed it.
        """
        now = self.clock()

        def mutate(slot: Optional[Slot]) -> Optional[Dict[str, Any]]:
            if slot is None or slot.is_booked or slot.hold_by is None:
                return None
            if slot.hold_by == buyer_id or slot.hold_expired(now):
                return {"hold_by": None, "hold_until": None}
            return None

        with self.transaction():
            self.slot_repository.transact(slot_id, mutate)
        self.logger.debug("Hold released", extra={"slot_id": slot_id, "buyer_id": buyer_id})

    @BaseService.measure_operation("release_hold_for_booking")
    def release_hold_for_booking(self, booking_id: str, buyer_id: str) -> None:
        """
        Release the hold behind a pending booking, e.g. when the buyer backs
        out of the hosted checkout page.

        Raises:
            NotFoundException: booking does not exist
            NotOwnerException: booking belongs to someone else
        """
        booking = self.booking_repository.get_by_id(booking_id)
        if booking is None:
            raise NotFoundException("Booking not found", details={"booking_id": booking_id})
        if not booking.is_owned_by(buyer_id):
            raise NotOwnerException(booking_id)
        self.release_hold(booking.slot_id, buyer_id)
