# backend/booking_core/repositories/booking_repository.py
"""
Booking Repository.

Implements data access for bookings:
- Lookup by id (ownership is checked by services)
- Detecting a slot already sold to another confirmed booking
- Finding confirmed bookings whose slot flip is missing (reconciliation)
"""

from datetime import datetime
import logging
from typing import List, Optional

from sqlalchemy import and_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.booking import Booking, BookingStatus
from ..models.slot import Slot
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class BookingRepository(BaseRepository[Booking]):
    """Repository for booking data access."""

    def __init__(self, db: Session):
        """Initialize with Booking model."""
        super().__init__(db, Booking)
        self.logger = logging.getLogger(__name__)

    def get_confirmed_for_slot(
        self, slot_id: str, exclude_booking_id: Optional[str] = None
    ) -> Optional[Booking]:
        """Return the confirmed booking holding ``slot_id``, if any."""
        try:
            stmt = select(Booking).where(
                and_(
                    Booking.slot_id == slot_id,
                    Booking.status == BookingStatus.CONFIRMED.value,
                )
            )
            if exclude_booking_id:
                stmt = stmt.where(Booking.id != exclude_booking_id)
            return self.db.execute(stmt.limit(1)).scalar_one_or_none()
        except SQLAlchemyError as e:
            self.logger.error(f"Error checking confirmed bookings for slot {slot_id}: {str(e)}")
            raise RepositoryException(f"Failed to check slot bookings: {str(e)}")

    def find_confirmed_with_unbooked_slot(self, paid_since: datetime) -> List[Booking]:
        """
        Confirmed bookings paid since ``paid_since`` whose slot is not marked booked.

        These are the "booking confirmed but slot flip missing" states the
        reconciliation task repairs.
        """
        try:
            stmt = (
                select(Booking)
                .join(Slot, Slot.id == Booking.slot_id)
                .where(
                    and_(
                        Booking.status == BookingStatus.CONFIRMED.value,
                        Booking.paid_at >= paid_since,
                        Slot.is_booked.is_(False),
                    )
                )
                .order_by(Booking.paid_at.asc())
            )
            return list(self.db.execute(stmt).scalars().all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error finding unreconciled bookings: {str(e)}")
            raise RepositoryException(f"Failed to find unreconciled bookings: {str(e)}")
