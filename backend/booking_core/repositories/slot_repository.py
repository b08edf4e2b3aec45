# backend/booking_core/repositories/slot_repository.py
"""
Slot Repository.

Data access for bookable slots. Reservation state changes go through
``transact`` (inherited) or the conditional sweep update below; plain
attribute assignment on a loaded Slot is never committed by this core.
"""

from datetime import datetime
import logging
from typing import List

from sqlalchemy import and_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.slot import Slot
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class SlotRepository(BaseRepository[Slot]):
    """Repository for slot reads and reservation writes."""

    def __init__(self, db: Session):
        super().__init__(db, Slot)
        self.logger = logging.getLogger(__name__)

    def find_expired_holds(
        self, window_start: datetime, window_end: datetime, now: datetime
    ) -> List[Slot]:
        """
        Unbooked slots starting in [window_start, window_end] whose hold has lapsed.

        Read without locks; each candidate is re-checked by ``clear_expired_hold``.
        """
        try:
            stmt = (
                select(Slot)
                .where(
                    and_(
                        Slot.start >= window_start,
                        Slot.start <= window_end,
                        Slot.is_booked.is_(False),
                        Slot.hold_until.is_not(None),
                        Slot.hold_until <= now,
                    )
                )
                .order_by(Slot.start.asc())
            )
            return list(self.db.execute(stmt).scalars().all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error finding expired holds: {str(e)}")
            raise RepositoryException(f"Failed to find expired holds: {str(e)}")

    def clear_expired_hold(self, slot_id: str, now: datetime) -> bool:
        """
        Clear a lapsed hold, re-checking the conditions in the same statement.

        A slot that was booked, or re-held with a fresh TTL, since it was read
        does not match and is left untouched.

        Returns:
            True if the hold was cleared
        """
        stmt = (
            update(Slot)
            .where(
                and_(
                    Slot.id == slot_id,
                    Slot.is_booked.is_(False),
                    Slot.hold_until.is_not(None),
                    Slot.hold_until <= now,
                )
            )
            .values(hold_by=None, hold_until=None, version=Slot.version + 1)
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
        except SQLAlchemyError as e:
            self.logger.error(f"Error clearing hold on slot {slot_id}: {str(e)}")
            raise RepositoryException(f"Failed to clear hold: {str(e)}")
        return result.rowcount == 1
