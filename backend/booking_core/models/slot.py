# backend/booking_core/models/slot.py
"""
Slot model.

A slot is a bookable time window published by a tutor. Reservation state
lives on the row itself: ``hold_by``/``hold_until`` form a time-bounded soft
lock taken while a buyer is at checkout, and ``is_booked`` is flipped once
payment settles. Every write goes through a version compare-and-set.
"""

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, Column, Index, Integer, String
import ulid

from ..database import Base
from .types import StringArrayType, UTCDateTime, utc_now


class Slot(Base):
    __tablename__ = "slots"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    provider_id = Column(String(26), nullable=False, index=True)

    start = Column(UTCDateTime(), nullable=False)
    end = Column(UTCDateTime(), nullable=False)

    subject = Column(String(100), nullable=False)
    level = Column(String(50), nullable=False)
    exam_boards = Column(StringArrayType(), nullable=False, default=list)

    # Reservation state
    is_booked = Column(Boolean, nullable=False, default=False)
    hold_by = Column(String(26), nullable=True)
    hold_until = Column(UTCDateTime(), nullable=True)

    version = Column(Integer, nullable=False, default=1)
    created_at = Column(UTCDateTime(), nullable=False, default=utc_now)

    __table_args__ = (
        CheckConstraint('"end" > start', name="ck_slots_end_after_start"),
        CheckConstraint(
            "NOT is_booked OR (hold_by IS NULL AND hold_until IS NULL)",
            name="ck_slots_booked_has_no_hold",
        ),
        Index("ix_slots_start_is_booked", "start", "is_booked"),
    )

    def has_live_hold(self, now: datetime) -> bool:
        """True when a hold exists and has not yet expired."""
        return self.hold_by is not None and self.hold_until is not None and self.hold_until > now

    def held_by_other(self, buyer_id: str, now: datetime) -> bool:
        return self.has_live_hold(now) and self.hold_by != buyer_id

    def hold_expired(self, now: datetime) -> bool:
        return self.hold_until is not None and self.hold_until <= now

    def __repr__(self) -> str:
        return (
            f"<Slot {self.id} start={self.start} booked={self.is_booked} "
            f"hold_by={self.hold_by} v{self.version}>"
        )
