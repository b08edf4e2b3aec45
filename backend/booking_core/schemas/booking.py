# backend/booking_core/schemas/booking.py
"""Request/response DTOs for the buyer-facing booking endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import ConfigDict, Field

from ._strict_base import StrictModel, StrictRequestModel


class BookingCreate(StrictRequestModel):
    slot_id: str = Field(..., min_length=1, description="Slot the buyer wants to book")
    exam_board: Optional[str] = Field(None, max_length=50)


class BookingResponse(StrictModel):
    model_config = ConfigDict(from_attributes=True, extra="forbid")

    id: str
    buyer_id: str
    provider_id: str
    slot_id: str
    subject: str
    level: str
    exam_board: Optional[str] = None
    start: datetime
    end: datetime
    price: int = Field(..., description="Amount in minor units")
    currency: str
    status: str
    payment_id: Optional[str] = None
    refund_status: Optional[str] = None
    created_at: datetime
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class HoldResponse(StrictModel):
    slot_id: str
    hold_by: str
    hold_until: datetime


class CheckoutSessionResponse(StrictModel):
    url: str = Field(..., description="Hosted checkout page to redirect the buyer to")
    session_id: str


class CancellationResponse(StrictModel):
    booking_id: str
    refund_id: str
    status: str
