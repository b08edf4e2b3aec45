# backend/booking_core/routes/bookings.py
"""
Buyer-facing booking routes.

Every endpoint requires a bearer token; the caller must own the booking it
acts on. Domain failures are converted to HTTP errors with their typed code
in ``detail.code`` (e.g. ``SLOT_UNAVAILABLE`` with ``detail.details.reason``).
"""

import logging
from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException, Path, Response, status

from ..api.dependencies.services import (
    get_booking_service,
    get_cancellation_service,
    get_checkout_service,
    get_hold_service,
)
from ..auth import get_current_user_id
from ..core.exceptions import DomainException
from ..schemas.booking import (
    BookingCreate,
    BookingResponse,
    CancellationResponse,
    CheckoutSessionResponse,
    HoldResponse,
)
from ..services.booking_service import BookingService
from ..services.cancellation_service import CancellationService
from ..services.checkout_service import CheckoutService
from ..services.hold_service import HoldService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["bookings"])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.post("/bookings", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
    payload: BookingCreate,
    buyer_id: str = Depends(get_current_user_id),
    service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    """Create a pending-payment booking for a slot."""
    try:
        booking = service.create_pending_booking(
            buyer_id, payload.slot_id, exam_board=payload.exam_board
        )
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/slots/{slot_id}/hold", response_model=HoldResponse)
def acquire_hold(
    slot_id: str = Path(..., description="Slot to hold"),
    buyer_id: str = Depends(get_current_user_id),
    service: HoldService = Depends(get_hold_service),
) -> HoldResponse:
    """Place or refresh the caller's hold on a slot."""
    try:
        slot = service.acquire_hold(slot_id, buyer_id)
        return HoldResponse(slot_id=slot.id, hold_by=slot.hold_by, hold_until=slot.hold_until)
    except DomainException as e:
        handle_domain_exception(e)


@router.delete("/slots/{slot_id}/hold", status_code=status.HTTP_204_NO_CONTENT)
def release_hold(
    slot_id: str = Path(..., description="Slot to release"),
    buyer_id: str = Depends(get_current_user_id),
    service: HoldService = Depends(get_hold_service),
) -> Response:
    """Release the caller's hold on a slot. Idempotent."""
    try:
        service.release_hold(slot_id, buyer_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/bookings/{booking_id}/release-hold", status_code=status.HTTP_204_NO_CONTENT)
def release_hold_for_booking(
    booking_id: str = Path(...),
    buyer_id: str = Depends(get_current_user_id),
    service: HoldService = Depends(get_hold_service),
) -> Response:
    """Release the hold behind a pending booking (buyer left the checkout page)."""
    try:
        service.release_hold_for_booking(booking_id, buyer_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/bookings/{booking_id}/checkout", response_model=CheckoutSessionResponse)
def start_checkout(
    booking_id: str = Path(...),
    buyer_id: str = Depends(get_current_user_id),
    service: CheckoutService = Depends(get_checkout_service),
) -> CheckoutSessionResponse:
    """Hold the slot and open a hosted checkout session for a pending booking."""
    try:
        session = service.start_checkout(booking_id, buyer_id)
        return CheckoutSessionResponse(url=session.url, session_id=session.session_id)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/bookings/{booking_id}/cancel", response_model=CancellationResponse)
def cancel_booking(
    booking_id: str = Path(...),
    buyer_id: str = Depends(get_current_user_id),
    service: CancellationService = Depends(get_cancellation_service),
) -> CancellationResponse:
    """Cancel a confirmed booking and refund it."""
    try:
        result = service.cancel(booking_id, buyer_id)
        return CancellationResponse(
            booking_id=result.booking_id, refund_id=result.refund_id, status=result.status
        )
    except DomainException as e:
        handle_domain_exception(e)
