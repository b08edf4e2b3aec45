# backend/tests/services/test_checkout_service.py
"""
Tests for CheckoutService.start_checkout.

Stripe is mocked at the SDK boundary; the real StripeGateway adapter runs.
"""

from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
import stripe

from booking_core.core.exceptions import (
    GatewayException,
    NotFoundException,
    NotOwnerException,
    PriceNotConfiguredException,
    SlotUnavailableException,
    WrongStateException,
)
from booking_core.models.booking import BookingStatus
from booking_core.models.slot import Slot
from booking_core.models.user import DiscountStatus
from booking_core.services.checkout_service import CheckoutService


@pytest.fixture
def checkout_service(db, gateway, clock) -> CheckoutService:
    return CheckoutService(db, gateway=gateway, clock=clock)


@pytest.fixture
def mock_session_create():
    with patch("stripe.checkout.Session.create") as mock_create:
        mock_create.return_value = MagicMock(
            id="cs_test_123", url="https://checkout.stripe.com/c/pay/cs_test_123"
        )
        yield mock_create


class TestStartCheckout:
    def test_holds_slot_and_opens_session(
        self, db, checkout_service, mock_session_create, slot, buyer, make_booking, clock
    ):
        booking = make_booking(slot, buyer)

        session = checkout_service.start_checkout(booking.id, buyer.id)

        assert session.session_id == "cs_test_123"
        assert session.url == "https://checkout.stripe.com/c/pay/cs_test_123"

        db.expire_all()
        row = db.get(Slot, slot.id)
        assert row.hold_by == buyer.id
        assert row.hold_until == clock.now + timedelta(minutes=15)

        kwargs = mock_session_create.call_args.kwargs
        assert kwargs["idempotency_key"] == f"checkout-{booking.id}"
        assert kwargs["mode"] == "payment"
        assert kwargs["line_items"] == [{"price": "price_gcse_standard", "quantity": 1}]
        assert kwargs["metadata"] == {
            "booking_id": booking.id,
            "buyer_id": buyer.id,
            "slot_id": slot.id,
        }
        assert kwargs["customer_email"] == buyer.email
        assert kwargs["success_url"] == (
            f"https://tutors.example.com/booking-success?bookingId={booking.id}"
        )
        assert kwargs["cancel_url"] == (
            f"https://tutors.example.com/booking?canceled=1&bookingId={booking.id}"
        )

    def test_discount_buyer_uses_discount_price(
        self, checkout_service, mock_session_create, slot, make_user, make_booking
    ):
        discounted = make_user(discount_status=DiscountStatus.APPROVED.value)
        booking = make_booking(slot, discounted)

        checkout_service.start_checkout(booking.id, discounted.id)

        line_items = mock_session_create.call_args.kwargs["line_items"]
        assert line_items == [{"price": "price_gcse_discount", "quantity": 1}]

    def test_retry_by_same_buyer_refreshes_hold(
        self, db, checkout_service, mock_session_create, slot, buyer, make_booking, clock
    ):
        booking = make_booking(slot, buyer)
        checkout_service.start_checkout(booking.id, buyer.id)
        clock.advance(timedelta(minutes=5))

        checkout_service.start_checkout(booking.id, buyer.id)

        db.expire_all()
        assert db.get(Slot, slot.id).hold_until == clock.now + timedelta(minutes=15)
        assert mock_session_create.call_count == 2

    def test_slot_held_by_other_buyer(
        self, checkout_service, mock_session_create, slot, buyer, other_buyer, make_booking
    ):
        mine = make_booking(slot, buyer)
        theirs = make_booking(slot, other_buyer)
        checkout_service.start_checkout(theirs.id, other_buyer.id)

        with pytest.raises(SlotUnavailableException) as exc_info:
            checkout_service.start_checkout(mine.id, buyer.id)

        assert exc_info.value.reason == SlotUnavailableException.HELD_BY_OTHER
        assert mock_session_create.call_count == 1

    def test_not_owner(self, checkout_service, mock_session_create, slot, buyer, other_buyer, make_booking):
        booking = make_booking(slot, buyer)

        with pytest.raises(NotOwnerException):
            checkout_service.start_checkout(booking.id, other_buyer.id)

        mock_session_create.assert_not_called()

    def test_missing_booking(self, checkout_service, buyer):
        with pytest.raises(NotFoundException):
            checkout_service.start_checkout("no-such-booking", buyer.id)

    def test_confirmed_booking_is_wrong_state(
        self, checkout_service, mock_session_create, slot, buyer, make_booking
    ):
        booking = make_booking(
            slot, buyer, status=BookingStatus.CONFIRMED.value, payment_id="pi_done"
        )

        with pytest.raises(WrongStateException) as exc_info:
            checkout_service.start_checkout(booking.id, buyer.id)

        assert exc_info.value.details["status"] == BookingStatus.CONFIRMED.value
        mock_session_create.assert_not_called()

    def test_price_not_configured(
        self, db, checkout_service, mock_session_create, make_slot, make_user, make_booking
    ):
        discounted = make_user(discount_status=DiscountStatus.APPROVED.value)
        alevel = make_slot(level="A-Level")
        booking = make_booking(alevel, discounted)

        with pytest.raises(PriceNotConfiguredException):
            checkout_service.start_checkout(booking.id, discounted.id)

        mock_session_create.assert_not_called()

    def test_gateway_failure_leaves_hold_to_expire(
        self, db, checkout_service, slot, buyer, make_booking
    ):
        booking = make_booking(slot, buyer)

        with patch(
            "stripe.checkout.Session.create",
            side_effect=stripe.APIConnectionError("network down"),
        ):
            with pytest.raises(GatewayException) as exc_info:
                checkout_service.start_checkout(booking.id, buyer.id)

        assert exc_info.value.status_code == 502
        db.expire_all()
        assert db.get(Slot, slot.id).hold_by == buyer.id
