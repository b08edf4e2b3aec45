# backend/tests/routes/test_stripe_webhook_routes.py
"""
Tests for POST /webhooks/stripe.

Payloads are signed with the test endpoint secret so the real Stripe
verification runs; only the conflict refund task is mocked.
"""

import json
from unittest.mock import patch

import pytest

from booking_core.models.booking import Booking, BookingStatus, RefundStatus
from booking_core.models.payment import Payment
from booking_core.models.slot import Slot
from tests.helpers.stripe_events import (
    WEBHOOK_SECRET,
    charge_refunded_event,
    checkout_completed_event,
    signed_body,
)

WEBHOOK_URL = "/webhooks/stripe"


@pytest.fixture
def mock_refund_task():
    with patch("booking_core.routes.stripe_webhooks.refund_conflicting_payment") as task:
        yield task


def _post(client, event, secret=WEBHOOK_SECRET):
    payload, headers = signed_body(event, secret)
    return client.post(WEBHOOK_URL, content=payload, headers=headers)


def _reload(db, model, key):
    db.expire_all()
    return db.get(model, key)


class TestSignature:
    def test_missing_signature(self, client, slot, buyer, make_booking):
        payload = json.dumps(checkout_completed_event(make_booking(slot, buyer))).encode()

        response = client.post(WEBHOOK_URL, content=payload)

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "INVALID_SIGNATURE"

    def test_bad_signature_processes_nothing(self, client, db, slot, buyer, make_booking):
        booking = make_booking(slot, buyer)

        response = _post(client, checkout_completed_event(booking), secret="whsec_wrong")

        assert response.status_code == 400
        assert _reload(db, Booking, booking.id).status == BookingStatus.PENDING_PAYMENT.value


class TestCheckoutCompleted:
    def test_confirms_booking(self, client, db, slot, buyer, make_booking, mock_refund_task):
        booking = make_booking(slot, buyer)

        response = _post(client, checkout_completed_event(booking))

        assert response.status_code == 200
        assert response.json() == {
            "status": "success",
            "event_type": "checkout.session.completed",
            "message": "confirmed",
        }
        assert _reload(db, Booking, booking.id).status == BookingStatus.CONFIRMED.value
        assert _reload(db, Slot, slot.id).is_booked is True
        mock_refund_task.delay.assert_not_called()

    def test_redelivery_is_acknowledged_as_duplicate(
        self, client, slot, buyer, make_booking, mock_refund_task
    ):
        event = checkout_completed_event(make_booking(slot, buyer))
        _post(client, event)

        response = _post(client, event)

        assert response.status_code == 200
        assert response.json()["status"] == "duplicate"

    def test_unpaid_session_is_ignored(self, client, db, slot, buyer, make_booking):
        booking = make_booking(slot, buyer)

        response = _post(client, checkout_completed_event(booking, payment_status="unpaid"))

        assert response.status_code == 200
        assert response.json()["status"] == "ignored"
        assert _reload(db, Booking, booking.id).status == BookingStatus.PENDING_PAYMENT.value

    def test_conflict_enqueues_refund(
        self, client, db, slot, buyer, other_buyer, make_booking, mock_refund_task
    ):
        winner = make_booking(slot, other_buyer)
        loser = make_booking(slot, buyer)
        _post(client, checkout_completed_event(winner, payment_id="pi_winner"))

        response = _post(client, checkout_completed_event(loser, payment_id="pi_loser"))

        assert response.status_code == 200
        assert response.json()["status"] == "conflict"
        mock_refund_task.delay.assert_called_once_with("pi_loser")
        assert _reload(db, Payment, "pi_loser").refund_status == RefundStatus.PENDING.value

    def test_conflict_enqueue_failure_still_acknowledged(
        self, client, db, slot, buyer, other_buyer, make_booking, mock_refund_task
    ):
        winner = make_booking(slot, other_buyer)
        loser = make_booking(slot, buyer)
        _post(client, checkout_completed_event(winner, payment_id="pi_winner"))
        mock_refund_task.delay.side_effect = ConnectionError("broker down")

        response = _post(client, checkout_completed_event(loser, payment_id="pi_loser"))

        assert response.status_code == 200
        # Reconciliation picks it up later
        assert _reload(db, Payment, "pi_loser").refund_status == RefundStatus.PENDING.value

    def test_unknown_booking_returns_500_for_redelivery(self, client, db, slot, buyer):
        orphan = Booking(id="01ORPHANBOOKING0000000000A", buyer_id=buyer.id, slot_id=slot.id)

        response = _post(client, checkout_completed_event(orphan, payment_id="pi_orphan"))

        assert response.status_code == 500
        assert _reload(db, Payment, "pi_orphan") is None

    def test_malformed_event_is_acknowledged(self, client, slot, buyer, make_booking):
        event = checkout_completed_event(make_booking(slot, buyer))
        del event["data"]["object"]["metadata"]["booking_id"]

        response = _post(client, event)

        assert response.status_code == 200
        assert response.json()["status"] == "ignored"


class TestOtherEvents:
    def test_charge_refunded(self, client, db, slot, buyer, make_booking, mock_refund_task):
        booking = make_booking(slot, buyer)
        _post(client, checkout_completed_event(booking, payment_id="pi_paid"))

        response = _post(client, charge_refunded_event("pi_paid"))

        assert response.status_code == 200
        assert response.json()["message"] == "refund_recorded"
        assert _reload(db, Payment, "pi_paid").refund_status == RefundStatus.SUCCEEDED.value

    def test_refund_for_unknown_payment_returns_500_for_redelivery(self, client):
        response = _post(client, charge_refunded_event("pi_unknown"))

        assert response.status_code == 500

    def test_refund_ahead_of_settlement_lands_on_redelivery(
        self, client, db, slot, buyer, make_booking, mock_refund_task
    ):
        booking = make_booking(slot, buyer)
        refund = charge_refunded_event("pi_early")

        assert _post(client, refund).status_code == 500
        _post(client, checkout_completed_event(booking, payment_id="pi_early"))
        redelivered = _post(client, refund)

        assert redelivered.status_code == 200
        assert redelivered.json()["message"] == "refund_recorded"
        assert _reload(db, Payment, "pi_early").refund_status == RefundStatus.SUCCEEDED.value

    def test_unhandled_type(self, client):
        event = {"id": "evt_x", "object": "event", "type": "customer.created", "data": {"object": {}}}

        response = _post(client, event)

        assert response.status_code == 200
        assert response.json() == {
            "status": "ignored",
            "event_type": "customer.created",
            "message": "ignored",
        }
