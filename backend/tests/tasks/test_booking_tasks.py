# backend/tests/tasks/test_booking_tasks.py
"""
Tests for the periodic and on-demand Celery tasks.

Tasks are invoked directly; each opens its own session from ``SessionLocal``,
which is pointed at the per-test database.
"""

from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest

from booking_core.core.config import settings
from booking_core.models.booking import BookingStatus, RefundStatus
from booking_core.models.event_outbox import EventOutbox, EventOutboxStatus
from booking_core.models.payment import Payment
from booking_core.models.slot import Slot
from booking_core.repositories.event_outbox_repository import EventOutboxRepository
from booking_core.tasks.celery_app import celery_app, send_notification
from booking_core.tasks.hold_tasks import sweep_expired_holds
from booking_core.tasks.notification_tasks import dispatch_pending_notifications
from booking_core.tasks.payment_tasks import (
    reconcile_confirmed_bookings,
    refund_conflicting_payment,
)


@pytest.fixture
def task_sessions(session_factory):
    with patch("booking_core.tasks.hold_tasks.SessionLocal", session_factory), patch(
        "booking_core.tasks.payment_tasks.SessionLocal", session_factory
    ), patch("booking_core.tasks.notification_tasks.SessionLocal", session_factory):
        yield session_factory


def _pending_refund(db, booking, payment_id="pi_conflict", clock=None):
    db.add(
        Payment(
            payment_id=payment_id,
            booking_id=booking.id,
            buyer_id=booking.buyer_id,
            amount=booking.price,
            currency="gbp",
            refund_status=RefundStatus.PENDING.value,
            created_at=clock.now,
        )
    )
    db.commit()
    return payment_id


class TestSweepExpiredHolds:
    def test_clears_lapsed_holds(self, db, task_sessions, make_slot, clock):
        lapsed = make_slot(
            starts_in=timedelta(hours=3), hold_by="b1", hold_until=clock.now - timedelta(minutes=2)
        )

        result = sweep_expired_holds()

        assert result["cleared"] == 1
        assert "processed_at" in result
        db.expire_all()
        assert db.get(Slot, lapsed.id).hold_by is None


class TestReconcileConfirmedBookings:
    def test_repairs_slots_and_reenqueues_refunds(
        self, db, task_sessions, make_slot, slot, buyer, other_buyer, make_booking, clock
    ):
        broken_slot = make_slot()
        make_booking(broken_slot, buyer, status=BookingStatus.CONFIRMED.value, payment_id="pi_ok")
        loser = make_booking(slot, other_buyer)
        payment_id = _pending_refund(db, loser, clock=clock)

        with patch("booking_core.tasks.payment_tasks.refund_conflicting_payment") as mock_task:
            result = reconcile_confirmed_bookings()

        assert result["repaired"] == 1
        assert result["refunds_enqueued"] == 1
        mock_task.delay.assert_called_once_with(payment_id)
        db.expire_all()
        assert db.get(Slot, broken_slot.id).is_booked is True

    def test_nothing_to_do(self, task_sessions):
        with patch("booking_core.tasks.payment_tasks.refund_conflicting_payment") as mock_task:
            result = reconcile_confirmed_bookings()

        assert result["repaired"] == 0
        assert result["refunds_enqueued"] == 0
        mock_task.delay.assert_not_called()


class TestRefundConflictingPayment:
    def test_refunds_pending_payment(self, db, task_sessions, slot, buyer, make_booking, clock):
        payment_id = _pending_refund(db, make_booking(slot, buyer), clock=clock)

        with patch("stripe.Refund.create", return_value=MagicMock(id="re_task_1")) as mock_create:
            refund_id = refund_conflicting_payment(payment_id)

        assert refund_id == "re_task_1"
        assert mock_create.call_args.kwargs["idempotency_key"] == f"refund-conflict-{payment_id}"
        db.expire_all()
        assert db.get(Payment, payment_id).refund_status == RefundStatus.SUCCEEDED.value

    def test_unknown_payment_is_noop(self, task_sessions):
        with patch("stripe.Refund.create") as mock_create:
            assert refund_conflicting_payment("pi_missing") is None

        mock_create.assert_not_called()


class TestDispatchPendingNotifications:
    def test_hands_events_to_mail_worker(self, db, task_sessions):
        EventOutboxRepository(db).enqueue(
            event_type="booking.confirmed", aggregate_id="b-1", payload={"booking_id": "b-1"}
        )
        db.commit()

        with patch("booking_core.tasks.notification_tasks.send_notification") as mock_send:
            sent = dispatch_pending_notifications()

        assert sent == 1
        mock_send.assert_called_once_with(
            "booking.confirmed", {"booking_id": "b-1"}, "booking.confirmed:b-1"
        )
        db.expire_all()
        (row,) = db.query(EventOutbox).all()
        assert row.status == EventOutboxStatus.SENT.value


def test_send_notification_routes_to_mail_queue():
    with patch.object(celery_app, "send_task") as mock_send_task:
        send_notification("booking.cancelled", {"booking_id": "b-1"}, "booking.cancelled:b-1")

    mock_send_task.assert_called_once_with(
        settings.notification_task_name,
        kwargs={
            "event_type": "booking.cancelled",
            "payload": {"booking_id": "b-1"},
            "idempotency_key": "booking.cancelled:b-1",
        },
        queue=settings.notification_queue,
    )
