# backend/tests/integration/test_concurrent_reservations.py
"""
Concurrency tests: racing buyers, webhook deliveries and cancellations.

Each thread uses its own session, as separate requests or workers would.
"""

from concurrent.futures import ThreadPoolExecutor
import threading
from unittest.mock import MagicMock

from booking_core.core.exceptions import SlotUnavailableException
from booking_core.models.booking import Booking, BookingStatus, RefundStatus
from booking_core.models.event_outbox import EventOutbox
from booking_core.models.payment import Payment
from booking_core.models.slot import Slot
from booking_core.schemas.gateway_events import CheckoutCompleted
from booking_core.services.cancellation_service import CancellationService
from booking_core.services.hold_service import HoldService
from booking_core.services.settlement_service import SettlementOutcome, SettlementService
from booking_core.services.stripe_gateway import StripeGateway

RACERS = 8


def _race(session_factory, work, racers=RACERS):
    """Run ``work(session, index)`` on ``racers`` threads released together."""
    barrier = threading.Barrier(racers)

    def run(index):
        session = session_factory()
        try:
            barrier.wait()
            return work(session, index)
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=racers) as pool:
        return list(pool.map(run, range(racers)))


def test_exactly_one_buyer_wins_the_hold(db, session_factory, slot, clock):
    def acquire(session, index):
        try:
            HoldService(session, clock=clock).acquire_hold(slot.id, f"buyer-{index}")
            return "acquired"
        except SlotUnavailableException as exc:
            return exc.reason

    outcomes = _race(session_factory, acquire)

    assert outcomes.count("acquired") == 1
    assert outcomes.count(SlotUnavailableException.HELD_BY_OTHER) == RACERS - 1

    db.expire_all()
    row = db.get(Slot, slot.id)
    winner = outcomes.index("acquired")
    assert row.hold_by == f"buyer-{winner}"
    assert row.version == 2


def test_concurrent_duplicate_deliveries_settle_once(
    db, session_factory, slot, buyer, make_booking, clock
):
    booking = make_booking(slot, buyer)
    event = CheckoutCompleted(
        event_id="evt_race",
        event_type="checkout.session.completed",
        booking_id=booking.id,
        buyer_id=buyer.id,
        slot_id=slot.id,
        payment_id="pi_race",
        amount=4500,
        currency="gbp",
    )

    def deliver(session, index):
        return SettlementService(session, clock=clock).handle_event(event).outcome

    outcomes = _race(session_factory, deliver)

    assert outcomes.count(SettlementOutcome.CONFIRMED) == 1
    assert outcomes.count(SettlementOutcome.DUPLICATE) == RACERS - 1

    db.expire_all()
    assert db.get(Booking, booking.id).status == BookingStatus.CONFIRMED.value
    assert db.get(Slot, slot.id).is_booked is True
    assert db.query(Payment).count() == 1
    assert db.query(EventOutbox).filter(EventOutbox.aggregate_id == booking.id).count() == 1


def test_two_payments_for_one_slot_confirm_one_booking(
    db, session_factory, make_slot, make_user, make_booking, clock
):
    contested = make_slot()
    bookings = [make_booking(contested, make_user()) for _ in range(RACERS)]

    def pay(session, index):
        booking = bookings[index]
        event = CheckoutCompleted(
            event_id=f"evt_{index}",
            event_type="checkout.session.completed",
            booking_id=booking.id,
            buyer_id=booking.buyer_id,
            slot_id=contested.id,
            payment_id=f"pi_{index}",
            amount=4500,
            currency="gbp",
        )
        return SettlementService(session, clock=clock).handle_event(event).outcome

    outcomes = _race(session_factory, pay)

    assert outcomes.count(SettlementOutcome.CONFIRMED) == 1
    assert outcomes.count(SettlementOutcome.CONFLICT) == RACERS - 1

    db.expire_all()
    confirmed = (
        db.query(Booking)
        .filter(Booking.slot_id == contested.id, Booking.status == BookingStatus.CONFIRMED.value)
        .count()
    )
    assert confirmed == 1
    assert db.query(Payment).filter(Payment.refund_status == "pending").count() == RACERS - 1


def test_cancellation_and_late_settlement_do_not_interleave(
    db, session_factory, slot, buyer, make_booking, clock
):
    booking = make_booking(slot, buyer)

    def paid(payment_id):
        return CheckoutCompleted(
            event_id=f"evt_{payment_id}",
            event_type="checkout.session.completed",
            booking_id=booking.id,
            buyer_id=buyer.id,
            slot_id=slot.id,
            payment_id=payment_id,
            amount=4500,
            currency="gbp",
        )

    SettlementService(db, clock=clock).handle_event(paid("pi_first"))
    gateway = MagicMock(spec=StripeGateway)
    gateway.create_refund.return_value = "re_cancel"

    def work(session, index):
        if index == 0:
            return CancellationService(session, gateway=gateway, clock=clock).cancel(
                booking.id, buyer.id
            ).status
        if index == 1:
            return SettlementService(session, clock=clock).handle_event(paid("pi_first")).outcome
        return SettlementService(session, clock=clock).handle_event(paid("pi_second")).outcome

    outcomes = _race(session_factory, work, racers=3)

    assert outcomes == [
        BookingStatus.CANCELLED.value,
        SettlementOutcome.DUPLICATE,
        SettlementOutcome.CONFLICT,
    ]

    db.expire_all()
    row = db.get(Booking, booking.id)
    assert row.status == BookingStatus.CANCELLED.value
    assert row.payment_id == "pi_first"
    assert db.get(Slot, slot.id).is_booked is False
    assert db.get(Payment, "pi_second").refund_status == RefundStatus.PENDING.value
    events = sorted(
        e.event_type
        for e in db.query(EventOutbox).filter(EventOutbox.aggregate_id == booking.id).all()
    )
    assert events == ["booking.cancelled", "booking.confirmed"]
