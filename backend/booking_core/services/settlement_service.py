# backend/booking_core/services/settlement_service.py
"""
Settlement Handler.

Applies verified gateway events to the booking state machine. Each event is
applied in one database transaction, and the gateway payment id is the
idempotency key: the payment row is inserted first-wins, so redelivered or
concurrently delivered copies of the same event have no further effect.

Lock and write order inside the transaction is booking, then slot, then
outbox, the same order cancellation uses. A partial unique index on
``bookings(slot_id) WHERE status = 'confirmed'`` backs this up in the store. The
reconciliation pass (``reconcile_confirmed_bookings``) repairs any confirmed
booking whose slot flip is missing, e.g. rows written before this ordering
was enforced or edited by hand.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import (
    ConcurrentUpdateException,
    NotFoundException,
    WrongStateException,
)
from ..models.booking import Booking, BookingStatus, RefundStatus
from ..models.slot import Slot
from ..models.types import utc_now
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..schemas.gateway_events import (
    ChargeRefunded,
    CheckoutCompleted,
    GatewayEvent,
    UnknownEvent,
)
from .base import BaseService
from .notification_service import NotificationService
from .stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)


class SettlementOutcome:
    CONFIRMED = "confirmed"
    DUPLICATE = "duplicate"
    CONFLICT = "conflict"
    REFUND_RECORDED = "refund_recorded"
    IGNORED = "ignored"


@dataclass(frozen=True)
class SettlementResult:
    outcome: str
    event_type: str
    booking_id: Optional[str] = None
    payment_id: Optional[str] = None

    @property
    def refund_required(self) -> bool:
        return self.outcome == SettlementOutcome.CONFLICT


def conflict_refund_idempotency_key(payment_id: str) -> str:
    return f"refund-conflict-{payment_id}"


class SettlementService(BaseService):
    def __init__(
        self,
        db: Session,
        gateway: Optional[StripeGateway] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        super().__init__(db)
        self._gateway = gateway
        self.clock = clock
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.slot_repository = RepositoryFactory.create_slot_repository(db)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)
        self.notification_service = NotificationService(db)

    @property
    def gateway(self) -> StripeGateway:
        # Only the conflict-refund path talks to the gateway
        if self._gateway is None:
            self._gateway = StripeGateway()
        return self._gateway

    def handle_event(self, event: GatewayEvent) -> SettlementResult:
        """Dispatch a parsed gateway event to its handler."""
        if isinstance(event, CheckoutCompleted):
            result = self.settle_checkout(event)
        elif isinstance(event, ChargeRefunded):
            result = self.record_refund(event)
        else:
            result = self._ignore(event)
        prometheus_metrics.record_webhook_event(result.event_type, result.outcome)
        return result

    def _ignore(self, event: UnknownEvent) -> SettlementResult:
        self.logger.info(
            "Ignoring gateway event",
            extra={"event_id": event.event_id, "event_type": event.event_type, "reason": event.reason},
        )
        return SettlementResult(outcome=SettlementOutcome.IGNORED, event_type=event.event_type)

    def _conflict_reason(self, booking: Booking, slot: Optional[Slot]) -> Optional[str]:
        """Why this booking cannot take the payment, or None. ``slot`` must be locked."""
        if not booking.is_pending_payment:
            return f"booking_{booking.status}"
        if slot is None:
            return "slot_gone"
        if slot.is_booked:
            return "slot_booked"
        other = self.booking_repository.get_confirmed_for_slot(
            booking.slot_id, exclude_booking_id=booking.id
        )
        if other is not None:
            return f"slot_sold_to_{other.id}"
        return None

    @BaseService.measure_operation("settle_checkout")
    def settle_checkout(self, event: CheckoutCompleted) -> SettlementResult:
        """
        Confirm the booking a successful payment belongs to.

        Effects, all in one transaction: payment recorded; booking confirmed
        with payment id and paid time; slot marked booked with its hold
        cleared; ``booking.confirmed`` notification queued.

        The booking row and then the slot row are locked before deciding. If
        the booking can no longer take this payment (its slot is booked or
        sold to another confirmed booking, or the booking itself moved on) the
        payment is recorded with a pending refund and the booking is left
        untouched.

        Raises:
            NotFoundException: the booking in the payment metadata does not exist
            ConcurrentUpdateException: the slot was booked after the check
        """
        now = self.clock()
        result_base: Dict[str, Any] = {
            "event_type": event.event_type,
            "booking_id": event.booking_id,
            "payment_id": event.payment_id,
        }

        with self.transaction():
            if self.payment_repository.get_by_id(event.payment_id) is not None:
                self.logger.info("Duplicate settlement event", extra=result_base)
                return SettlementResult(outcome=SettlementOutcome.DUPLICATE, **result_base)

            booking = self.booking_repository.get_for_update(event.booking_id)
            if booking is None:
                self.logger.error("Settlement for unknown booking", extra=result_base)
                raise NotFoundException(
                    "Booking not found", details={"booking_id": event.booking_id}
                )
            if booking.slot_id != event.slot_id:
                self.logger.warning(
                    "Settlement slot does not match booking; using booking slot",
                    extra={**result_base, "event_slot_id": event.slot_id, "slot_id": booking.slot_id},
                )

            slot = self.slot_repository.get_for_update(booking.slot_id)
            conflict = self._conflict_reason(booking, slot)
            _, created = self.payment_repository.create_if_absent(
                payment_id=event.payment_id,
                booking_id=booking.id,
                buyer_id=event.buyer_id,
                amount=event.amount,
                currency=event.currency,
                refund_status=RefundStatus.PENDING.value if conflict else None,
                created_at=now,
            )
            if not created:
                self.logger.info("Duplicate settlement event", extra=result_base)
                return SettlementResult(outcome=SettlementOutcome.DUPLICATE, **result_base)

            if conflict:
                self.logger.error(
                    "Payment received for a booking that cannot be confirmed; refund required",
                    extra={**result_base, "slot_id": booking.slot_id, "reason": conflict},
                )
                return SettlementResult(outcome=SettlementOutcome.CONFLICT, **result_base)

            def confirm_booking(row: Optional[Booking]) -> Dict[str, Any]:
                if row is None or not row.is_pending_payment:
                    raise WrongStateException(
                        event.booking_id,
                        row.status if row else "missing",
                        BookingStatus.PENDING_PAYMENT.value,
                    )
                return {
                    "status": BookingStatus.CONFIRMED.value,
                    "payment_id": event.payment_id,
                    "paid_at": now,
                }

            def mark_slot_booked(row: Optional[Slot]) -> Dict[str, Any]:
                if row is None:
                    raise NotFoundException("Slot not found", details={"slot_id": booking.slot_id})
                if row.is_booked:
                    # Sold since the conflict check; redelivery takes the conflict path
                    raise ConcurrentUpdateException("Slot", row.id)
                if row.hold_by is not None and row.hold_by != event.buyer_id:
                    self.logger.warning(
                        "Settling over another buyer's hold",
                        extra={"slot_id": row.id, "hold_by": row.hold_by},
                    )
                return {"is_booked": True, "hold_by": None, "hold_until": None}

            booking = self.booking_repository.transact(booking.id, confirm_booking)
            self.slot_repository.transact(booking.slot_id, mark_slot_booked)
            self.notification_service.enqueue_booking_confirmed(booking)

        self.logger.info("Booking confirmed", extra={**result_base, "slot_id": booking.slot_id})
        return SettlementResult(outcome=SettlementOutcome.CONFIRMED, **result_base)

    @BaseService.measure_operation("record_refund")
    def record_refund(self, event: ChargeRefunded) -> SettlementResult:
        """
        Mark a payment refunded. Idempotent.

        Raises:
            NotFoundException: the payment is not recorded yet, e.g. the refund
                overtook its settlement; the gateway redelivers the event
        """
        with self.transaction():
            found = self.payment_repository.mark_refunded(
                event.payment_id, RefundStatus.SUCCEEDED.value, self.clock()
            )
        if not found:
            self.logger.warning(
                "Refund event for unknown payment", extra={"payment_id": event.payment_id}
            )
            raise NotFoundException("Payment not found", details={"payment_id": event.payment_id})
        self.logger.info("Refund recorded", extra={"payment_id": event.payment_id})
        return SettlementResult(
            outcome=SettlementOutcome.REFUND_RECORDED,
            event_type=event.event_type,
            payment_id=event.payment_id,
        )

    @BaseService.measure_operation("refund_conflicting_payment")
    def refund_conflicting_payment(self, payment_id: str) -> Optional[str]:
        """
        Refund a payment that settlement could not apply to its booking.

        No-op unless the payment is still awaiting its refund.

        Returns:
            The gateway refund id, or None when nothing was refunded
        """
        payment = self.payment_repository.get_by_id(payment_id)
        if payment is None or payment.refund_status != RefundStatus.PENDING.value:
            return None

        refund_id = self.gateway.create_refund(
            payment_id=payment_id,
            idempotency_key=conflict_refund_idempotency_key(payment_id),
        )
        with self.transaction():
            self.payment_repository.mark_refunded(
                payment_id, RefundStatus.SUCCEEDED.value, self.clock()
            )
        self.logger.warning(
            "Refunded conflicting payment",
            extra={"payment_id": payment_id, "booking_id": payment.booking_id, "refund_id": refund_id},
        )
        return refund_id

    def pending_conflict_refunds(self) -> List[str]:
        """Payment ids still waiting for their conflict refund."""
        return [
            payment.payment_id
            for payment in self.payment_repository.find_by(refund_status=RefundStatus.PENDING.value)
        ]

    @BaseService.measure_operation("reconcile_confirmed_bookings")
    def reconcile_confirmed_bookings(self, lookback: Optional[timedelta] = None) -> int:
        """
        Flip the slot of every recently confirmed booking whose slot is not booked.

        Returns:
            Number of slots repaired
        """
        if lookback is None:
            lookback = timedelta(days=settings.reconcile_lookback_days)
        since = self.clock() - lookback
        repaired = 0

        flipped = set()

        def mark_slot_booked(row: Optional[Slot]) -> Optional[Dict[str, Any]]:
            if row is None or row.is_booked:
                flipped.discard(row.id if row else None)
                return None
            flipped.add(row.id)
            return {"is_booked": True, "hold_by": None, "hold_until": None}

        for booking in self.booking_repository.find_confirmed_with_unbooked_slot(since):
            with self.transaction():
                self.slot_repository.transact(booking.slot_id, mark_slot_booked)
            if booking.slot_id in flipped:
                repaired += 1
                self.logger.warning(
                    "Reconciled slot for confirmed booking",
                    extra={"booking_id": booking.id, "slot_id": booking.slot_id},
                )

        return repaired
