# backend/booking_core/services/notification_service.py
"""
Booking notifications via the transactional outbox.

State changes enqueue an outbox row inside their own transaction; the
dispatcher later hands each row to the external mail worker. Delivery never
blocks or fails the state change that produced it.
"""

import logging
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..models.booking import Booking
from ..models.event_outbox import EventOutbox, NotificationEvent
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)

# (event_type, payload, idempotency_key) -> None; raises on failure
NotificationSender = Callable[[str, Dict[str, Any], str], None]


def backoff_seconds(attempt_number: int, base: Optional[int] = None) -> int:
    """Exponential backoff for the given attempt (1-indexed)."""
    base = base if base is not None else settings.notification_backoff_base_seconds
    return base * (2 ** max(0, attempt_number - 1))


class NotificationService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)
        self.outbox_repository = RepositoryFactory.create_event_outbox_repository(db)

    def _enqueue(self, event: NotificationEvent, booking: Booking) -> EventOutbox:
        payload = booking.to_notification_payload()
        if settings.tutor_notification_email:
            payload["tutor_notification_email"] = settings.tutor_notification_email
        return self.outbox_repository.enqueue(
            event_type=event.value,
            aggregate_id=booking.id,
            payload=payload,
            idempotency_key=f"{event.value}:{booking.id}",
        )

    def enqueue_booking_confirmed(self, booking: Booking) -> EventOutbox:
        """Queue the confirmation email. Call inside the settling transaction."""
        return self._enqueue(NotificationEvent.BOOKING_CONFIRMED, booking)

    def enqueue_booking_cancelled(self, booking: Booking) -> EventOutbox:
        """Queue the cancellation email. Call inside the cancelling transaction."""
        return self._enqueue(NotificationEvent.BOOKING_CANCELLED, booking)

    @BaseService.measure_operation("dispatch_pending_notifications")
    def dispatch_pending(self, send: NotificationSender, limit: Optional[int] = None) -> int:
        """
        Hand pending outbox rows to ``send`` and record each outcome.

        A failed send is rescheduled with exponential backoff, or marked FAILED
        once ``notification_max_attempts`` is reached. Commits once per batch.

        Returns:
            Number of events delivered
        """
        sent = 0
        with self.transaction():
            pending = self.outbox_repository.fetch_pending(
                limit=limit if limit is not None else settings.outbox_batch_size
            )
            for event in pending:
                attempt_number = event.attempt_count + 1
                try:
                    send(event.event_type, dict(event.payload or {}), event.idempotency_key)
                except Exception as exc:
                    terminal = attempt_number >= settings.notification_max_attempts
                    backoff = backoff_seconds(attempt_number)
                    self.outbox_repository.mark_failed(
                        event.id,
                        attempt_count=attempt_number,
                        backoff_seconds=backoff,
                        error=str(exc),
                        terminal=terminal,
                    )
                    if terminal:
                        prometheus_metrics.record_notification_outcome(event.event_type, "failed")
                        self.logger.error(
                            "Outbox event %s failed permanently after %s attempts",
                            event.id,
                            attempt_number,
                        )
                    else:
                        self.logger.warning(
                            "Outbox event %s delivery failed; retrying in %ss",
                            event.id,
                            backoff,
                        )
                    continue

                self.outbox_repository.mark_sent(event.id, attempt_number)
                prometheus_metrics.record_notification_outcome(event.event_type, "sent")
                sent += 1

        if sent:
            self.logger.info("Dispatched %s outbox events", sent)
        return sent
