"""
Celery tasks for payment settlement follow-up.

- Reconciliation: repair confirmed bookings whose slot flip is missing and
  re-enqueue refunds still owed for conflicting payments.
- Conflict refunds: refund a payment that arrived for a slot already sold.
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..database import SessionLocal
from ..models.types import utc_now
from ..services.settlement_service import SettlementService
from .celery_app import typed_task

logger = logging.getLogger(__name__)


@typed_task(
    bind=True,
    max_retries=0,
    name="booking_core.tasks.payment_tasks.reconcile_confirmed_bookings",
)
def reconcile_confirmed_bookings(self: Any) -> Dict[str, Any]:
    """
    Flip slots for confirmed bookings that are missing it, and retry owed refunds.

    Returns:
        Dict with repaired slot count and re-enqueued refund count
    """
    db: Session = SessionLocal()
    try:
        service = SettlementService(db)
        repaired = service.reconcile_confirmed_bookings()
        pending_refunds = service.pending_conflict_refunds()
        for payment_id in pending_refunds:
            refund_conflicting_payment.delay(payment_id)
        if repaired or pending_refunds:
            logger.warning(
                "Settlement reconciliation repaired %s slots, re-enqueued %s refunds",
                repaired,
                len(pending_refunds),
            )
        return {
            "repaired": repaired,
            "refunds_enqueued": len(pending_refunds),
            "processed_at": utc_now().isoformat(),
        }
    finally:
        db.close()


@typed_task(
    bind=True,
    max_retries=5,
    name="booking_core.tasks.payment_tasks.refund_conflicting_payment",
)
def refund_conflicting_payment(self: Any, payment_id: str) -> Optional[str]:
    """
    Refund a payment settlement could not apply. Idempotent.

    Gateway failures raise and are retried with backoff by the base task.

    Returns:
        Gateway refund id, or None if nothing was owed
    """
    db: Session = SessionLocal()
    try:
        return SettlementService(db).refund_conflicting_payment(payment_id)
    finally:
        db.close()
