# backend/booking_core/repositories/payment_repository.py
"""
Payment Repository.

Payments are keyed by the gateway payment id. ``create_if_absent`` is the
idempotency guard for settlement: under concurrent or repeated delivery of
the same event exactly one caller sees ``created=True``.
"""

from datetime import datetime
import logging
from typing import Optional, Tuple

from sqlalchemy import insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.payment import Payment, PaymentStatus
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class PaymentRepository(BaseRepository[Payment]):
    def __init__(self, db: Session):
        super().__init__(db, Payment)
        self.logger = logging.getLogger(__name__)

    def create_if_absent(
        self,
        *,
        payment_id: str,
        booking_id: str,
        buyer_id: str,
        amount: int,
        currency: str,
        refund_status: Optional[str] = None,
        created_at: datetime,
    ) -> Tuple[Payment, bool]:
        """
        Insert a payment row unless one already exists for ``payment_id``.

        Returns:
            (payment, created) where ``created`` is False for a duplicate
        """
        values = {
            "payment_id": payment_id,
            "booking_id": booking_id,
            "buyer_id": buyer_id,
            "amount": amount,
            "currency": currency,
            "status": PaymentStatus.SUCCEEDED.value,
            "refund_status": refund_status,
            "created_at": created_at,
        }

        try:
            if self.dialect_name == "postgresql":
                stmt = (
                    pg_insert(Payment)
                    .values(**values)
                    .on_conflict_do_nothing(index_elements=["payment_id"])
                    .returning(Payment.payment_id)
                )
                created = self.db.execute(stmt).scalar_one_or_none() is not None
            else:
                stmt = insert(Payment).values(**values)
                if self.dialect_name == "sqlite":
                    stmt = stmt.prefix_with("OR IGNORE")
                created = bool(getattr(self.db.execute(stmt), "rowcount", 0))

            payment = self.db.execute(
                select(Payment)
                .where(Payment.payment_id == payment_id)
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
        except SQLAlchemyError as e:
            self.logger.error(f"Error recording payment {payment_id}: {str(e)}")
            raise RepositoryException(f"Failed to record payment: {str(e)}")

        if payment is None:
            raise RepositoryException(f"Payment {payment_id} not found after insert")
        return payment, created

    def mark_refunded(self, payment_id: str, refund_status: str, refunded_at: datetime) -> bool:
        """
        Record a refund outcome. ``refunded_at`` keeps its first value on replays.

        Returns:
            False when no payment exists for ``payment_id``
        """
        payment = self.get_by_id(payment_id)
        if payment is None:
            return False
        try:
            self.db.execute(
                update(Payment)
                .where(Payment.payment_id == payment_id)
                .values(
                    refund_status=refund_status,
                    refunded_at=payment.refunded_at or refunded_at,
                )
                .execution_options(synchronize_session=False)
            )
            self.db.refresh(payment)
        except SQLAlchemyError as e:
            self.logger.error(f"Error updating refund for payment {payment_id}: {str(e)}")
            raise RepositoryException(f"Failed to update payment refund: {str(e)}")
        return True
