# backend/booking_core/tasks/notification_tasks.py
"""
Celery task for dispatching notification outbox events.

Pending rows are handed to the external mail worker through the broker; the
mail worker owns templates and delivery.
"""

from __future__ import annotations

from typing import Any

from celery.utils.log import get_task_logger
from sqlalchemy.orm import Session

from ..database import SessionLocal
from ..services.notification_service import NotificationService
from .celery_app import send_notification, typed_task

logger = get_task_logger(__name__)


@typed_task(
    bind=True,
    max_retries=0,
    name="booking_core.tasks.notification_tasks.dispatch_pending_notifications",
)
def dispatch_pending_notifications(self: Any) -> int:
    """
    Fetch pending outbox events and hand them to the mail worker.

    Returns the number of events delivered.
    """
    db: Session = SessionLocal()
    try:
        return NotificationService(db).dispatch_pending(send_notification)
    finally:
        db.close()
