# backend/booking_core/tasks/hold_tasks.py
"""Periodic reclamation of expired slot holds."""

import logging
from typing import Any, Dict

from sqlalchemy.orm import Session

from ..database import SessionLocal
from ..models.types import utc_now
from ..services.hold_sweep_service import HoldSweepService
from .celery_app import typed_task

logger = logging.getLogger(__name__)


@typed_task(bind=True, max_retries=0, name="booking_core.tasks.hold_tasks.sweep_expired_holds")
def sweep_expired_holds(self: Any) -> Dict[str, Any]:
    """
    Clear lapsed holds on slots starting within the sweep horizon.

    Runs every few minutes via beat; a missed run is covered by the next.

    Returns:
        Dict with the number of holds cleared
    """
    db: Session = SessionLocal()
    try:
        cleared = HoldSweepService(db).sweep_expired_holds()
        return {"cleared": cleared, "processed_at": utc_now().isoformat()}
    finally:
        db.close()
