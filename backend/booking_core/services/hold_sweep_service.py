# backend/booking_core/services/hold_sweep_service.py
"""
Expiry Sweeper.

Reclaims holds whose TTL has passed on upcoming slots. The Hold Manager
already overwrites stale holds on acquisition; this sweep is the guaranteed
cleanup so abandoned checkouts never leave a slot looking busy.
"""

from datetime import datetime, timedelta
import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..models.types import utc_now
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)


class HoldSweepService(BaseService):
    def __init__(self, db: Session, clock: Callable[[], datetime] = utc_now):
        super().__init__(db)
        self.clock = clock
        self.slot_repository = RepositoryFactory.create_slot_repository(db)

    @BaseService.measure_operation("sweep_expired_holds")
    def sweep_expired_holds(self, horizon: Optional[timedelta] = None) -> int:
        """
        Clear lapsed holds on unbooked slots starting within ``[now, now + horizon]``.

        Each clear re-checks ``is_booked`` and ``hold_until`` in the UPDATE
        itself, so a slot booked or re-held since the scan is left alone.

        Returns:
            Number of holds cleared
        """
        if horizon is None:
            horizon = timedelta(hours=settings.hold_sweep_horizon_hours)
        now = self.clock()
        cleared = 0

        with self.transaction():
            candidates = self.slot_repository.find_expired_holds(now, now + horizon, now)
            for slot in candidates:
                if self.slot_repository.clear_expired_hold(slot.id, now):
                    cleared += 1

        prometheus_metrics.record_holds_swept(cleared)
        if cleared:
            self.logger.info(
                "Cleared expired holds",
                extra={"cleared": cleared, "candidates": len(candidates)},
            )
        return cleared
