# backend/booking_core/tasks/beat_schedule.py
"""
Celery Beat schedule configuration for the booking core.

Intervals come from settings so operators can tune them per environment.
"""

from datetime import timedelta
from typing import Any

from ..core.config import settings

# Main beat schedule configuration
CELERYBEAT_SCHEDULE: dict[str, dict[str, Any]] = {
    # Reclaim abandoned checkout holds on upcoming slots
    "sweep-expired-holds": {
        "task": "booking_core.tasks.hold_tasks.sweep_expired_holds",
        "schedule": timedelta(minutes=settings.hold_sweep_interval_minutes),
        "options": {
            "queue": "maintenance",
            "priority": 6,
            # A late sweep is pointless once the next one is due
            "expires": settings.hold_sweep_interval_minutes * 60,
        },
    },
    # Repair confirmed bookings whose slot flip is missing; retry conflict refunds
    "reconcile-confirmed-bookings": {
        "task": "booking_core.tasks.payment_tasks.reconcile_confirmed_bookings",
        "schedule": timedelta(minutes=settings.reconcile_interval_minutes),
        "options": {
            "queue": "payments",
            "priority": 7,
        },
    },
    # Hand queued booking emails to the mail worker
    "dispatch-pending-notifications": {
        "task": "booking_core.tasks.notification_tasks.dispatch_pending_notifications",
        "schedule": timedelta(minutes=1),
        "options": {
            "queue": "notifications",
            "priority": 5,
            "expires": 60,
        },
    },
}

# Schedule configuration for different environments
SCHEDULE_CONFIG: dict[str, dict[str, dict[str, Any]]] = {
    "testing": {
        "sweep-expired-holds": {
            "task": "booking_core.tasks.hold_tasks.sweep_expired_holds",
            "schedule": timedelta(seconds=30),
            "options": {"queue": "maintenance"},
        },
    },
}


def get_beat_schedule(environment: str = "production") -> dict[str, dict[str, Any]]:
    """
    Get the beat schedule for the specified environment.

    Args:
        environment: The environment name (production, development, testing)

    Returns:
        Mapping of task name to Celery beat configuration dict
    """
    base: dict[str, dict[str, Any]] = dict(CELERYBEAT_SCHEDULE)
    overrides = SCHEDULE_CONFIG.get(environment)
    if overrides:
        base.update(overrides)
    return base
