# backend/booking_core/tasks/celery_app.py
"""
Celery application configuration for the booking core.

This module sets up the Celery app with Redis as the broker, configures task
serialization, routing, and the beat schedule for the periodic jobs
(hold sweep, settlement reconciliation, notification dispatch).
"""

import logging
from typing import Any, Callable, Dict, Protocol, Type, cast

from celery import Celery, Task
from celery.result import AsyncResult
from celery.signals import setup_logging

from ..core.config import settings


def create_celery_app() -> Celery:
    """
    Create and configure the Celery application.

    Returns:
        Celery: Configured Celery application instance
    """
    broker_url = settings.broker_url

    celery_app = Celery("booking_core", broker=broker_url)

    celery_app.conf.update(
        {
            # Task settings
            "task_serializer": "json",
            "accept_content": ["json"],
            "result_serializer": "json",
            "timezone": "UTC",
            "enable_utc": True,
            # No caller reads task results
            "task_ignore_result": True,
            # Worker settings
            "worker_prefetch_multiplier": 1,
            "worker_max_tasks_per_child": 1000,
            # Task execution settings
            "task_soft_time_limit": 120,
            "task_time_limit": 300,
            "task_acks_late": True,
            "task_reject_on_worker_lost": True,
            # Error handling
            "task_default_retry_delay": 60,
            "task_max_retries": 3,
            "worker_hijack_root_logger": False,
            "broker_transport_options": {"visibility_timeout": 3600},
        }
    )

    # Force import of task modules so tasks are registered even if autodiscovery fails
    celery_app.conf.imports = (
        "booking_core.tasks.hold_tasks",
        "booking_core.tasks.payment_tasks",
        "booking_core.tasks.notification_tasks",
    )

    celery_app.conf.task_routes = {
        "booking_core.tasks.hold_tasks.*": {"queue": "maintenance"},
        "booking_core.tasks.payment_tasks.*": {"queue": "payments"},
        "booking_core.tasks.notification_tasks.*": {"queue": "notifications"},
        settings.notification_task_name: {"queue": settings.notification_queue},
    }

    from .beat_schedule import get_beat_schedule

    celery_app.conf.beat_schedule = get_beat_schedule(settings.environment)

    return celery_app


# Disable Celery's default logging configuration
@setup_logging.connect  # type: ignore[misc]
def config_loggers(*args: Any, **kwargs: Any) -> None:
    """Configure logging to integrate with the application's logging setup."""
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


# Create the Celery app instance
celery_app = create_celery_app()


class BaseTask(Task):  # type: ignore[misc]
    """Base task with automatic error handling and logging."""

    autoretry_for = (Exception,)
    retry_kwargs = {"max_retries": 3, "countdown": 60}
    retry_backoff = True
    retry_backoff_max = 600  # Max 10 minutes between retries
    retry_jitter = True

    def on_failure(self, exc: Exception, task_id: str, args: Any, kwargs: Any, einfo: Any) -> None:
        """Log task failures."""
        logging.getLogger(__name__).error(
            f"Task {self.name}[{task_id}] failed with exception: {exc}",
            exc_info=True,
            extra={
                "task_id": task_id,
                "task_name": self.name,
                "task_args": str(args),
                "task_kwargs": str(kwargs),
            },
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_retry(self, exc: Exception, task_id: str, args: Any, kwargs: Any, einfo: Any) -> None:
        """Log task retries."""
        logging.getLogger(__name__).warning(
            f"Task {self.name}[{task_id}] retry {self.request.retries} due to: {exc}",
            extra={
                "task_id": task_id,
                "task_name": self.name,
                "retry_count": self.request.retries,
            },
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)


# Register BaseTask as default task base for the app
celery_app.Task = cast(Type[Task], BaseTask)


class TaskWrapper(Protocol):
    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        ...

    delay: Callable[..., AsyncResult]
    apply_async: Callable[..., AsyncResult]


def typed_task(*task_args: Any, **task_kwargs: Any) -> Callable[[Callable[..., Any]], TaskWrapper]:
    """Return a typed Celery task decorator for mypy."""

    return cast(
        Callable[[Callable[..., Any]], TaskWrapper],
        celery_app.task(*task_args, **task_kwargs),
    )


def send_notification(event_type: str, payload: Dict[str, Any], idempotency_key: str) -> None:
    """Hand a booking notification to the external mail worker."""
    celery_app.send_task(
        settings.notification_task_name,
        kwargs={
            "event_type": event_type,
            "payload": payload,
            "idempotency_key": idempotency_key,
        },
        queue=settings.notification_queue,
    )
