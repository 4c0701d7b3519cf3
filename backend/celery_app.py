"""
GrantMatch Celery Application Configuration

Background maintenance for the matching service. Matching itself runs inside
the request; Celery only runs periodic housekeeping such as the match cache
sweep.
"""

import logging
import time
from datetime import timedelta
from typing import Any

from celery import Celery, Task
from celery.signals import task_failure, task_postrun, task_prerun
from kombu import Exchange, Queue

from backend.core.config import settings

logger = logging.getLogger(__name__)


# =============================================================================
# Queue Definitions
# =============================================================================

default_exchange = Exchange("default", type="direct")

TASK_QUEUES = (
    # Normal queue: cache maintenance and other background work
    Queue(
        "normal",
        exchange=default_exchange,
        routing_key="normal",
    ),
)

TASK_ROUTES = {
    "backend.tasks.cleanup.cleanup_match_cache": {"queue": "normal"},
}


# =============================================================================
# Celery Application
# =============================================================================

def create_celery_app() -> Celery:
    """
    Create and configure the Celery application.

    Returns:
        Configured Celery application instance.
    """
    app = Celery(
        "grantmatch",
        broker=settings.celery_broker_url,
        backend=settings.celery_result_backend,
        include=[
            "backend.tasks.cleanup",
        ],
    )

    app.conf.update(
        # =============
        # Serialization
        # =============
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",

        # =======
        # Queues
        # =======
        task_queues=TASK_QUEUES,
        task_routes=TASK_ROUTES,
        task_default_queue="normal",
        task_default_exchange="default",
        task_default_routing_key="normal",

        # ===========
        # Time Limits
        # ===========
        task_soft_time_limit=300,
        task_time_limit=600,

        # ==============
        # Result Backend
        # ==============
        result_expires=86400,
        task_track_started=True,
        task_acks_late=True,

        # ========
        # Timezone
        # ========
        timezone="UTC",
        enable_utc=True,

        broker_connection_retry_on_startup=True,

        # =============
        # Beat Schedule
        # =============
        beat_schedule={
            "cleanup-match-cache": {
                "task": "backend.tasks.cleanup.cleanup_match_cache",
                "schedule": timedelta(hours=24),
                "options": {"queue": "normal"},
            },
        },
    )

    return app


celery_app = create_celery_app()


# =============================================================================
# Monitoring Hooks
# =============================================================================

_task_start_times: dict[str, float] = {}


@task_prerun.connect
def task_prerun_handler(
    sender: Task | None = None,
    task_id: str | None = None,
    **extra: Any,
) -> None:
    """Record task start time for latency logging."""
    if task_id:
        _task_start_times[task_id] = time.time()


@task_postrun.connect
def task_postrun_handler(
    sender: Task | None = None,
    task_id: str | None = None,
    state: str | None = None,
    **extra: Any,
) -> None:
    if task_id and task_id in _task_start_times:
        latency = time.time() - _task_start_times.pop(task_id)
        task_name = sender.name if sender else "unknown"
        logger.info(f"Task {task_name}[{task_id}] completed in {latency:.3f}s with state={state}")


@task_failure.connect
def task_failure_handler(
    sender: Task | None = None,
    task_id: str | None = None,
    exception: Exception | None = None,
    **kwargs: Any,
) -> None:
    logger.error(f"Task {sender.name if sender else 'unknown'}[{task_id}] failed: {exception}")
    if task_id:
        _task_start_times.pop(task_id, None)


__all__ = [
    "celery_app",
]
