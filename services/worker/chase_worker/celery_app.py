"""Celery application configuration for Chase Worker."""

import os

from celery import Celery
from celery.signals import setup_logging

# Celery configuration from environment
CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/1")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/2")

# How often the chase cycle (tick then dispatch) runs, in seconds
CHASE_CYCLE_INTERVAL = float(os.getenv("CHASE_CYCLE_INTERVAL_SECONDS", "900"))

app = Celery(
    "chase_worker",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
    include=[
        "chase_worker.tasks.chase",
        "chase_worker.tasks.message",
        "chase_worker.tasks.maintenance",
    ],
)

# Celery configuration
app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # Task execution
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    # Time limits (seconds)
    task_soft_time_limit=600,  # 10 minutes
    task_time_limit=900,  # 15 minutes
    # Queue routing
    task_routes={
        "chase.*": {"queue": "chase"},
        "message.*": {"queue": "messages"},
        "maintenance.*": {"queue": "maintenance"},
    },
    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=4,
)

# Beat schedule for periodic tasks
app.conf.beat_schedule = {
    # Tick then dispatch, every 15 minutes
    "chase-cycle-periodic": {
        "task": "chase.run_cycle",
        "schedule": CHASE_CYCLE_INTERVAL,
        "args": (),
    },
    # Fail messages left mid-dispatch by a crashed worker
    "stale-claims-periodic": {
        "task": "maintenance.fail_stale_claims",
        "schedule": 3600.0,  # 1 hour
        "args": (),
    },
}


@setup_logging.connect
def configure_worker_logging(**kwargs) -> None:
    """Use the structured JSON logging of chase_core in workers."""
    from chase_core.config import get_settings
    from chase_core.observability.logging import configure_logging

    settings = get_settings()
    configure_logging(
        level=settings.log_level,
        json_format=settings.log_json,
        service_name="chase-worker",
    )


if __name__ == "__main__":
    app.start()
