"""
Celery application configuration for background task processing.

Carries the onboarding-completed hand-off to the workflow engine.
"""

from celery import Celery
from kombu import Queue

from floworx.core.config import settings


celery_app = Celery(
    "floworx",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "floworx.tasks.workflows",
    ]
)


celery_app.conf.update(
    # Serialization (JSON only for security)
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task execution settings
    task_acks_late=True,  # Acknowledge after task completes (reliability)
    task_reject_on_worker_lost=True,  # Requeue if worker crashes
    task_track_started=True,

    # Task timeout settings (prevent stuck tasks)
    task_time_limit=120,
    task_soft_time_limit=100,

    # Retry settings (exponential backoff set per task)
    task_default_retry_delay=60,
    task_max_retries=5,

    # Result backend settings
    result_expires=3600,

    # Worker settings
    worker_prefetch_multiplier=4,
    worker_max_tasks_per_child=1000,

    # Queue settings
    task_queues=(
        Queue("default", routing_key="task.#"),
        Queue("workflows", routing_key="workflows.#"),
    ),
    task_default_queue="default",
    task_default_exchange="tasks",
    task_default_exchange_type="topic",
    task_default_routing_key="task.default",
)


celery_app.conf.task_routes = {
    "floworx.tasks.workflows.deploy_onboarding_workflow": {"queue": "workflows"},
}


# Logging configuration
celery_app.conf.worker_hijack_root_logger = False  # Don't override logging config
celery_app.conf.worker_log_format = "[%(asctime)s: %(levelname)s/%(processName)s] %(message)s"
celery_app.conf.worker_task_log_format = (
    "[%(asctime)s: %(levelname)s/%(processName)s] "
    "[%(task_name)s(%(task_id)s)] %(message)s"
)


if __name__ == "__main__":
    celery_app.start()
