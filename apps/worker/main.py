"""Celery worker entrypoint.

Run with: celery -A apps.worker.main:celery_app worker -Q titles,default --loglevel=info

This module imports the Celery app and explicitly registers all tasks.
Task definitions are in doggo.tasks package - no autodiscovery.

Logging Convention:
- All task log entries include request_id, task_name, task_id when available
- Tasks accept `request_id: str | None = None` parameter for correlation
- Use configure_task_logging() at the start of each task to set up context

Queue Configuration:
- titles: Conversation title generation (one cheap LLM call each)
- default: General background tasks
"""

from celery.signals import worker_process_init

from doggo.celery import celery_app
from doggo.logging import configure_logging, get_logger

# =============================================================================
# Task Registration (explicit imports - no autodiscovery)
# =============================================================================

# Each import registers the task with the celery_app
from doggo.tasks import generate_conversation_title  # noqa: F401

# =============================================================================
# Worker Lifecycle
# =============================================================================


@worker_process_init.connect
def setup_worker_logging(**kwargs):
    """Configure structlog when a worker process starts.

    Worker logs then share the API's JSON format, with request_id,
    task_name and task_id bound per task.
    """
    configure_logging()
    logger = get_logger(__name__)
    logger.info("celery_worker_started", queues=["titles", "default"])


# Command: celery -A apps.worker.main:celery_app worker ...
__all__ = ["celery_app"]
