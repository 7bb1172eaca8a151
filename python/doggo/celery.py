"""Celery app shared by the API (enqueue only) and the worker.

The one task today is title generation on the ``titles`` queue. It makes a
single provider call, so its time limits follow LLM_TIMEOUT_S.
"""

from celery import Celery

from doggo.config import get_settings

settings = get_settings()

celery_app = Celery("doggo")

celery_app.conf.update(
    broker_url=settings.effective_celery_broker_url,
    result_backend=settings.effective_celery_result_backend,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_default_queue="default",
    task_routes={"generate_conversation_title": {"queue": "titles"}},
    # Headroom over one provider call plus two DB round trips
    task_soft_time_limit=int(settings.llm_timeout_s) + 15,
    task_time_limit=int(settings.llm_timeout_s) + 30,
    result_expires=3600,
)
