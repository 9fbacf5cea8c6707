"""
Celery Application Factory

Used when DISPATCH_BACKEND=celery. Broker: RabbitMQ (amqp://) in production,
Redis (redis://) for local dev. The result backend is optional: document
state lives in the documents table, not in Celery results.

Queue topology:
  documents.extract      one message per document extraction
  documents.maintenance  supervisor sweeps driven by beat

Task payloads carry document ids only. Bytes are fetched from the blob store
inside the worker.
"""

from __future__ import annotations

import logging

from celery import Celery
from celery.signals import task_failure, task_postrun, task_prerun
from kombu import Exchange, Queue

from docdump.core.config import get_settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Queue and exchange definitions
# ---------------------------------------------------------------------------

DOCUMENTS_EXCHANGE = Exchange("documents", type="direct", durable=True)

TASK_QUEUES = (
    Queue(
        "documents.extract",
        exchange=DOCUMENTS_EXCHANGE,
        routing_key="documents.extract",
        durable=True,
    ),
    Queue(
        "documents.maintenance",
        exchange=DOCUMENTS_EXCHANGE,
        routing_key="documents.maintenance",
        durable=True,
    ),
)

TASK_ROUTES = {
    "docdump.workers.tasks.process_document":        {"queue": "documents.extract"},
    "docdump.workers.tasks.requeue_stale_pending":   {"queue": "documents.maintenance"},
    "docdump.workers.tasks.expire_stuck_processing": {"queue": "documents.maintenance"},
    "docdump.workers.tasks.retry_failed_documents":  {"queue": "documents.maintenance"},
}


def _beat_schedule(auto_retry_failed: bool) -> dict[str, dict]:
    schedule = {
        "requeue-stale-pending-every-60s": {
            "task":     "docdump.workers.tasks.requeue_stale_pending",
            "schedule": 60,
            "options":  {"queue": "documents.maintenance"},
        },
        "expire-stuck-processing-every-300s": {
            "task":     "docdump.workers.tasks.expire_stuck_processing",
            "schedule": 300,
            "options":  {"queue": "documents.maintenance"},
        },
    }
    if auto_retry_failed:
        schedule["retry-failed-every-300s"] = {
            "task":     "docdump.workers.tasks.retry_failed_documents",
            "schedule": 300,
            "options":  {"queue": "documents.maintenance"},
        }
    return schedule


# ---------------------------------------------------------------------------
# Celery app factory
# ---------------------------------------------------------------------------

def create_celery_app() -> Celery:
    settings = get_settings()
    app = Celery("docdump")

    app.conf.update(
        # --- Broker / Backend ---
        broker_url=settings.celery_broker_url,
        result_backend=settings.celery_result_backend,

        # --- Serialization (reject non-JSON messages) ---
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        event_serializer="json",

        # --- Queues ---
        task_queues=TASK_QUEUES,
        task_routes=TASK_ROUTES,
        task_default_queue="documents.extract",
        task_default_exchange="documents",
        task_default_routing_key="documents.extract",

        # --- Reliability ---
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,

        # --- Timeouts (extraction timeout + fetch timeout + margin) ---
        task_soft_time_limit=int(settings.extraction_timeout_seconds + settings.fetch_timeout_seconds + 30),
        task_time_limit=int(settings.extraction_timeout_seconds + settings.fetch_timeout_seconds + 90),

        result_expires=3600,

        timezone="UTC",
        enable_utc=True,

        beat_schedule=_beat_schedule(settings.auto_retry_failed),

        worker_max_tasks_per_child=200,
    )

    app.autodiscover_tasks(["docdump.workers"])
    return app


celery_app = create_celery_app()


# ---------------------------------------------------------------------------
# Celery signals: task lifecycle logging
# ---------------------------------------------------------------------------

@task_prerun.connect
def on_task_prerun(task_id, task, args, kwargs, **_):
    logger.info(
        "Task start | task_id=%s task=%s doc=%s",
        task_id, task.name, (kwargs or {}).get("document_id", "-"),
    )


@task_postrun.connect
def on_task_postrun(task_id, task, args, kwargs, retval, state, **_):
    logger.info(
        "Task end | task_id=%s task=%s state=%s doc=%s",
        task_id, task.name, state, (kwargs or {}).get("document_id", "-"),
    )


@task_failure.connect
def on_task_failure(task_id, exception, args, kwargs, traceback, einfo, **_):
    logger.error(
        "Task failed | task_id=%s doc=%s error=%s",
        task_id, (kwargs or {}).get("document_id", "-"), exception,
        exc_info=True,
    )
