"""
Celery Tasks: Document Extraction Pipeline

Task: process_document
  Runs ExtractionWorker.run for one document id. The worker's conditional
  claim makes redelivery safe: a message for a document that is already
  processing, completed, or out of retries is a no-op ("skipped").
  Extraction failures are recorded on the document, never retried by
  Celery. Only PersistenceError fails the task.

Tasks: requeue_stale_pending, expire_stuck_processing, retry_failed_documents
  Supervisor sweeps, scheduled by beat (see celery_app._beat_schedule).

Each task builds its own container and disposes the engine afterwards:
an asyncpg pool cannot be shared across the event loops asyncio.run
creates per task.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import uuid
from typing import Any, Awaitable, Callable, TypeVar

from docdump.workers.celery_app import celery_app

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Async task helper
# Run async coroutines inside Celery's synchronous task context.
# ---------------------------------------------------------------------------

def run_async(coro: Awaitable[T]) -> T:
    """Execute an async coroutine from a synchronous Celery task."""
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
        return pool.submit(asyncio.run, coro).result()


async def _with_container(fn: Callable[[Any], Awaitable[T]]) -> T:
    from docdump.container import build_container
    from docdump.core.config import get_settings
    from docdump.workers.dispatch import CeleryDispatcher

    container = build_container(
        get_settings(),
        dispatcher=CeleryDispatcher(process_document),
    )
    try:
        return await fn(container)
    finally:
        await container.database.dispose()


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

@celery_app.task(
    name="docdump.workers.tasks.process_document",
    acks_late=True,
    reject_on_worker_lost=True,
)
def process_document(*, document_id: str) -> dict[str, Any]:
    doc_id = uuid.UUID(document_id)

    async def _run(container) -> dict[str, Any]:
        result = await container.worker.run(doc_id)
        return result.as_dict()

    return run_async(_with_container(_run))


# ---------------------------------------------------------------------------
# Supervisor sweeps (Celery beat)
# ---------------------------------------------------------------------------

@celery_app.task(name="docdump.workers.tasks.requeue_stale_pending", acks_late=True)
def requeue_stale_pending() -> dict[str, int]:
    async def _run(container) -> dict[str, int]:
        return {"requeued": await container.supervisor.requeue_stale_pending()}

    return run_async(_with_container(_run))


@celery_app.task(name="docdump.workers.tasks.expire_stuck_processing", acks_late=True)
def expire_stuck_processing() -> dict[str, int]:
    async def _run(container) -> dict[str, int]:
        return {"expired": await container.supervisor.expire_stuck_processing()}

    return run_async(_with_container(_run))


@celery_app.task(name="docdump.workers.tasks.retry_failed_documents", acks_late=True)
def retry_failed_documents() -> dict[str, int]:
    async def _run(container) -> dict[str, int]:
        return {"redispatched": await container.supervisor.retry_failed()}

    return run_async(_with_container(_run))
