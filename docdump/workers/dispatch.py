"""
Extraction dispatch.

    dispatch(document_id)   enqueue; returns before extraction runs
    close()                 graceful drain at shutdown

BackgroundDispatcher runs the worker as asyncio tasks in the API process,
bounded by a semaphore. Tasks are held in a set until done so the event
loop cannot garbage-collect them mid-flight.

CeleryDispatcher publishes process_document to the broker. apply_async is a
blocking network call, so it runs in the default thread executor.

Neither dispatcher orders work: two documents dispatched at t1 < t2 may
finish in either order.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod

from docdump.workers.extraction import ExtractionWorker

logger = logging.getLogger(__name__)


class ExtractionDispatcher(ABC):

    @abstractmethod
    async def dispatch(self, document_id: uuid.UUID) -> None:
        """Schedule extraction for one document without waiting for it."""

    async def close(self, timeout: float | None = None) -> None:
        return None


class BackgroundDispatcher(ExtractionDispatcher):

    def __init__(self, worker: ExtractionWorker, *, max_concurrency: int = 4) -> None:
        self._worker = worker
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def dispatch(self, document_id: uuid.UUID) -> None:
        if self._closed:
            raise RuntimeError("dispatcher is closed")
        task = asyncio.create_task(self._run(document_id), name=f"extract-{document_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info("Dispatched | doc=%s backend=background in_flight=%d", document_id, len(self._tasks))

    async def _run(self, document_id: uuid.UUID) -> None:
        async with self._semaphore:
            try:
                await self._worker.run(document_id)
            except asyncio.CancelledError:
                logger.warning("Extraction cancelled | doc=%s", document_id)
                raise
            except Exception:
                # Already logged at CRITICAL by the worker for PersistenceError.
                logger.exception("Background extraction aborted | doc=%s", document_id)

    async def drain(self, timeout: float | None = None) -> bool:
        """Wait for in-flight tasks. Returns True if all finished in time."""
        if not self._tasks:
            return True
        done, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        return not pending

    async def close(self, timeout: float | None = None) -> None:
        self._closed = True
        if await self.drain(timeout):
            return
        remaining = list(self._tasks)
        logger.warning("Shutdown drain timed out, cancelling | in_flight=%d", len(remaining))
        for task in remaining:
            task.cancel()
        await asyncio.gather(*remaining, return_exceptions=True)


class CeleryDispatcher(ExtractionDispatcher):

    QUEUE = "documents.extract"

    def __init__(self, task=None) -> None:
        if task is None:
            from docdump.workers.tasks import process_document
            task = process_document
        self._task = task

    async def dispatch(self, document_id: uuid.UUID) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None,
            lambda: self._task.apply_async(
                kwargs={"document_id": str(document_id)},
                queue=self.QUEUE,
            ),
        )
        logger.info("Dispatched | doc=%s backend=celery queue=%s", document_id, self.QUEUE)
