"""
Pipeline Supervisor

Recovery sweeps for documents the normal dispatch path did not finish:

  requeue_stale_pending    pending longer than stale_pending_minutes
                           (dispatch lost, e.g. broker outage or API restart)
  expire_stuck_processing  processing longer than stuck_processing_minutes
                           → failed, retry_count + 1 (worker crashed mid-run)
  retry_failed             retry-eligible failed documents; only when
                           auto_retry_failed is enabled
  reset_to_pending         operator reset of a processing/failed document
  recover_interrupted      startup recovery for the in-process backend: no
                           age threshold, every pending or processing row
                           belongs to a process that is gone

Sweeps only dispatch or apply conditional UPDATEs, so running one twice, or
concurrently with a worker, cannot double-process a document. A completed
document is never touched.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone

from docdump.services.records import DocumentRecordStore
from docdump.workers.dispatch import ExtractionDispatcher

logger = logging.getLogger(__name__)


class PipelineSupervisor:

    def __init__(
        self,
        records: DocumentRecordStore,
        dispatcher: ExtractionDispatcher,
        *,
        max_retries: int = 3,
        stale_pending_minutes: int = 5,
        stuck_processing_minutes: int = 30,
        auto_retry_failed: bool = False,
        batch_size: int = 50,
    ) -> None:
        self._records = records
        self._dispatcher = dispatcher
        self._max_retries = max_retries
        self._stale_pending = timedelta(minutes=stale_pending_minutes)
        self._stuck_processing = timedelta(minutes=stuck_processing_minutes)
        self._stuck_minutes = stuck_processing_minutes
        self._auto_retry_failed = auto_retry_failed
        self._batch_size = batch_size

    async def _dispatch_all(self, ids: list[uuid.UUID], reason: str) -> int:
        sent = 0
        for document_id in ids:
            try:
                await self._dispatcher.dispatch(document_id)
            except Exception as exc:
                logger.error("Re-dispatch failed | doc=%s reason=%s error=%s", document_id, reason, exc)
                continue
            sent += 1
        return sent

    async def requeue_stale_pending(self, *, now: datetime | None = None) -> int:
        now = now or datetime.now(timezone.utc)
        ids = await self._records.stale_pending_ids(
            created_before=now - self._stale_pending,
            limit=self._batch_size,
        )
        sent = await self._dispatch_all(ids, "stale_pending")
        if ids:
            logger.info("Stale pending re-queued | found=%d dispatched=%d", len(ids), sent)
        return sent

    async def expire_stuck_processing(self, *, now: datetime | None = None) -> int:
        now = now or datetime.now(timezone.utc)
        expired = await self._records.expire_stuck(
            started_before=now - self._stuck_processing,
            error_detail=f"extraction did not finish within {self._stuck_minutes} minutes",
            now=now,
        )
        if expired:
            logger.warning("Stuck processing expired | count=%d", expired)
        return expired

    async def retry_failed(self) -> int:
        if not self._auto_retry_failed:
            return 0
        ids = await self._records.retry_eligible_ids(
            max_retries=self._max_retries,
            limit=self._batch_size,
        )
        sent = await self._dispatch_all(ids, "auto_retry")
        if ids:
            logger.info("Failed documents re-dispatched | found=%d dispatched=%d", len(ids), sent)
        return sent

    async def reset_to_pending(self, document_id: uuid.UUID) -> bool:
        reset = await self._records.reset_to_pending(document_id)
        logger.info("Operator reset | doc=%s applied=%s", document_id, reset)
        return reset

    async def recover_interrupted(self, *, now: datetime | None = None) -> dict[str, int]:
        """
        Recover everything a previous in-process run left in flight.

        With the background dispatcher only this process ever extracts, so
        at startup no row can legitimately be pending or processing: each
        processing row fails (retry_count + 1) and every pending row is
        dispatched, however young. Must run before the app accepts uploads.
        """
        now = now or datetime.now(timezone.utc)
        expired = await self._records.expire_stuck(
            started_before=now,
            error_detail="extraction interrupted by process restart",
            now=now,
        )
        ids = await self._records.stale_pending_ids(created_before=now, limit=None)
        requeued = await self._dispatch_all(ids, "restart")
        redispatched = await self.retry_failed()

        if expired or ids:
            logger.warning(
                "Interrupted work recovered | expired=%d pending=%d dispatched=%d",
                expired, len(ids), requeued,
            )
        return {"expired": expired, "requeued": requeued, "redispatched": redispatched}

    async def sweep(self, *, now: datetime | None = None) -> dict[str, int]:
        """Run every sweep once, expiring stuck documents before re-queueing."""
        return {
            "expired":      await self.expire_stuck_processing(now=now),
            "requeued":     await self.requeue_stale_pending(now=now),
            "redispatched": await self.retry_failed(),
        }
