"""
Owner commands on a single document: delete and manual retry.

Delete removes the row first. The row is authoritative; blob removal is
best-effort and its outcome is only reported.

Retry re-dispatches a failed document whose retry_count is below the cap.
The worker's conditional claim decides; this service only screens out
requests that cannot succeed so the caller gets a clear answer.
"""

from __future__ import annotations

import logging
import uuid

from docdump.core.errors import DocumentNotFoundError
from docdump.models.documents import DocumentStatus
from docdump.schemas.documents import DeleteResponse, RetryResponse
from docdump.services.records import DocumentRecordStore
from docdump.storage.base import BlobStore
from docdump.workers.dispatch import ExtractionDispatcher

logger = logging.getLogger(__name__)


class DocumentService:

    def __init__(
        self,
        records: DocumentRecordStore,
        blob_store: BlobStore,
        dispatcher: ExtractionDispatcher,
        *,
        max_retries: int = 3,
    ) -> None:
        self._records    = records
        self._blob_store = blob_store
        self._dispatcher = dispatcher
        self._max_retries = max_retries

    async def delete(self, owner_id: str, document_id: uuid.UUID) -> DeleteResponse:
        doc = await self._records.delete(document_id, owner_id=owner_id)
        if doc is None:
            raise DocumentNotFoundError(document_id)

        blob_deleted = await self._blob_store.delete(doc.source_ref)
        if not blob_deleted:
            logger.warning("Blob not removed after delete | doc=%s ref=%s", document_id, doc.source_ref)

        logger.info("Document deleted | doc=%s owner=%s blob_deleted=%s", document_id, owner_id, blob_deleted)
        return DeleteResponse(document_id=document_id, blob_deleted=blob_deleted)

    async def request_retry(self, owner_id: str, document_id: uuid.UUID) -> RetryResponse:
        doc = await self._records.get(document_id, owner_id=owner_id)
        if doc is None:
            raise DocumentNotFoundError(document_id)

        def _refused(reason: str) -> RetryResponse:
            return RetryResponse(
                document_id=doc.id,
                accepted=False,
                status=doc.status,
                retry_count=doc.retry_count,
                reason=reason,
            )

        if doc.status != DocumentStatus.FAILED.value:
            return _refused(f"only failed documents can be retried (status is {doc.status})")
        if doc.retry_count >= self._max_retries:
            return _refused(f"retry limit of {self._max_retries} reached")

        await self._dispatcher.dispatch(doc.id)
        logger.info("Manual retry dispatched | doc=%s owner=%s retry_count=%d", doc.id, owner_id, doc.retry_count)
        return RetryResponse(
            document_id=doc.id,
            accepted=True,
            status=doc.status,
            retry_count=doc.retry_count,
        )
