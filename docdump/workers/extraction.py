"""
Extraction Worker

Drives one document through the pipeline:

    claim            pending | failed(retry-eligible) → processing
    extract          ExtractionAdapter (fetch + engine)
    index + complete processing → completed   (text and index in one UPDATE)
    or fail          processing → failed      (bounded error_detail, retry_count + 1)

The worker never retries inline. A failed document is re-entered only by a
new dispatch (manual retry or the supervisor), and `claim` refuses once
retry_count has reached max_retries.

Extraction failures become `failed` rows; they are never raised to the
dispatcher. A PersistenceError is the one exception that escapes: it is
logged at CRITICAL and re-raised, leaving the previous durable state as is.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from docdump.core.errors import ExtractionEngineError, ExtractionError, PersistenceError
from docdump.extraction.adapter import ExtractionAdapter
from docdump.search.indexer import SearchIndexUpdater
from docdump.services.records import DocumentRecordStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkerResult:
    """
    outcome: completed | failed | skipped | not_found | discarded
    """
    document_id:  uuid.UUID
    outcome:      str
    status:       str | None = None
    retry_count:  int | None = None
    error_detail: str | None = None

    def as_dict(self) -> dict[str, object]:
        return {
            "document_id":  str(self.document_id),
            "outcome":      self.outcome,
            "status":       self.status,
            "retry_count":  self.retry_count,
            "error_detail": self.error_detail,
        }


def bound_detail(detail: str, max_chars: int) -> str:
    detail = " ".join(detail.split()) or "extraction failed"
    if len(detail) <= max_chars:
        return detail
    return detail[: max(0, max_chars - 3)] + "..."


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ExtractionWorker:

    def __init__(
        self,
        records: DocumentRecordStore,
        adapter: ExtractionAdapter,
        indexer: SearchIndexUpdater,
        *,
        max_retries: int = 3,
        error_detail_max_chars: int = 500,
    ) -> None:
        self._records = records
        self._adapter = adapter
        self._indexer = indexer
        self._max_retries = max_retries
        self._detail_max = error_detail_max_chars

    @property
    def max_retries(self) -> int:
        return self._max_retries

    async def run(self, document_id: uuid.UUID) -> WorkerResult:
        try:
            return await self._run(document_id)
        except PersistenceError as exc:
            logger.critical(
                "Record store unavailable, result not recorded | doc=%s error=%s",
                document_id, exc.detail,
            )
            raise

    async def _run(self, document_id: uuid.UUID) -> WorkerResult:
        doc = await self._records.claim(
            document_id,
            max_retries=self._max_retries,
            now=_now(),
        )
        if doc is None:
            return await self._not_claimed(document_id)

        logger.info(
            "Processing | doc=%s owner=%s mime=%s attempt=%d",
            doc.id, doc.owner_id, doc.mime_class, doc.retry_count + 1,
        )

        # --- Extraction -----------------------------------------------------
        try:
            outcome = await self._adapter.extract(doc.source_ref, doc.mime_class)
        except ExtractionError as exc:
            return await self._fail(doc.id, doc.owner_id, exc)
        except Exception as exc:
            logger.exception("Unexpected extraction failure | doc=%s", doc.id)
            return await self._fail(
                doc.id,
                doc.owner_id,
                ExtractionEngineError(f"unexpected extraction failure ({type(exc).__name__})"),
            )

        # --- Index + completion (single UPDATE) -----------------------------
        indexed = self._indexer.prepare(doc.id, outcome.text, doc.file_name)
        written = await self._records.complete(
            doc.id,
            extracted_text=indexed.extracted_text,
            confidence=outcome.confidence,
            search_index=indexed.search_index,
            now=_now(),
        )
        if not written:
            logger.warning("Late result discarded, document left processing | doc=%s", doc.id)
            return WorkerResult(document_id=doc.id, outcome="discarded")

        logger.info(
            "Processing complete | doc=%s engine=%s chars=%d confidence=%.1f",
            doc.id, outcome.engine, len(outcome.text), outcome.confidence,
        )
        return WorkerResult(
            document_id=doc.id,
            outcome="completed",
            status="completed",
            retry_count=doc.retry_count,
        )

    async def _fail(self, document_id: uuid.UUID, owner_id: str, exc: ExtractionError) -> WorkerResult:
        detail = bound_detail(exc.detail, self._detail_max)
        logger.error(
            "Extraction failed | doc=%s owner=%s code=%s error=%s",
            document_id, owner_id, exc.code, detail,
        )
        written = await self._records.fail(document_id, error_detail=detail, now=_now())
        if not written:
            logger.warning("Late failure discarded, document left processing | doc=%s", document_id)
            return WorkerResult(document_id=document_id, outcome="discarded")

        current = await self._records.get(document_id)
        return WorkerResult(
            document_id=document_id,
            outcome="failed",
            status="failed",
            retry_count=current.retry_count if current is not None else None,
            error_detail=detail,
        )

    async def _not_claimed(self, document_id: uuid.UUID) -> WorkerResult:
        current = await self._records.get(document_id)
        if current is None:
            logger.warning("Document not found, nothing to process | doc=%s", document_id)
            return WorkerResult(document_id=document_id, outcome="not_found")

        logger.warning(
            "Dispatch skipped | doc=%s status=%s retry_count=%d",
            document_id, current.status, current.retry_count,
        )
        return WorkerResult(
            document_id=document_id,
            outcome="skipped",
            status=current.status,
            retry_count=current.retry_count,
            error_detail=current.error_detail,
        )
