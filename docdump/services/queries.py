"""
Status/Stats Query Service

Read-only views over the record store, always scoped to one owner. A
document of another owner and a missing document produce the same
DocumentNotFoundError, so existence never leaks across owners.

Search and listing are separate operations: an empty query (whitespace or
stopwords only) returns no hits instead of the whole corpus.
"""

from __future__ import annotations

import logging
import math
import uuid

from docdump.core.errors import DocumentNotFoundError, ValidationError
from docdump.models.documents import Document, MimeClass
from docdump.schemas.documents import (
    DocumentDetail,
    DocumentList,
    DocumentStatusSnapshot,
    DocumentSummary,
    OwnerStats,
    SearchHit,
    SearchPage,
)
from docdump.search.ranking import rank_documents
from docdump.search.tokenize import tokenize
from docdump.services.records import DocumentRecordStore, SearchFilters

logger = logging.getLogger(__name__)


def make_snippet(text: str | None, max_chars: int) -> str:
    if not text:
        return ""
    flat = " ".join(text.split())
    if len(flat) <= max_chars:
        return flat
    return flat[:max_chars].rstrip() + "..."


class DocumentQueryService:

    def __init__(
        self,
        records: DocumentRecordStore,
        *,
        max_retries: int = 3,
        default_page_size: int = 10,
        max_page_size: int = 100,
        candidate_limit: int = 5000,
        snippet_chars: int = 150,
    ) -> None:
        self._records = records
        self._max_retries = max_retries
        self._default_page_size = default_page_size
        self._max_page_size = max_page_size
        self._candidate_limit = candidate_limit
        self._snippet_chars = snippet_chars

    async def _owned(self, owner_id: str, document_id: uuid.UUID) -> Document:
        doc = await self._records.get(document_id, owner_id=owner_id)
        if doc is None:
            raise DocumentNotFoundError(document_id)
        return doc

    async def get_status(self, owner_id: str, document_id: uuid.UUID) -> DocumentStatusSnapshot:
        doc = await self._owned(owner_id, document_id)
        return DocumentStatusSnapshot.from_document(doc, max_retries=self._max_retries)

    async def get_document(self, owner_id: str, document_id: uuid.UUID) -> DocumentDetail:
        doc = await self._owned(owner_id, document_id)
        return DocumentDetail.from_document(doc, max_retries=self._max_retries)

    async def list_documents(
        self,
        owner_id: str,
        *,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> DocumentList:
        rows, total = await self._records.list_for_owner(
            owner_id, status=status, limit=limit, offset=offset,
        )
        return DocumentList(
            items=[DocumentSummary.from_document(d) for d in rows],
            total=total,
            limit=limit,
            offset=offset,
        )

    async def get_stats(self, owner_id: str) -> OwnerStats:
        counts = await self._records.status_counts(owner_id)
        return OwnerStats(
            total=counts.total,
            pending=counts.pending,
            processing=counts.processing,
            completed=counts.completed,
            failed=counts.failed,
            total_size=counts.total_size,
        )

    async def search(
        self,
        owner_id: str,
        query: str,
        *,
        filters: SearchFilters | None = None,
        page: int = 1,
        size: int | None = None,
    ) -> SearchPage:
        size = self._default_page_size if size is None else size
        if page < 1:
            raise ValidationError("page must be >= 1")
        if not 1 <= size <= self._max_page_size:
            raise ValidationError(f"size must be between 1 and {self._max_page_size}")

        filters = filters or SearchFilters()
        if filters.mime_class is not None and filters.mime_class not in {m.value for m in MimeClass}:
            raise ValidationError(f"unknown mime class '{filters.mime_class}'")

        terms = tokenize(query)
        if not terms:
            return SearchPage(query=query, items=[], total=0, page=page, size=size, total_pages=0)

        candidates = await self._records.search_candidates(
            owner_id, filters, terms=terms, limit=self._candidate_limit,
        )
        ranked = rank_documents(candidates, terms)
        total = len(ranked)

        start = (page - 1) * size
        hits = [
            SearchHit(
                document_id=r.document.id,
                file_name=r.document.file_name,
                mime_class=r.document.mime_class,
                created_at=r.document.created_at,
                score=round(r.score, 6),
                snippet=make_snippet(r.document.extracted_text, self._snippet_chars),
                extraction_confidence=r.document.extraction_confidence,
            )
            for r in ranked[start:start + size]
        ]

        logger.info(
            "Search | owner=%s terms=%d candidates=%d matched=%d page=%d",
            owner_id, len(terms), len(candidates), total, page,
        )
        return SearchPage(
            query=query,
            items=hits,
            total=total,
            page=page,
            size=size,
            total_pages=math.ceil(total / size) if total else 0,
        )
