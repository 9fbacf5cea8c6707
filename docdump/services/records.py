"""
Document Record Store

Every read and write of the documents table goes through this class.
Lifecycle transitions are single conditional UPDATE statements:

    claim      pending | failed(retry_count < max)  → processing
    complete   processing → completed   (text + search index in the same row write)
    fail       processing → failed      (retry_count + 1)
    expire     processing (started before cutoff) → failed
    reset      processing | failed → pending   (operator action)

The WHERE clause carries the expected source status, so two callers racing
on the same id cannot both win: the loser sees rowcount 0. No explicit row
locks are taken; per-row UPDATE isolation of the database is sufficient.

Any SQLAlchemyError is re-raised as PersistenceError. Because every
statement runs inside `Database.transaction()`, a failed write leaves the
previous durable state untouched.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncGenerator, Sequence

from sqlalchemy import and_, case, delete, func, literal, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from docdump.core.errors import PersistenceError
from docdump.db.session import Database
from docdump.models.documents import Document, DocumentStatus

logger = logging.getLogger(__name__)

PENDING    = DocumentStatus.PENDING.value
PROCESSING = DocumentStatus.PROCESSING.value
COMPLETED  = DocumentStatus.COMPLETED.value
FAILED     = DocumentStatus.FAILED.value


@dataclass(frozen=True)
class StatusCounts:
    total:      int
    pending:    int
    processing: int
    completed:  int
    failed:     int
    total_size: int


@dataclass(frozen=True)
class SearchFilters:
    date_from:  datetime | None = None
    date_to:    datetime | None = None
    mime_class: str | None = None


def _retry_eligible(max_retries: int):
    return and_(Document.status == FAILED, Document.retry_count < max_retries)


class DocumentRecordStore:

    def __init__(self, database: Database) -> None:
        self._db = database

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncGenerator[AsyncSession, None]:
        try:
            async with self._db.transaction() as session:
                yield session
        except SQLAlchemyError as exc:
            logger.error("Record store failure | op=%s error=%s", operation, exc)
            raise PersistenceError(
                f"Document store unavailable during {operation}"
            ) from exc

    # ------------------------------------------------------------------
    # Creation (ingestion orchestrator)
    # ------------------------------------------------------------------

    async def create_batch(self, documents: Sequence[Document]) -> list[Document]:
        """Insert all rows in one transaction: all become visible or none do."""
        async with self._transaction("create_batch") as session:
            session.add_all(documents)
            await session.flush()
        return list(documents)

    # ------------------------------------------------------------------
    # Lifecycle transitions (extraction worker)
    # ------------------------------------------------------------------

    async def claim(
        self,
        document_id: uuid.UUID,
        *,
        max_retries: int,
        now: datetime,
    ) -> Document | None:
        """
        Move the document to processing if it is pending or a retry-eligible
        failure. Returns the claimed row, or None when the document is
        missing, in flight, completed, or out of retries.
        """
        stmt = (
            update(Document)
            .where(
                Document.id == document_id,
                or_(Document.status == PENDING, _retry_eligible(max_retries)),
            )
            .values(
                status=PROCESSING,
                processing_started_at=now,
                processing_completed_at=None,
                error_detail=None,
            )
            .execution_options(synchronize_session=False)
        )
        async with self._transaction("claim") as session:
            result = await session.execute(stmt)
            if result.rowcount != 1:
                return None
            return await session.get(Document, document_id)

    async def complete(
        self,
        document_id: uuid.UUID,
        *,
        extracted_text: str,
        confidence: float,
        search_index: str,
        now: datetime,
    ) -> bool:
        """processing → completed. Returns False if the row is no longer processing."""
        stmt = (
            update(Document)
            .where(Document.id == document_id, Document.status == PROCESSING)
            .values(
                status=COMPLETED,
                extracted_text=extracted_text,
                extraction_confidence=confidence,
                search_index=search_index,
                error_detail=None,
                processing_completed_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        async with self._transaction("complete") as session:
            result = await session.execute(stmt)
        return result.rowcount == 1

    async def fail(self, document_id: uuid.UUID, *, error_detail: str, now: datetime) -> bool:
        """processing → failed, retry_count + 1."""
        stmt = (
            update(Document)
            .where(Document.id == document_id, Document.status == PROCESSING)
            .values(
                status=FAILED,
                error_detail=error_detail,
                retry_count=Document.retry_count + 1,
                processing_completed_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        async with self._transaction("fail") as session:
            result = await session.execute(stmt)
        return result.rowcount == 1

    # ------------------------------------------------------------------
    # Supervision
    # ------------------------------------------------------------------

    async def expire_stuck(self, *, started_before: datetime, error_detail: str, now: datetime) -> int:
        stmt = (
            update(Document)
            .where(
                Document.status == PROCESSING,
                Document.processing_started_at < started_before,
            )
            .values(
                status=FAILED,
                error_detail=error_detail,
                retry_count=Document.retry_count + 1,
                processing_completed_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        async with self._transaction("expire_stuck") as session:
            result = await session.execute(stmt)
        return result.rowcount

    async def reset_to_pending(self, document_id: uuid.UUID) -> bool:
        stmt = (
            update(Document)
            .where(
                Document.id == document_id,
                Document.status.in_((PROCESSING, FAILED)),
            )
            .values(
                status=PENDING,
                processing_started_at=None,
                processing_completed_at=None,
                error_detail=None,
            )
            .execution_options(synchronize_session=False)
        )
        async with self._transaction("reset_to_pending") as session:
            result = await session.execute(stmt)
        return result.rowcount == 1

    async def stale_pending_ids(self, *, created_before: datetime, limit: int | None) -> list[uuid.UUID]:
        stmt = (
            select(Document.id)
            .where(Document.status == PENDING, Document.created_at < created_before)
            .order_by(Document.created_at)
            .limit(limit)
        )
        async with self._transaction("stale_pending_ids") as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def retry_eligible_ids(self, *, max_retries: int, limit: int) -> list[uuid.UUID]:
        stmt = (
            select(Document.id)
            .where(_retry_eligible(max_retries))
            .order_by(Document.processing_completed_at)
            .limit(limit)
        )
        async with self._transaction("retry_eligible_ids") as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Owner-scoped reads
    # ------------------------------------------------------------------

    async def get(self, document_id: uuid.UUID, *, owner_id: str | None = None) -> Document | None:
        """Fetch one row. With owner_id, rows of other owners read as missing."""
        stmt = select(Document).where(Document.id == document_id)
        if owner_id is not None:
            stmt = stmt.where(Document.owner_id == owner_id)
        async with self._transaction("get") as session:
            result = await session.execute(stmt)
            return result.scalars().first()

    async def list_for_owner(
        self,
        owner_id: str,
        *,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Document], int]:
        conditions = [Document.owner_id == owner_id]
        if status is not None:
            conditions.append(Document.status == status)

        page_stmt = (
            select(Document)
            .where(*conditions)
            .order_by(Document.created_at.desc(), Document.id)
            .offset(offset)
            .limit(limit)
        )
        count_stmt = select(func.count()).select_from(Document).where(*conditions)

        async with self._transaction("list_for_owner") as session:
            rows = (await session.execute(page_stmt)).scalars().all()
            total = (await session.execute(count_stmt)).scalar_one()
        return list(rows), int(total)

    async def status_counts(self, owner_id: str) -> StatusCounts:
        """Aggregate at read time; there are no materialised counters."""

        def _count(status: str):
            return func.coalesce(func.sum(case((Document.status == status, 1), else_=0)), 0)

        stmt = select(
            func.count(Document.id),
            _count(PENDING),
            _count(PROCESSING),
            _count(COMPLETED),
            _count(FAILED),
            func.coalesce(func.sum(Document.byte_size), 0),
        ).where(Document.owner_id == owner_id)

        async with self._transaction("status_counts") as session:
            row = (await session.execute(stmt)).one()

        total, pending, processing, completed, failed, total_size = row
        return StatusCounts(
            total=int(total),
            pending=int(pending),
            processing=int(processing),
            completed=int(completed),
            failed=int(failed),
            total_size=int(total_size),
        )

    async def search_candidates(
        self,
        owner_id: str,
        filters: SearchFilters,
        *,
        terms: Sequence[str] = (),
        limit: int,
    ) -> list[Document]:
        """
        Completed, indexed documents of one owner that contain every term,
        newest first.

        Terms are matched as whole lexemes of the space-delimited index, so
        `limit` bounds matching rows only.
        """
        conditions = [
            Document.owner_id == owner_id,
            Document.status == COMPLETED,
            Document.search_index.is_not(None),
        ]
        padded = literal(" ") + Document.search_index + literal(" ")
        for term in dict.fromkeys(terms):
            conditions.append(padded.contains(f" {term} ", autoescape=True))
        if filters.date_from is not None:
            conditions.append(Document.created_at >= filters.date_from)
        if filters.date_to is not None:
            conditions.append(Document.created_at <= filters.date_to)
        if filters.mime_class is not None:
            conditions.append(Document.mime_class == filters.mime_class)

        stmt = (
            select(Document)
            .where(*conditions)
            .order_by(Document.created_at.desc())
            .limit(limit)
        )
        async with self._transaction("search_candidates") as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    async def delete(self, document_id: uuid.UUID, *, owner_id: str) -> Document | None:
        """Delete the owner's row. Returns the removed row, or None if not found."""
        async with self._transaction("delete") as session:
            result = await session.execute(
                select(Document).where(
                    Document.id == document_id,
                    Document.owner_id == owner_id,
                )
            )
            doc = result.scalars().first()
            if doc is None:
                return None
            await session.execute(
                delete(Document)
                .where(Document.id == document_id)
                .execution_options(synchronize_session=False)
            )
        return doc
