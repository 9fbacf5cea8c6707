"""
SQLAlchemy ORM Models: Documents

One row per uploaded file. The row is the single source of truth for the
ingestion lifecycle; queue messages and in-memory tasks only carry the id.

Column types are the portable SQLAlchemy 2.x generics (Uuid, Text, Float,
DateTime with timezone) so the same mapping runs on PostgreSQL (asyncpg)
in production and SQLite (aiosqlite) in the test suite.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Enumerations stored as plain strings
# ---------------------------------------------------------------------------

class DocumentStatus(str, Enum):
    """
    Transitions: pending → processing → completed | failed
                 failed  → processing  (retry, while retry_count < max)
    """
    PENDING    = "pending"      # record created, extraction not started
    PROCESSING = "processing"   # claimed by a worker
    COMPLETED  = "completed"    # text + search index written
    FAILED     = "failed"       # see error_detail / retry_count


class MimeClass(str, Enum):
    """Coarse file-type bucket; selects the extraction engine."""
    IMAGE = "image"
    PDF   = "pdf"
    OTHER = "other"

    @classmethod
    def from_content_type(cls, content_type: str | None) -> "MimeClass":
        ct = (content_type or "").split(";", 1)[0].strip().lower()
        if ct.startswith("image/"):
            return cls.IMAGE
        if ct == "application/pdf":
            return cls.PDF
        return cls.OTHER


_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in DocumentStatus)
_MIME_VALUES   = ", ".join(f"'{m.value}'" for m in MimeClass)


# ---------------------------------------------------------------------------
# Document model
# ---------------------------------------------------------------------------

class Document(Base):
    """
    Tracks a single uploaded file from upload → extraction → searchable.

    Field ownership:
        ingestion orchestrator   id, owner_id, source_ref, descriptive metadata,
                                 created_at (insert only)
        extraction worker        status, timestamps, extracted_text,
                                 extraction_confidence, error_detail, retry_count
        search index updater     search_index (same UPDATE as → completed)

    extracted_text and search_index are written by one statement and are
    therefore either both NULL or both set.
    """

    __tablename__ = "documents"
    __table_args__ = (
        CheckConstraint(f"status IN ({_STATUS_VALUES})", name="documents_status_check"),
        CheckConstraint(f"mime_class IN ({_MIME_VALUES})", name="documents_mime_class_check"),
        CheckConstraint(
            "extraction_confidence IS NULL "
            "OR (extraction_confidence >= 0 AND extraction_confidence <= 100)",
            name="documents_confidence_range_check",
        ),
        CheckConstraint("byte_size > 0", name="documents_byte_size_check"),
        Index("idx_documents_owner_id",     "owner_id"),
        Index("idx_documents_owner_status", "owner_id", "status"),
        Index("idx_documents_status_started", "status", "processing_started_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # Owner scope: taken from the verified token, never from the request body
    owner_id: Mapped[str] = mapped_column(Text, nullable=False)

    # Blob reference, e.g. s3://bucket/owners/<owner>/documents/<uuid>-name.pdf
    source_ref: Mapped[str] = mapped_column(Text, nullable=False)

    file_name: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Original file name as supplied by the client (display + search)",
    )
    content_type: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="MIME type detected server-side from magic bytes",
    )
    mime_class: Mapped[str] = mapped_column(String(16), nullable=False)
    byte_size: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Ingestion state machine
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=DocumentStatus.PENDING.value,
        server_default=DocumentStatus.PENDING.value,
    )
    error_detail: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Populated only while status='failed'",
    )
    retry_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0",
    )

    # Extraction output
    extracted_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    extraction_confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    search_index: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Space-delimited lexemes; filename lexemes repeated for weight",
    )

    # Lifecycle timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    processing_started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    processing_completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<Document id={self.id} owner={self.owner_id} "
            f"status={self.status} file={self.file_name!r}>"
        )
