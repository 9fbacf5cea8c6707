"""
Document API: Pydantic Response Schemas

Covers:
  - POST   /documents/upload          → UploadResponse (202 Accepted)
  - GET    /documents                 → DocumentList
  - GET    /documents/{id}            → DocumentDetail
  - GET    /documents/{id}/status     → DocumentStatusSnapshot
  - GET    /documents/search          → SearchPage
  - POST   /documents/{id}/retry      → RetryResponse
  - DELETE /documents/{id}            → DeleteResponse
  - GET    /stats                     → OwnerStats
  - all 4xx/5xx bodies                → ErrorResponse

Design decisions:
  - document_id is always server-generated (UUID4); never client-supplied.
  - owner_id is never echoed back; it comes from the token.
  - status is the pipeline state, separate from the HTTP status.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from docdump.models.documents import Document, DocumentStatus


# ---------------------------------------------------------------------------
# Document views
# ---------------------------------------------------------------------------

class DocumentSummary(BaseModel):
    """One row of a listing or an upload response."""
    document_id:  UUID
    file_name:    str
    content_type: str
    mime_class:   str
    byte_size:    int
    status:       DocumentStatus
    created_at:   datetime
    has_text:     bool           = False

    @classmethod
    def from_document(cls, doc: Document) -> "DocumentSummary":
        return cls(
            document_id=doc.id,
            file_name=doc.file_name,
            content_type=doc.content_type,
            mime_class=doc.mime_class,
            byte_size=doc.byte_size,
            status=doc.status,
            created_at=doc.created_at,
            has_text=bool(doc.extracted_text),
        )


class DocumentStatusSnapshot(BaseModel):
    """Polled by clients to track extraction progress."""
    document_id:             UUID
    status:                  DocumentStatus
    error_detail:            Optional[str] = None
    retry_count:             int
    retry_eligible:          bool = Field(
        False,
        description="True when the document failed and may still be retried",
    )
    created_at:              datetime
    processing_started_at:   Optional[datetime] = None
    processing_completed_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: Document, *, max_retries: int) -> "DocumentStatusSnapshot":
        return cls(
            document_id=doc.id,
            status=doc.status,
            error_detail=doc.error_detail,
            retry_count=doc.retry_count,
            retry_eligible=(
                doc.status == DocumentStatus.FAILED.value and doc.retry_count < max_retries
            ),
            created_at=doc.created_at,
            processing_started_at=doc.processing_started_at,
            processing_completed_at=doc.processing_completed_at,
        )


class DocumentDetail(DocumentStatusSnapshot):
    file_name:             str
    content_type:          str
    mime_class:            str
    byte_size:             int
    extracted_text:        Optional[str]   = None
    extraction_confidence: Optional[float] = Field(None, ge=0.0, le=100.0)

    @classmethod
    def from_document(cls, doc: Document, *, max_retries: int) -> "DocumentDetail":
        snapshot = DocumentStatusSnapshot.from_document(doc, max_retries=max_retries)
        return cls(
            **snapshot.model_dump(),
            file_name=doc.file_name,
            content_type=doc.content_type,
            mime_class=doc.mime_class,
            byte_size=doc.byte_size,
            extracted_text=doc.extracted_text,
            extraction_confidence=doc.extraction_confidence,
        )


class UploadResponse(BaseModel):
    """HTTP 202: files are stored, extraction runs asynchronously."""
    documents: list[DocumentSummary]
    count:     int


class DocumentList(BaseModel):
    items:  list[DocumentSummary]
    total:  int
    limit:  int
    offset: int


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------

class SearchHit(BaseModel):
    document_id:           UUID
    file_name:             str
    mime_class:            str
    created_at:            datetime
    score:                 float
    snippet:               str
    extraction_confidence: Optional[float] = None


class SearchPage(BaseModel):
    query:       str
    items:       list[SearchHit]
    total:       int
    page:        int
    size:        int
    total_pages: int


# ---------------------------------------------------------------------------
# Stats and commands
# ---------------------------------------------------------------------------

class OwnerStats(BaseModel):
    total:      int
    pending:    int
    processing: int
    completed:  int
    failed:     int
    total_size: int = Field(..., description="Sum of byte_size across all documents")


class RetryResponse(BaseModel):
    document_id: UUID
    accepted:    bool
    status:      DocumentStatus
    retry_count: int
    reason:      Optional[str] = None


class DeleteResponse(BaseModel):
    document_id:  UUID
    deleted:      bool = True
    blob_deleted: bool


# ---------------------------------------------------------------------------
# Structured error bodies
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    """Single structured error; may appear in a list."""
    field:   Optional[str] = Field(None, description="Request field that caused the error, if applicable")
    message: str
    code:    str           = Field(..., description="Machine-readable error code for client handling")


class ErrorResponse(BaseModel):
    """
    Uniform error envelope for all 4xx/5xx responses.
    Clients should check `error_code` for programmatic handling.
    """
    error_code: str               = Field(..., description="Stable machine-readable code")
    message:    str               = Field(..., description="Human-readable summary")
    details:    list[ErrorDetail] = Field(default_factory=list)
    request_id: Optional[str]     = Field(None, description="Trace ID for log correlation")
