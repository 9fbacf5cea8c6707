"""
Document API Router

  POST   /api/v1/documents/upload          multipart, one or more files → 202
  GET    /api/v1/documents                 list (newest first, optional status)
  GET    /api/v1/documents/search          ranked full-text search
  GET    /api/v1/documents/{id}            detail incl. extracted text
  GET    /api/v1/documents/{id}/status     pipeline status snapshot
  POST   /api/v1/documents/{id}/retry      re-dispatch a failed document
  DELETE /api/v1/documents/{id}            delete record + stored blob

Request lifecycle for upload:
  1. JWT verification → owner_id from `sub` (never client-supplied)
  2. Read each part, capped at the size limit + 1 byte
  3. UploadIntake: magic-byte type detection, validation, blob store,
     record creation (all-or-nothing), extraction dispatch
  4. 202 with the created summaries; clients poll /status

Errors from the pipeline taxonomy are mapped to ErrorResponse bodies by the
exception handlers in main.py.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Query, UploadFile, status

from docdump.api.dependencies import Documents, Intake, Queries, get_container
from docdump.auth.token import CurrentOwner
from docdump.container import ServiceContainer
from docdump.models.documents import DocumentStatus, MimeClass
from docdump.schemas.documents import (
    DeleteResponse,
    DocumentDetail,
    DocumentList,
    DocumentStatusSnapshot,
    DocumentSummary,
    ErrorResponse,
    RetryResponse,
    SearchPage,
    UploadResponse,
)
from docdump.services.ingestion import IncomingFile
from docdump.services.records import SearchFilters

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/documents",
    tags=["Documents"],
)

_NOT_FOUND = {404: {"model": ErrorResponse, "description": "Unknown document or not owned by caller"}}


# ---------------------------------------------------------------------------
# POST /documents/upload
# ---------------------------------------------------------------------------

@router.post(
    "/upload",
    response_model=UploadResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Upload scanned documents for extraction",
    description=(
        "Accepts PDF, PNG, JPEG, and TIFF files. Returns 202 immediately; "
        "extraction is asynchronous. Poll GET /documents/{id}/status."
    ),
    responses={
        400: {"model": ErrorResponse, "description": "Empty file, unsupported type, or too many files"},
        401: {"model": ErrorResponse, "description": "Missing or invalid JWT"},
        413: {"model": ErrorResponse, "description": "File exceeds the size limit"},
        502: {"model": ErrorResponse, "description": "Blob store unavailable"},
        503: {"model": ErrorResponse, "description": "Document store unavailable"},
    },
)
async def upload_documents(
    owner_id:  CurrentOwner,
    intake:    Intake,
    container: Annotated[ServiceContainer, Depends(get_container)],
    files:     list[UploadFile] = File(..., description="One or more files"),
) -> UploadResponse:
    read_cap = container.settings.max_file_size_bytes + 1
    incoming = []
    for upload in files:
        try:
            data = await upload.read(read_cap)
        finally:
            await upload.close()
        incoming.append(
            IncomingFile(
                file_name=upload.filename or "upload",
                data=data,
                declared_content_type=upload.content_type,
            )
        )

    documents = await intake.accept(owner_id, incoming)
    return UploadResponse(
        documents=[DocumentSummary.from_document(d) for d in documents],
        count=len(documents),
    )


# ---------------------------------------------------------------------------
# GET /documents
# ---------------------------------------------------------------------------

@router.get("", response_model=DocumentList, summary="List the caller's documents")
async def list_documents(
    owner_id: CurrentOwner,
    queries:  Queries,
    status_filter: Optional[DocumentStatus] = Query(None, alias="status"),
    limit:    int = Query(50, ge=1, le=200),
    offset:   int = Query(0, ge=0),
) -> DocumentList:
    return await queries.list_documents(
        owner_id,
        status=status_filter.value if status_filter else None,
        limit=limit,
        offset=offset,
    )


# ---------------------------------------------------------------------------
# GET /documents/search
# ---------------------------------------------------------------------------

@router.get(
    "/search",
    response_model=SearchPage,
    summary="Full-text search over completed documents",
    responses={400: {"model": ErrorResponse, "description": "Invalid page or size"}},
)
async def search_documents(
    owner_id:   CurrentOwner,
    queries:    Queries,
    q:          str = Query("", max_length=500, description="Plain-text query; all terms must match"),
    date_from:  Optional[datetime] = Query(None),
    date_to:    Optional[datetime] = Query(None),
    mime_class: Optional[MimeClass] = Query(None),
    page:       int = Query(1, ge=1),
    size:       Optional[int] = Query(None, ge=1),
) -> SearchPage:
    filters = SearchFilters(
        date_from=date_from,
        date_to=date_to,
        mime_class=mime_class.value if mime_class else None,
    )
    return await queries.search(owner_id, q, filters=filters, page=page, size=size)


# ---------------------------------------------------------------------------
# Single document
# ---------------------------------------------------------------------------

@router.get("/{document_id}", response_model=DocumentDetail, responses=_NOT_FOUND)
async def get_document(document_id: UUID, owner_id: CurrentOwner, queries: Queries) -> DocumentDetail:
    return await queries.get_document(owner_id, document_id)


@router.get("/{document_id}/status", response_model=DocumentStatusSnapshot, responses=_NOT_FOUND)
async def get_document_status(
    document_id: UUID,
    owner_id:    CurrentOwner,
    queries:     Queries,
) -> DocumentStatusSnapshot:
    return await queries.get_status(owner_id, document_id)


@router.post(
    "/{document_id}/retry",
    response_model=RetryResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses=_NOT_FOUND,
    summary="Re-dispatch a failed document",
)
async def retry_document(document_id: UUID, owner_id: CurrentOwner, documents: Documents) -> RetryResponse:
    return await documents.request_retry(owner_id, document_id)


@router.delete("/{document_id}", response_model=DeleteResponse, responses=_NOT_FOUND)
async def delete_document(document_id: UUID, owner_id: CurrentOwner, documents: Documents) -> DeleteResponse:
    return await documents.delete(owner_id, document_id)
