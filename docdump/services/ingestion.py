"""
Document Ingestion

IngestionOrchestrator.create_documents(owner_id, descriptors)
  1. Validate every descriptor (allowed type, non-empty, size cap, batch size)
  2. Insert one pending Document per file in a single transaction
  3. Dispatch extraction for each document without awaiting it

UploadIntake.accept(owner_id, files)
  Request-facing entry for raw uploads:
  1. Detect the content type from magic bytes (never the client header)
  2. Validate the whole batch before storing anything
  3. Store each file in the blob store under an owner-scoped key
  4. Hand the stored references to the orchestrator
  5. If record creation fails, remove the stored blobs (best-effort)

Invariants enforced here:
  - owner_id always comes from the verified token, never from the request body.
  - A batch is created all-or-nothing; a failed insert leaves no visible rows.
  - A dispatch failure never fails the upload. The document stays pending and
    the supervisor's stale-pending sweep re-dispatches it.
"""

from __future__ import annotations

import logging
import mimetypes
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Sequence

from docdump.core.config import Settings
from docdump.core.errors import (
    FileTooLargeError,
    PersistenceError,
    TransientIOError,
    ValidationError,
)
from docdump.models.documents import Document, DocumentStatus, MimeClass
from docdump.services.records import DocumentRecordStore
from docdump.storage.base import BlobStore
from docdump.workers.dispatch import ExtractionDispatcher

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Upload policy and validation
# ---------------------------------------------------------------------------

# Magic byte signatures, checked against the start of the file content
_MAGIC_BYTES: dict[bytes, str] = {
    b"%PDF":              "application/pdf",
    b"\x89PNG\r\n\x1a\n": "image/png",
    b"\xff\xd8\xff":      "image/jpeg",
    b"II*\x00":           "image/tiff",
    b"MM\x00*":           "image/tiff",
}


@dataclass(frozen=True)
class UploadPolicy:
    allowed_content_types: frozenset[str]
    max_file_size_bytes:   int
    max_files_per_batch:   int

    @classmethod
    def from_settings(cls, settings: Settings) -> "UploadPolicy":
        return cls(
            allowed_content_types=frozenset(settings.allowed_content_types),
            max_file_size_bytes=settings.max_file_size_bytes,
            max_files_per_batch=settings.max_files_per_batch,
        )


def detect_content_type(file_name: str, head: bytes) -> str:
    """Magic bytes first, then the file extension."""
    for magic, mime in _MAGIC_BYTES.items():
        if head.startswith(magic):
            return mime
    guessed, _ = mimetypes.guess_type(file_name)
    return guessed or "application/octet-stream"


def display_name(file_name: str | None) -> str:
    """Strip any directory component a client put in the file name."""
    base = (file_name or "").replace("\\", "/").rsplit("/", 1)[-1].strip()
    return base[:255] or "upload"


def validate_upload(
    policy: UploadPolicy,
    *,
    file_name: str,
    content_type: str,
    byte_size: int,
) -> None:
    if byte_size <= 0:
        raise ValidationError(f"'{file_name}' is empty.", file_name=file_name)
    if byte_size > policy.max_file_size_bytes:
        raise FileTooLargeError(
            f"'{file_name}' is {byte_size:,} bytes; limit is {policy.max_file_size_bytes:,} bytes.",
            file_name=file_name,
        )
    if content_type not in policy.allowed_content_types:
        raise ValidationError(
            f"'{file_name}' has unsupported type '{content_type}'.",
            file_name=file_name,
        )


def _validate_batch_size(policy: UploadPolicy, count: int) -> None:
    if count == 0:
        raise ValidationError("No files were provided.")
    if count > policy.max_files_per_batch:
        raise ValidationError(
            f"Too many files: {count} received, at most {policy.max_files_per_batch} per upload."
        )


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FileDescriptor:
    """A file already persisted in the blob store."""
    source_ref:   str
    file_name:    str
    content_type: str
    byte_size:    int


class IngestionOrchestrator:

    def __init__(
        self,
        records: DocumentRecordStore,
        dispatcher: ExtractionDispatcher,
        policy: UploadPolicy,
    ) -> None:
        self._records    = records
        self._dispatcher = dispatcher
        self._policy     = policy

    async def create_documents(
        self,
        owner_id: str,
        descriptors: Sequence[FileDescriptor],
    ) -> list[Document]:
        _validate_batch_size(self._policy, len(descriptors))
        for d in descriptors:
            validate_upload(
                self._policy,
                file_name=d.file_name,
                content_type=d.content_type,
                byte_size=d.byte_size,
            )

        now = datetime.now(timezone.utc)
        documents = [
            Document(
                id=uuid.uuid4(),
                owner_id=owner_id,
                source_ref=d.source_ref,
                file_name=d.file_name,
                content_type=d.content_type,
                mime_class=MimeClass.from_content_type(d.content_type).value,
                byte_size=d.byte_size,
                status=DocumentStatus.PENDING.value,
                retry_count=0,
                created_at=now,
            )
            for d in descriptors
        ]

        await self._records.create_batch(documents)
        logger.info(
            "Documents created | owner=%s count=%d ids=%s",
            owner_id, len(documents), ",".join(str(d.id) for d in documents),
        )

        for doc in documents:
            try:
                await self._dispatcher.dispatch(doc.id)
            except Exception as exc:
                logger.error(
                    "Dispatch failed, left pending for supervisor | doc=%s error=%s",
                    doc.id, exc,
                )

        return documents


# ---------------------------------------------------------------------------
# Upload intake
# ---------------------------------------------------------------------------

@dataclass
class IncomingFile:
    file_name:             str
    data:                  bytes = field(repr=False)
    declared_content_type: str | None = None


class UploadIntake:

    def __init__(
        self,
        blob_store: BlobStore,
        orchestrator: IngestionOrchestrator,
        policy: UploadPolicy,
    ) -> None:
        self._blob_store   = blob_store
        self._orchestrator = orchestrator
        self._policy       = policy

    async def accept(self, owner_id: str, files: Sequence[IncomingFile]) -> list[Document]:
        _validate_batch_size(self._policy, len(files))

        prepared: list[tuple[IncomingFile, str, str]] = []
        for f in files:
            name = display_name(f.file_name)
            detected = detect_content_type(name, f.data[:8])
            if f.declared_content_type and f.declared_content_type != detected:
                logger.debug(
                    "Client content type ignored | file=%s declared=%s detected=%s",
                    name, f.declared_content_type, detected,
                )
            validate_upload(self._policy, file_name=name, content_type=detected, byte_size=len(f.data))
            prepared.append((f, name, detected))

        descriptors: list[FileDescriptor] = []
        try:
            for f, name, content_type in prepared:
                source_ref = await self._blob_store.store(f.data, owner_id, name, content_type)
                descriptors.append(
                    FileDescriptor(
                        source_ref=source_ref,
                        file_name=name,
                        content_type=content_type,
                        byte_size=len(f.data),
                    )
                )
        except Exception as exc:
            logger.exception("Blob store upload failed | owner=%s stored=%d", owner_id, len(descriptors))
            await self._discard(d.source_ref for d in descriptors)
            raise TransientIOError(f"Failed to store uploaded file ({type(exc).__name__}).") from exc

        try:
            return await self._orchestrator.create_documents(owner_id, descriptors)
        except (PersistenceError, ValidationError):
            await self._discard(d.source_ref for d in descriptors)
            raise

    async def _discard(self, source_refs: Iterable[str]) -> None:
        for ref in source_refs:
            if not await self._blob_store.delete(ref):
                logger.warning("Orphaned blob left in store | ref=%s", ref)
