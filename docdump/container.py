"""
Service wiring.

Every collaborator (database, blob store, extraction engines, dispatcher) is
built once per process from Settings and injected into the components that
use it. Nothing below reads a module-level singleton.

The API process builds one container in the FastAPI lifespan; each Celery
task builds its own (see workers/tasks.py). Tests pass their own database,
blob store, engines, or dispatcher.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping

from docdump.core.config import Settings
from docdump.db.session import Database
from docdump.extraction.adapter import ExtractionAdapter
from docdump.extraction.base import ExtractionEngine
from docdump.extraction.ocr import TesseractOCREngine
from docdump.extraction.pdf import PyMuPDFTextEngine
from docdump.models.documents import MimeClass
from docdump.search.indexer import SearchIndexUpdater
from docdump.services.documents import DocumentService
from docdump.services.ingestion import IngestionOrchestrator, UploadIntake, UploadPolicy
from docdump.services.queries import DocumentQueryService
from docdump.services.records import DocumentRecordStore
from docdump.services.supervisor import PipelineSupervisor
from docdump.storage.base import BlobStore
from docdump.storage.local import LocalBlobStore
from docdump.storage.s3 import S3BlobStore
from docdump.workers.dispatch import (
    BackgroundDispatcher,
    CeleryDispatcher,
    ExtractionDispatcher,
)
from docdump.workers.extraction import ExtractionWorker

logger = logging.getLogger(__name__)


def build_blob_store(settings: Settings) -> BlobStore:
    if settings.storage_backend == "local":
        return LocalBlobStore(settings.local_storage_root)
    if settings.storage_backend == "s3":
        return S3BlobStore(
            settings.s3_bucket,
            region=settings.aws_region,
            endpoint_url=settings.s3_endpoint_url or None,
            kms_key_arn=settings.s3_kms_key_arn or None,
        )
    raise ValueError(f"Unknown storage backend: {settings.storage_backend!r}")


def build_engines(settings: Settings) -> dict[MimeClass, ExtractionEngine]:
    return {
        MimeClass.IMAGE: TesseractOCREngine(
            settings.ocr_language,
            timeout_seconds=settings.extraction_timeout_seconds,
        ),
        MimeClass.PDF: PyMuPDFTextEngine(
            text_confidence=settings.pdf_text_confidence,
            floor_confidence=settings.confidence_floor,
            timeout_seconds=settings.extraction_timeout_seconds,
        ),
    }


def build_extraction_adapter(
    settings: Settings,
    blob_store: BlobStore,
    engines: Mapping[MimeClass, ExtractionEngine] | None = None,
) -> ExtractionAdapter:
    return ExtractionAdapter(
        blob_store,
        engines if engines is not None else build_engines(settings),
        fetch_timeout_seconds=settings.fetch_timeout_seconds,
    )


@dataclass
class ServiceContainer:
    settings:     Settings
    database:     Database
    records:      DocumentRecordStore
    blob_store:   BlobStore
    worker:       ExtractionWorker
    dispatcher:   ExtractionDispatcher
    orchestrator: IngestionOrchestrator
    intake:       UploadIntake
    queries:      DocumentQueryService
    documents:    DocumentService
    supervisor:   PipelineSupervisor

    async def close(self) -> None:
        """Drain in-flight extraction, then release the connection pool."""
        await self.dispatcher.close(self.settings.shutdown_drain_seconds)
        await self.database.dispose()


def build_container(
    settings: Settings,
    *,
    database: Database | None = None,
    blob_store: BlobStore | None = None,
    engines: Mapping[MimeClass, ExtractionEngine] | None = None,
    dispatcher: ExtractionDispatcher | None = None,
) -> ServiceContainer:
    database = database or Database.from_settings(settings)
    blob_store = blob_store or build_blob_store(settings)
    records = DocumentRecordStore(database)

    worker = ExtractionWorker(
        records,
        build_extraction_adapter(settings, blob_store, engines),
        SearchIndexUpdater(),
        max_retries=settings.max_extraction_retries,
        error_detail_max_chars=settings.error_detail_max_chars,
    )

    if dispatcher is None:
        if settings.dispatch_backend == "celery":
            dispatcher = CeleryDispatcher()
        elif settings.dispatch_backend == "background":
            dispatcher = BackgroundDispatcher(
                worker,
                max_concurrency=settings.background_max_concurrency,
            )
        else:
            raise ValueError(f"Unknown dispatch backend: {settings.dispatch_backend!r}")

    policy = UploadPolicy.from_settings(settings)
    orchestrator = IngestionOrchestrator(records, dispatcher, policy)

    logger.info(
        "Container built | storage=%s dispatch=%s max_retries=%d",
        settings.storage_backend, type(dispatcher).__name__, settings.max_extraction_retries,
    )
    return ServiceContainer(
        settings=settings,
        database=database,
        records=records,
        blob_store=blob_store,
        worker=worker,
        dispatcher=dispatcher,
        orchestrator=orchestrator,
        intake=UploadIntake(blob_store, orchestrator, policy),
        queries=DocumentQueryService(
            records,
            max_retries=settings.max_extraction_retries,
            default_page_size=settings.search_default_page_size,
            max_page_size=settings.search_max_page_size,
            candidate_limit=settings.search_candidate_limit,
            snippet_chars=settings.snippet_chars,
        ),
        documents=DocumentService(
            records,
            blob_store,
            dispatcher,
            max_retries=settings.max_extraction_retries,
        ),
        supervisor=PipelineSupervisor(
            records,
            dispatcher,
            max_retries=settings.max_extraction_retries,
            stale_pending_minutes=settings.stale_pending_minutes,
            stuck_processing_minutes=settings.stuck_processing_minutes,
            auto_retry_failed=settings.auto_retry_failed,
            batch_size=settings.supervisor_batch_size,
        ),
    )
