"""
Extraction Adapter

    extract(source_ref, mime_class) → ExtractionOutcome | raises ExtractionError

Fetches the source bytes from the blob store, selects the engine for the
mime class, runs it, and clamps the confidence to [0, 100].

All failures arrive on one channel (ExtractionError):
  TransientIOError       fetch timed out, object missing, store unreachable
  ExtractionEngineError  empty file, corrupt input, engine crash
  UnsupportedFormatError no engine for the mime class

The adapter only reads. It never writes to the document table.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Mapping

from docdump.core.errors import (
    ExtractionEngineError,
    TransientIOError,
    UnsupportedFormatError,
)
from docdump.extraction.base import ExtractionEngine, ExtractionOutcome
from docdump.models.documents import MimeClass
from docdump.storage.base import BlobNotFoundError, BlobStore

logger = logging.getLogger(__name__)


class ExtractionAdapter:

    def __init__(
        self,
        blob_store: BlobStore,
        engines: Mapping[MimeClass, ExtractionEngine],
        *,
        fetch_timeout_seconds: float = 30.0,
    ) -> None:
        self._blob_store = blob_store
        self._engines = dict(engines)
        self._fetch_timeout = fetch_timeout_seconds

    async def extract(self, source_ref: str, mime_class: str) -> ExtractionOutcome:
        try:
            engine = self._engines[MimeClass(mime_class)]
        except (ValueError, KeyError):
            raise UnsupportedFormatError(
                f"unsupported format for extraction: {mime_class}"
            ) from None

        data = await self._fetch(source_ref)
        if not data:
            raise ExtractionEngineError("source document is empty")

        try:
            outcome = await engine.extract(data)
        except ExtractionEngineError:
            raise
        except Exception as exc:
            logger.exception("Engine crashed | engine=%s", engine.name)
            raise ExtractionEngineError(
                f"{engine.name}: unexpected engine failure ({type(exc).__name__})"
            ) from exc

        outcome.confidence = min(100.0, max(0.0, float(outcome.confidence)))
        return outcome

    async def _fetch(self, source_ref: str) -> bytes:
        try:
            return await asyncio.wait_for(
                self._blob_store.fetch(source_ref),
                timeout=self._fetch_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise TransientIOError(
                f"timed out fetching source document after {self._fetch_timeout:.0f}s"
            ) from exc
        except BlobNotFoundError as exc:
            raise TransientIOError("source document not found in storage") from exc
        except Exception as exc:
            logger.warning("Blob fetch failed | error=%s", exc)
            raise TransientIOError(
                f"could not fetch source document ({type(exc).__name__})"
            ) from exc
