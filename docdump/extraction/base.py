"""
Extraction engine contract.

An engine turns raw file bytes into (text, confidence). Engines never touch
the blob store or the document table; ExtractionAdapter does the fetching
and the worker does the writing.

Unlike a best-effort strategy cascade, an engine RAISES
ExtractionEngineError when the input cannot be read: the caller needs the
failure to mark the document failed. An empty result is not a failure.

Blocking library calls run in the default thread executor under a
timeout so a pathological file cannot stall the event loop or the worker.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass

from docdump.core.errors import ExtractionEngineError

logger = logging.getLogger(__name__)

# Prevents worker stalls on pathological documents
DEFAULT_TIMEOUT_SECONDS = 120.0


@dataclass
class ExtractionOutcome:
    """
    text        : extracted text, possibly empty
    confidence  : 0–100
    engine      : which engine produced it
    elapsed_ms  : wall-clock time inside the engine
    """
    text:       str
    confidence: float
    engine:     str = "unknown"
    elapsed_ms: float = 0.0


class ExtractionEngine(ABC):

    def __init__(self, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self._timeout = timeout_seconds

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique name for logging."""

    @abstractmethod
    def _extract_sync(self, data: bytes) -> tuple[str, float]:
        """Blocking extraction; runs in a worker thread."""

    async def extract(self, data: bytes) -> ExtractionOutcome:
        loop = asyncio.get_running_loop()
        t0 = time.monotonic()

        try:
            text, confidence = await asyncio.wait_for(
                loop.run_in_executor(None, self._extract_sync, data),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ExtractionEngineError(
                f"{self.name}: extraction timed out after {self._timeout:.0f}s"
            ) from exc

        elapsed_ms = (time.monotonic() - t0) * 1000
        logger.info(
            "%s | chars=%d confidence=%.1f elapsed_ms=%.0f",
            self.name, len(text), confidence, elapsed_ms,
        )
        return ExtractionOutcome(
            text=text,
            confidence=confidence,
            engine=self.name,
            elapsed_ms=elapsed_ms,
        )
