"""
PDF text-layer extraction with PyMuPDF (fitz).

Reads the native text layer only; no OCR. A text layer is reliable, so a
non-empty result gets a fixed high confidence. A scanned PDF with no text
layer yields "" with the floor confidence: a valid, completed outcome.
"""

from __future__ import annotations

from docdump.core.errors import ExtractionEngineError
from docdump.extraction.base import DEFAULT_TIMEOUT_SECONDS, ExtractionEngine

PDF_TEXT_CONFIDENCE = 95.0
CONFIDENCE_FLOOR = 0.0


class PyMuPDFTextEngine(ExtractionEngine):

    def __init__(
        self,
        *,
        text_confidence: float = PDF_TEXT_CONFIDENCE,
        floor_confidence: float = CONFIDENCE_FLOOR,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        super().__init__(timeout_seconds)
        self._text_confidence = text_confidence
        self._floor_confidence = floor_confidence

    @property
    def name(self) -> str:
        return "pymupdf"

    def _extract_sync(self, data: bytes) -> tuple[str, float]:
        import fitz  # PyMuPDF; imported here to avoid module-level import cost

        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except Exception as exc:
            raise ExtractionEngineError(
                f"pymupdf: file is not a readable PDF ({type(exc).__name__})"
            ) from exc

        with doc:
            if doc.needs_pass:
                raise ExtractionEngineError("pymupdf: PDF is password protected")
            if doc.page_count == 0:
                raise ExtractionEngineError("pymupdf: PDF has no pages")
            try:
                pages = [(page.get_text("text") or "").strip() for page in doc]
            except Exception as exc:
                raise ExtractionEngineError(
                    f"pymupdf: failed reading page content ({type(exc).__name__})"
                ) from exc

        text = "\n\n".join(p for p in pages if p)
        confidence = self._text_confidence if text else self._floor_confidence
        return text, confidence
