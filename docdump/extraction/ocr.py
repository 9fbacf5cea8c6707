"""
Image OCR with Tesseract (pytesseract + Pillow).

Requires the tesseract binary and the language pack named by
`language` (e.g. "por", "eng", "por+eng") in the worker image.

Confidence is the mean word confidence reported by image_to_data, which
Tesseract already expresses on a 0–100 scale; -1 entries (layout blocks
without text) are ignored. An image with no recognisable words gives ""
and confidence 0.
"""

from __future__ import annotations

import io

from docdump.core.errors import ExtractionEngineError
from docdump.extraction.base import DEFAULT_TIMEOUT_SECONDS, ExtractionEngine


class TesseractOCREngine(ExtractionEngine):

    def __init__(
        self,
        language: str = "por",
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        super().__init__(timeout_seconds)
        self._language = language

    @property
    def name(self) -> str:
        return "tesseract"

    def _extract_sync(self, data: bytes) -> tuple[str, float]:
        import pytesseract
        from PIL import Image, UnidentifiedImageError

        try:
            image = Image.open(io.BytesIO(data))
            image.load()
        except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as exc:
            raise ExtractionEngineError(
                f"tesseract: image could not be decoded ({type(exc).__name__})"
            ) from exc

        if image.mode not in ("RGB", "L"):
            image = image.convert("RGB")

        try:
            text = pytesseract.image_to_string(image, lang=self._language)
            data_dict = pytesseract.image_to_data(
                image,
                lang=self._language,
                output_type=pytesseract.Output.DICT,
            )
        except pytesseract.TesseractError as exc:
            raise ExtractionEngineError(f"tesseract: engine error (status {exc.status})") from exc
        except pytesseract.TesseractNotFoundError as exc:
            raise ExtractionEngineError("tesseract: binary not installed on worker") from exc

        confidences = []
        for raw in data_dict.get("conf", []):
            try:
                value = float(raw)
            except (TypeError, ValueError):
                continue
            if value >= 0:
                confidences.append(value)

        text = text.strip()
        if not text or not confidences:
            return text, 0.0
        return text, sum(confidences) / len(confidences)
