"""
Unit Tests: ExtractionAdapter and the concrete engines
═══════════════════════════════════════════════════════
Adapter tests use a mocked BlobStore. The PyMuPDF engine runs for real on
PDFs generated in-memory with fitz. The Tesseract engine runs with
pytesseract patched (no tesseract binary needed) on a real Pillow image.
"""

from __future__ import annotations

import asyncio
import io
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from docdump.core.errors import (
    ExtractionEngineError,
    TransientIOError,
    UnsupportedFormatError,
)
from docdump.extraction.adapter import ExtractionAdapter
from docdump.extraction.ocr import TesseractOCREngine
from docdump.extraction.pdf import PyMuPDFTextEngine
from docdump.models.documents import MimeClass
from docdump.storage.base import BlobNotFoundError, BlobStore
from tests.conftest import PNG_BYTES, ScriptedEngine


def _blob_store(fetch) -> MagicMock:
    store = MagicMock(spec=BlobStore)
    store.fetch = fetch if isinstance(fetch, AsyncMock) else AsyncMock(return_value=fetch)
    return store


def _pdf_with_text(text: str | None) -> bytes:
    import fitz

    doc = fitz.open()
    page = doc.new_page()
    if text:
        page.insert_text((72, 72), text)
    data = doc.tobytes()
    doc.close()
    return data


def _png_image() -> bytes:
    from PIL import Image

    buf = io.BytesIO()
    Image.new("RGB", (64, 32), color="white").save(buf, format="PNG")
    return buf.getvalue()


# ─────────────────────────────────────────────────────────────────────────────
# Adapter
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestExtractionAdapter:

    async def test_selects_engine_by_mime_class(self):
        image = ScriptedEngine("img", [("from image", 80.0)])
        pdf = ScriptedEngine("pdf", [("from pdf", 95.0)])
        adapter = ExtractionAdapter(_blob_store(PNG_BYTES), {MimeClass.IMAGE: image, MimeClass.PDF: pdf})

        outcome = await adapter.extract("file:///x", "pdf")

        assert outcome.text == "from pdf"
        assert outcome.engine == "pdf"
        assert image.calls == []

    async def test_other_mime_class_is_unsupported(self):
        store = _blob_store(PNG_BYTES)
        adapter = ExtractionAdapter(store, {MimeClass.IMAGE: ScriptedEngine("img", [("", 0.0)])})

        with pytest.raises(UnsupportedFormatError, match="unsupported format for extraction"):
            await adapter.extract("file:///x", "other")
        store.fetch.assert_not_called()

    async def test_missing_object_becomes_transient_io_error(self):
        store = _blob_store(AsyncMock(side_effect=BlobNotFoundError("gone")))
        adapter = ExtractionAdapter(store, {MimeClass.IMAGE: ScriptedEngine("img", [("", 0.0)])})

        with pytest.raises(TransientIOError, match="not found in storage"):
            await adapter.extract("s3://b/k", "image")

    async def test_transport_failure_becomes_transient_io_error(self):
        store = _blob_store(AsyncMock(side_effect=ConnectionResetError("reset by peer")))
        adapter = ExtractionAdapter(store, {MimeClass.IMAGE: ScriptedEngine("img", [("", 0.0)])})

        with pytest.raises(TransientIOError, match="ConnectionResetError"):
            await adapter.extract("s3://b/k", "image")

    async def test_slow_fetch_times_out(self):
        async def _slow(_ref):
            await asyncio.sleep(5)
            return PNG_BYTES

        store = _blob_store(AsyncMock(side_effect=_slow))
        adapter = ExtractionAdapter(
            store,
            {MimeClass.IMAGE: ScriptedEngine("img", [("", 0.0)])},
            fetch_timeout_seconds=0.05,
        )

        with pytest.raises(TransientIOError, match="timed out"):
            await adapter.extract("s3://b/k", "image")

    async def test_empty_source_is_engine_error(self):
        adapter = ExtractionAdapter(_blob_store(b""), {MimeClass.IMAGE: ScriptedEngine("img", [("", 0.0)])})

        with pytest.raises(ExtractionEngineError, match="empty"):
            await adapter.extract("s3://b/k", "image")

    async def test_negative_confidence_is_clamped_to_zero(self):
        adapter = ExtractionAdapter(_blob_store(PNG_BYTES), {MimeClass.IMAGE: ScriptedEngine("img", [("t", -3.0)])})

        outcome = await adapter.extract("s3://b/k", "image")

        assert outcome.confidence == 0.0


# ─────────────────────────────────────────────────────────────────────────────
# PyMuPDF text layer
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestPyMuPDFTextEngine:

    async def test_text_layer_gets_fixed_high_confidence(self):
        engine = PyMuPDFTextEngine(text_confidence=95.0)

        outcome = await engine.extract(_pdf_with_text("Lease agreement 2024"))

        assert "Lease agreement 2024" in outcome.text
        assert outcome.confidence == 95.0

    async def test_page_without_text_layer_gives_floor(self):
        engine = PyMuPDFTextEngine(text_confidence=95.0, floor_confidence=0.0)

        outcome = await engine.extract(_pdf_with_text(None))

        assert outcome.text == ""
        assert outcome.confidence == 0.0

    async def test_garbage_bytes_raise_engine_error(self):
        engine = PyMuPDFTextEngine()

        with pytest.raises(ExtractionEngineError, match="pymupdf"):
            await engine.extract(b"%PDF-1.4 this is not really a pdf")


# ─────────────────────────────────────────────────────────────────────────────
# Tesseract OCR (pytesseract patched)
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestTesseractOCREngine:

    async def test_confidence_is_mean_of_word_confidences(self):
        engine = TesseractOCREngine("eng")

        with patch("pytesseract.image_to_string", return_value="Hello world\n"), \
             patch("pytesseract.image_to_data", return_value={"conf": ["-1", "90", 80.0, "-1"]}):
            outcome = await engine.extract(_png_image())

        assert outcome.text == "Hello world"
        assert outcome.confidence == pytest.approx(85.0)
        assert outcome.engine == "tesseract"

    async def test_no_words_gives_zero_confidence(self):
        engine = TesseractOCREngine("eng")

        with patch("pytesseract.image_to_string", return_value="  \n"), \
             patch("pytesseract.image_to_data", return_value={"conf": ["-1"]}):
            outcome = await engine.extract(_png_image())

        assert outcome.text == ""
        assert outcome.confidence == 0.0

    async def test_undecodable_image_raises_engine_error(self):
        engine = TesseractOCREngine("eng")

        with pytest.raises(ExtractionEngineError, match="could not be decoded"):
            await engine.extract(PNG_BYTES)

    async def test_missing_binary_raises_engine_error(self):
        import pytesseract

        engine = TesseractOCREngine("eng")

        with patch("pytesseract.image_to_string", side_effect=pytesseract.TesseractNotFoundError()):
            with pytest.raises(ExtractionEngineError, match="not installed"):
                await engine.extract(_png_image())
