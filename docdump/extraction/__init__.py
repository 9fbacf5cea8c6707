"""
Text Extraction Package
════════════════════════

  base.py     ExtractionEngine contract and ExtractionOutcome
  ocr.py      Tesseract OCR for images (pytesseract + Pillow)
  pdf.py      PDF text layer via PyMuPDF
  adapter.py  fetch from the blob store, pick the engine by mime class,
              fold every failure into ExtractionError

Engines are pure bytes → (text, confidence) functions. Only the worker
writes the result to the documents table.
"""

from docdump.extraction.adapter import ExtractionAdapter
from docdump.extraction.base import ExtractionEngine, ExtractionOutcome
from docdump.extraction.ocr import TesseractOCREngine
from docdump.extraction.pdf import PyMuPDFTextEngine

__all__ = [
    "ExtractionAdapter",
    "ExtractionEngine",
    "ExtractionOutcome",
    "TesseractOCREngine",
    "PyMuPDFTextEngine",
]
