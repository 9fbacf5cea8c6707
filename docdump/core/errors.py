"""
Error taxonomy for the ingestion pipeline.

  ValidationError        rejected before a Document record exists
  TransientIOError       blob fetch / transport failure   -> document failed
  ExtractionEngineError  corrupt input, engine crash       -> document failed
  PersistenceError       record store unavailable          -> escalated
  DocumentNotFoundError  unknown id or not owned by caller

TransientIOError and ExtractionEngineError share the ExtractionError base:
the worker treats both the same way for retry purposes; only `detail`
differs so operators can tell them apart.
"""

from __future__ import annotations


class DocumentPipelineError(Exception):
    """Base class. `detail` is safe to store and show to the document owner."""

    code = "PIPELINE_ERROR"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class ValidationError(DocumentPipelineError):
    code = "VALIDATION_ERROR"

    def __init__(self, detail: str, *, file_name: str | None = None) -> None:
        super().__init__(detail)
        self.file_name = file_name


class FileTooLargeError(ValidationError):
    code = "FILE_TOO_LARGE"


class ExtractionError(DocumentPipelineError):
    code = "EXTRACTION_ERROR"


class TransientIOError(ExtractionError):
    code = "TRANSIENT_IO_ERROR"


class ExtractionEngineError(ExtractionError):
    code = "EXTRACTION_ENGINE_ERROR"


class UnsupportedFormatError(ExtractionEngineError):
    code = "UNSUPPORTED_FORMAT"


class PersistenceError(DocumentPipelineError):
    code = "PERSISTENCE_ERROR"


class DocumentNotFoundError(DocumentPipelineError):
    code = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_id: object) -> None:
        super().__init__(f"Document '{document_id}' was not found.")
        self.document_id = document_id
