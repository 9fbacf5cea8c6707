"""
Search Index Updater

Derives the searchable form of a document from its extracted text and file
name. The worker writes the result in the same UPDATE that moves the
document to `completed`, so text and index are never out of step.

The stored form is a space-delimited lexeme string. File-name lexemes are
repeated FILENAME_WEIGHT times, which gives name matches a higher term
frequency than body matches (the equivalent of a weight-A section in a
PostgreSQL tsvector). A document with no extracted text is still indexed
by its file name.
"""

from __future__ import annotations

import logging
import os
import uuid
from dataclasses import dataclass

from docdump.search.tokenize import tokenize

logger = logging.getLogger(__name__)

FILENAME_WEIGHT = 2

# Placeholder lexeme so the index is never an empty string (BM25 divides by
# average document length).
EMPTY_LEXEME = "<empty>"


@dataclass(frozen=True)
class IndexedText:
    extracted_text: str
    search_index:   str


class SearchIndexUpdater:

    def __init__(self, filename_weight: int = FILENAME_WEIGHT) -> None:
        self._filename_weight = max(1, filename_weight)

    def build(self, extracted_text: str, file_name: str) -> str:
        stem, ext = os.path.splitext(file_name)
        name_terms = tokenize(stem) + tokenize(ext)
        body_terms = tokenize(extracted_text)

        lexemes = name_terms * self._filename_weight + body_terms
        return " ".join(lexemes) if lexemes else EMPTY_LEXEME

    def prepare(self, document_id: uuid.UUID, extracted_text: str, file_name: str) -> IndexedText:
        """Return the text/index pair to persist with the completion transition."""
        index = self.build(extracted_text, file_name)
        logger.debug(
            "Index built | doc=%s chars=%d lexemes=%d",
            document_id, len(extracted_text), index.count(" ") + 1,
        )
        return IndexedText(extracted_text=extracted_text, search_index=index)


def parse_index(search_index: str | None) -> list[str]:
    return search_index.split() if search_index else []
