"""
Lexeme extraction shared by the index builder and the query parser.

lowercase → strip accents → split on anything that is not a letter or
digit (underscores and hyphens split too, so "Invoice_2024-03" yields
invoice / 2024 / 03) → drop stopwords.
"""

from __future__ import annotations

import re
import unicodedata

_STOPWORDS = frozenset({
    # english
    "a", "an", "the", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "is", "it", "as", "be", "was", "are",
    "that", "this", "which", "have", "has", "had", "not", "no", "can",
    "will", "would", "could", "should", "may", "might", "do", "does",
    "did", "its", "their", "our", "your", "my", "his", "her",
    # portuguese
    "de", "da", "do", "das", "dos", "e", "o", "os", "as", "um", "uma",
    "em", "no", "na", "nos", "nas", "para", "por", "com", "que", "se",
})

_WORD_RE = re.compile(r"[^\W_]+", re.UNICODE)


def _fold(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text.lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def tokenize(text: str | None) -> list[str]:
    if not text:
        return []
    return [t for t in _WORD_RE.findall(_fold(text)) if t not in _STOPWORDS]
