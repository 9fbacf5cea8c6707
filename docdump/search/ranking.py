"""
Relevance ranking over an owner's indexed documents.

BM25+ (rank-bm25) is computed over the candidate set returned by the
record store, the same late-fusion pattern used for keyword retrieval in
the RAG pipeline: no separate search cluster, the corpus is whatever the
owner-scoped query produced. That set is already narrowed to documents
containing every query term and to the date and mime-class filters, so IDF
and the absolute scores change with those filters and with the candidate
cap. Scores order the hits of one search; they are not comparable across
searches. BM25+ keeps every matching score strictly positive, even when
every candidate contains the term and plain BM25 Okapi IDF turns negative.

A document matches only if it contains every query term (plain-text AND
semantics). Ordering: score descending, then created_at descending.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from rank_bm25 import BM25Plus

from docdump.models.documents import Document
from docdump.search.indexer import parse_index


@dataclass
class RankedDocument:
    document: Document
    score:    float


def rank_documents(candidates: Sequence[Document], query_terms: Sequence[str]) -> list[RankedDocument]:
    if not candidates or not query_terms:
        return []

    corpus = [parse_index(doc.search_index) for doc in candidates]
    required = set(query_terms)

    matched = [
        i for i, lexemes in enumerate(corpus)
        if required.issubset(lexemes)
    ]
    if not matched:
        return []

    scores = BM25Plus(corpus).get_scores(list(query_terms))

    ranked = [RankedDocument(document=candidates[i], score=float(scores[i])) for i in matched]
    ranked.sort(key=lambda r: r.document.created_at, reverse=True)
    ranked.sort(key=lambda r: r.score, reverse=True)
    return ranked
