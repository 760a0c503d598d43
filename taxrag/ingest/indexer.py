"""
Passage Store & Indexer
========================

The retrieval store contract the engine talks to, plus the default
in-memory implementation.

- RetrievalStore: abstract `query(StoreQuery) -> StoreResult`
- PassageStore:   documents + passages held in memory, searched with
                  BM25 (rank_bm25) for text rank and numpy cosine
                  similarity for vector search

Text rank:
    BM25 over the normalized passage body plus `title_weight` times BM25
    over the document title. Only passages whose title/body satisfy the
    AND-of-OR expression receive a positive rank, scaled into [0.1, 1.0]
    against the best match of the call so scores are comparable with
    cosine similarity in the hybrid blend.

Substring fallback:
    When neither text nor vector search yields a row, the store retries
    with a case-insensitive substring match of up to 6 query words
    (length >= 3) over title and content. Those rows carry
    `text_rank=None` and the result is tagged "substring-fallback".

Data Flow:
    Document + [Passage] → PassageStore.add_documents → query() → RetrievalEngine
"""

from __future__ import annotations

import logging
import re
import time
from abc import ABC, abstractmethod
from functools import lru_cache
from pathlib import Path
from typing import Optional

import numpy as np
from pydantic import BaseModel, Field

from taxrag.nlp.lexicon import contains_any, normalize, tokenize
from taxrag.schemas.documents import Document, Passage, validate_passage_sequence
from taxrag.schemas.retrieval import QueryExpression, RetrievedPassage
from taxrag.utils import load_json, save_json

logger = logging.getLogger("taxrag.ingest.indexer")

QUERY_MODE_RANKED = "ranked"
QUERY_MODE_SUBSTRING = "substring-fallback"

MIN_TEXT_RANK = 0.1


class StoreUnavailableError(RuntimeError):
    """The retrieval store could not serve a query."""


class StoreFilters(BaseModel):
    """Row filters applied before any ranking."""
    path_like: Optional[str] = Field(
        default=None,
        description="Case-insensitive path pattern; '%' is a wildcard, no '%' = substring"
    )
    jurisdictions: Optional[list[str]] = None
    exclude_jurisdictions: list[str] = Field(default_factory=list)
    doc_types: Optional[list[str]] = None
    year_min: Optional[int] = None
    year_max: Optional[int] = None


class StoreQuery(BaseModel):
    """One store round-trip."""
    text: str = Field(description="Raw question, used by the substring fallback")
    expression: QueryExpression = Field(default_factory=QueryExpression)
    vector: Optional[list[float]] = None
    limit: int = Field(default=24, ge=1)
    filters: StoreFilters = Field(default_factory=StoreFilters)
    min_similarity: float = Field(default=0.0, ge=0.0, le=1.0)


class StoreResult(BaseModel):
    rows: list[RetrievedPassage] = Field(default_factory=list)
    query_mode: str = QUERY_MODE_RANKED
    elapsed_ms: float = 0.0


class RetrievalStore(ABC):
    """Abstract passage store."""

    @abstractmethod
    def query(self, query: StoreQuery) -> StoreResult:
        """
        Run one query.

        Raises:
            StoreUnavailableError: the backend cannot serve the request.
        """
        ...


@lru_cache(maxsize=256)
def _like_regex(pattern: str) -> re.Pattern[str]:
    if "%" not in pattern:
        pattern = f"%{pattern}%"
    parts = [re.escape(p) for p in pattern.split("%")]
    return re.compile("^" + ".*".join(parts) + "$", re.IGNORECASE | re.DOTALL)


def path_matches(path: str, pattern: str) -> bool:
    """SQL ILIKE-style match with '%' wildcards."""
    return _like_regex(pattern.strip()).match(path) is not None


def matches_expression(text_norm: str, expression: QueryExpression) -> bool:
    """Every clause has at least one term in the (normalized) text."""
    if expression.is_empty:
        return False
    return all(contains_any(text_norm, clause) for clause in expression.clauses)


def _upper_set(values: Optional[list[str]]) -> Optional[set[str]]:
    if values is None:
        return None
    return {v.strip().upper() for v in values if v and v.strip()}


class PassageStore(RetrievalStore):
    """
    In-memory retrieval store.

    Usage:
        store = PassageStore()
        store.add_documents([(document, passages)])
        result = store.query(StoreQuery(text="exención automotor",
                                        expression=QueryExpression.any_of(["exencion"])))

    Args:
        title_weight: Weight of the title BM25 relative to the body.
        fallback_max_words: Words used by the substring fallback.
        fallback_min_word_length: Shortest word used by the substring fallback.
    """

    def __init__(
        self,
        title_weight: float = 2.0,
        fallback_max_words: int = 6,
        fallback_min_word_length: int = 3,
    ):
        self.title_weight = title_weight
        self.fallback_max_words = fallback_max_words
        self.fallback_min_word_length = fallback_min_word_length
        self._documents: dict[str, Document] = {}
        self._passages: list[Passage] = []
        self._body_norm: list[str] = []
        self._title_norm: list[str] = []
        self._body_bm25 = None
        self._title_bm25 = None
        self._embeddings: Optional[np.ndarray] = None
        self._has_embedding: Optional[np.ndarray] = None
        self._dirty = True

    # ── Loading ────────────────────────────────────────────────────

    def add_documents(self, items: list[tuple[Document, list[Passage]]]) -> None:
        """
        Add (or replace) documents with their passages.

        Raises:
            ValueError: passage ownership or index contiguity is broken.
        """
        for document, passages in items:
            validate_passage_sequence(document.doc_id, passages)
            if document.doc_id in self._documents:
                self._passages = [p for p in self._passages if p.doc_id != document.doc_id]
            self._documents[document.doc_id] = document
            self._passages.extend(sorted(passages, key=lambda p: p.idx))
        self._dirty = True
        logger.info(f"Store now holds {len(self._documents)} documents, {self.size} passages")

    @property
    def size(self) -> int:
        """Number of passages in the store."""
        return len(self._passages)

    @property
    def documents(self) -> list[Document]:
        return list(self._documents.values())

    @property
    def passages(self) -> list[Passage]:
        return list(self._passages)

    def get_document(self, doc_id: str) -> Optional[Document]:
        return self._documents.get(doc_id)

    def _build(self) -> None:
        """(Re)build BM25 and embedding matrices after a change."""
        if not self._dirty:
            return
        from rank_bm25 import BM25Okapi

        self._body_norm = [normalize(p.content) for p in self._passages]
        self._title_norm = [normalize(self._documents[p.doc_id].title) for p in self._passages]

        if self._passages:
            body_corpus = [tokenize(t) or ["_"] for t in self._body_norm]
            title_corpus = [tokenize(t) or ["_"] for t in self._title_norm]
            self._body_bm25 = BM25Okapi(body_corpus)
            self._title_bm25 = BM25Okapi(title_corpus)
        else:
            self._body_bm25 = None
            self._title_bm25 = None

        dims = {len(p.embedding) for p in self._passages if p.embedding}
        if len(dims) > 1:
            raise ValueError(f"Passages carry embeddings of different sizes: {sorted(dims)}")
        if dims:
            dim = dims.pop()
            matrix = np.zeros((len(self._passages), dim), dtype=np.float32)
            for i, p in enumerate(self._passages):
                if p.embedding:
                    matrix[i] = p.embedding
            norms = np.linalg.norm(matrix, axis=1, keepdims=True)
            self._embeddings = matrix / np.maximum(norms, 1e-12)
            self._has_embedding = norms.flatten() > 0
        else:
            self._embeddings = None
            self._has_embedding = None

        self._dirty = False
        logger.debug(f"Built BM25 + dense index over {self.size} passages")

    # ── Querying ───────────────────────────────────────────────────

    def _candidate_indices(self, filters: StoreFilters) -> list[int]:
        wanted = _upper_set(filters.jurisdictions)
        excluded = _upper_set(filters.exclude_jurisdictions) or set()
        types = _upper_set(filters.doc_types)

        indices = []
        for i, p in enumerate(self._passages):
            doc = self._documents[p.doc_id]
            juris = (doc.jurisdiction or "").upper()
            if filters.path_like and not path_matches(doc.path, filters.path_like):
                continue
            if juris and juris in excluded:
                continue
            if wanted is not None and juris not in wanted:
                continue
            if types is not None and (doc.doc_type or "").upper() not in types:
                continue
            if filters.year_min is not None and (doc.year is None or doc.year < filters.year_min):
                continue
            if filters.year_max is not None and (doc.year is None or doc.year > filters.year_max):
                continue
            indices.append(i)
        return indices

    def _similarities(self, vector: Optional[list[float]]) -> np.ndarray:
        if vector is None or self._embeddings is None:
            return np.zeros(len(self._passages), dtype=np.float32)
        q = np.asarray(vector, dtype=np.float32)
        if q.shape[0] != self._embeddings.shape[1]:
            raise ValueError(
                f"Query vector has {q.shape[0]} dimensions, store has {self._embeddings.shape[1]}"
            )
        norm = float(np.linalg.norm(q))
        if norm == 0:
            return np.zeros(len(self._passages), dtype=np.float32)
        sims = self._embeddings @ (q / norm)
        sims = np.where(self._has_embedding, sims, 0.0)
        return np.clip(sims, 0.0, 1.0)

    def _text_ranks(self, indices: list[int], expression: QueryExpression) -> dict[int, float]:
        matched = [
            i for i in indices
            if matches_expression(self._body_norm[i] + "\n" + self._title_norm[i], expression)
        ]
        if not matched:
            return {}
        query_tokens = [tok for term in expression.terms() for tok in tokenize(term)]
        body_scores = self._body_bm25.get_scores(query_tokens)
        title_scores = self._title_bm25.get_scores(query_tokens)
        raw = {i: max(0.0, float(body_scores[i]) + self.title_weight * float(title_scores[i])) for i in matched}
        best = max(raw.values())
        if best <= 0:
            return {i: 1.0 for i in matched}
        return {i: MIN_TEXT_RANK + (1.0 - MIN_TEXT_RANK) * (s / best) for i, s in raw.items()}

    def _row(self, i: int, similarity: float, text_rank: Optional[float]) -> RetrievedPassage:
        p = self._passages[i]
        doc = self._documents[p.doc_id]
        return RetrievedPassage(
            passage_id=p.passage_id,
            doc_id=p.doc_id,
            idx=p.idx,
            title=doc.title,
            path=doc.path,
            href=p.href,
            content=p.content,
            similarity=round(float(similarity), 6),
            text_rank=text_rank,
            jurisdiction=doc.jurisdiction,
            doc_type=doc.doc_type,
            year=doc.year,
            embedding=p.embedding,
        )

    def query(self, query: StoreQuery) -> StoreResult:
        t0 = time.perf_counter()
        self._build()

        indices = self._candidate_indices(query.filters)
        sims = self._similarities(query.vector)
        ranks = self._text_ranks(indices, query.expression) if indices and not query.expression.is_empty else {}

        scored: list[tuple[float, int, Optional[float]]] = []
        for i in indices:
            rank = ranks.get(i, 0.0)
            sim = float(sims[i])
            vector_hit = query.vector is not None and sim > 0 and sim >= query.min_similarity
            if rank > 0 or vector_hit:
                scored.append((rank + sim, i, rank))
        scored.sort(key=lambda t: (-t[0], t[1]))
        rows = [self._row(i, sims[i], rank) for _, i, rank in scored[:query.limit]]

        query_mode = QUERY_MODE_RANKED
        if not rows and indices:
            rows = self._substring_fallback(indices, query, sims)
            query_mode = QUERY_MODE_SUBSTRING

        elapsed_ms = (time.perf_counter() - t0) * 1000
        logger.debug(
            f"Store query {query.expression.render() or '<none>'!s} → {len(rows)} rows "
            f"({query_mode}, {elapsed_ms:.1f}ms)"
        )
        return StoreResult(rows=rows, query_mode=query_mode, elapsed_ms=elapsed_ms)

    def fallback_words(self, text: str) -> list[str]:
        words = list(dict.fromkeys(tokenize(text, min_length=self.fallback_min_word_length)))
        return words[:self.fallback_max_words]

    def _substring_fallback(
        self, indices: list[int], query: StoreQuery, sims: np.ndarray
    ) -> list[RetrievedPassage]:
        words = self.fallback_words(query.text)
        if not words:
            return []
        hits = []
        for i in indices:
            haystack = self._title_norm[i] + "\n" + self._body_norm[i]
            count = sum(1 for w in words if w in haystack)
            if count:
                hits.append((count, float(sims[i]), i))
        hits.sort(key=lambda t: (-t[0], -t[1], t[2]))
        return [self._row(i, sim, None) for _, sim, i in hits[:query.limit]]

    # ── Persistence ────────────────────────────────────────────────

    def save(self, path: str | Path) -> Path:
        """Save documents and passages (with embeddings) as JSON."""
        data = {
            "documents": [d.model_dump(mode="json") for d in self._documents.values()],
            "passages": [p.model_dump(mode="json") for p in self._passages],
        }
        out = save_json(data, path)
        logger.info(f"Saved store to {out} ({len(self._documents)} documents, {self.size} passages)")
        return out

    @classmethod
    def load(cls, path: str | Path, **kwargs) -> "PassageStore":
        """
        Load a store saved with `save`.

        Raises:
            StoreUnavailableError: the file is missing or unreadable.
        """
        try:
            data = load_json(path)
        except (OSError, ValueError) as e:
            raise StoreUnavailableError(f"Cannot open passage store at {path}: {e}") from e

        store = cls(**kwargs)
        documents = [Document.model_validate(d) for d in data.get("documents", [])]
        by_doc: dict[str, list[Passage]] = {d.doc_id: [] for d in documents}
        for raw in data.get("passages", []):
            passage = Passage.model_validate(raw)
            by_doc.setdefault(passage.doc_id, []).append(passage)
        store.add_documents([(d, by_doc[d.doc_id]) for d in documents])
        logger.info(f"Loaded store from {path} ({len(documents)} documents, {store.size} passages)")
        return store
