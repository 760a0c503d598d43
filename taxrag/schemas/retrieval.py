"""
Retrieval Schema
=================

Defines what a search call takes and returns:
- SearchOptions:    per-call knobs (k, diversity, filters, weights, auth)
- RetrievedPassage: a Passage joined with its Document and decorated with
                    vector similarity, text rank and hybrid score
- SearchMetrics:    timing and scoring telemetry for one call
- SearchResult:     passages + metrics

All of these are transient: they live for the duration of one call
and are serialized by callers into whatever transport they use.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from taxrag.config import RerankMode


class SearchPhase(str, Enum):
    """The four ordered phases of the retrieval engine."""
    LEXICAL_STRICT = "lexical-strict"
    MMR_EXPANDED = "mmr-expanded"
    RELAXED = "relaxed"
    FALLBACK = "fallback"


class WeightSource(str, Enum):
    """Where the blend weights of a call came from."""
    AUTO = "auto"
    MANUAL = "manual"
    PHASE = "phase"


class QueryExpression(BaseModel):
    """
    A full-text query as an AND of OR-clauses.

    Each clause is a list of terms (words or multi-word phrases); a
    passage matches when every clause has at least one term in it.

        QueryExpression(clauses=[["exención", "exento"], ["automotor"]])
        renders as  ("exención" OR "exento") ("automotor")
    """
    model_config = {"frozen": True}

    clauses: tuple[tuple[str, ...], ...] = Field(default=())

    @classmethod
    def all_of(cls, groups: list[tuple[str, ...]] | list[list[str]]) -> "QueryExpression":
        """One OR-clause per group, all required."""
        return cls(clauses=tuple(tuple(g) for g in groups if g))

    @classmethod
    def any_of(cls, terms: list[str] | tuple[str, ...]) -> "QueryExpression":
        """A single OR-clause of distinct terms."""
        distinct = tuple(dict.fromkeys(t for t in terms if t and t.strip()))
        return cls(clauses=(distinct,) if distinct else ())

    @property
    def is_empty(self) -> bool:
        return not self.clauses

    def terms(self) -> list[str]:
        """All distinct terms in clause order."""
        return list(dict.fromkeys(t for clause in self.clauses for t in clause))

    def render(self) -> str:
        return " ".join(
            "(" + " OR ".join(f'"{t}"' for t in clause) + ")" for clause in self.clauses
        )


class RetrievedPassage(BaseModel):
    """
    A passage as returned by a search.

    `text_rank` is None for rows that came from the store's substring
    fallback (no full-text rank was computed for them).
    """
    passage_id: str
    doc_id: str
    idx: int = 0
    title: str = ""
    path: str = ""
    href: str = "#"
    content: str
    similarity: float = Field(default=0.0, ge=0.0, le=1.0, description="Cosine similarity, 0 without embedding")
    text_rank: Optional[float] = Field(default=None, description="Full-text relevance")
    hybrid_score: Optional[float] = Field(default=None, description="Blended score")
    jurisdiction: Optional[str] = None
    doc_type: Optional[str] = None
    year: Optional[int] = None
    phase: Optional[SearchPhase] = Field(default=None, description="Phase that produced this passage")
    embedding: Optional[list[float]] = Field(default=None, exclude=True, repr=False)

    @property
    def score(self) -> float:
        """Best available relevance: hybrid score, else similarity."""
        return self.hybrid_score if self.hybrid_score is not None else self.similarity


class SearchOptions(BaseModel):
    """
    Per-call options.

    Weights given here are "manual" and lose to per-phase overrides from
    the config. `min_similarity` here overrides every phase floor.
    """
    k: Optional[int] = Field(default=None, ge=1, description="Final result count")
    per_doc: Optional[int] = Field(default=None, ge=1, description="Max passages per document")
    min_similarity: Optional[float] = Field(default=None, ge=0.0, le=0.999)
    path_like: Optional[str] = Field(default=None, description="Case-insensitive path pattern, '%' wildcard")
    jurisdictions: Optional[list[str]] = None
    doc_types: Optional[list[str]] = None
    year_min: Optional[int] = None
    year_max: Optional[int] = None
    authenticated: bool = False
    rerank_mode: Optional[RerankMode] = Field(default=None, description="Overrides each phase's mode")
    rerank_limit: Optional[int] = Field(default=None, ge=1)
    vector_weight: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    text_weight: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    jurisdiction_hint: Optional[str] = Field(default=None, description="e.g. 'AR-BA'; adds anchors and a path prefix")
    jurisdiction_from_query: bool = Field(
        default=False,
        description="Use jurisdictions detected in the question as a store filter"
    )
    use_anchors: bool = Field(default=True, description="False = unrestricted search only")


class SearchMetrics(BaseModel):
    """Telemetry for one search call."""
    embedding_ms: float = 0.0
    store_ms: float = 0.0
    k: int = 0
    similarity_avg: float = 0.0
    similarity_min: float = 0.0
    hybrid_avg: Optional[float] = None
    hybrid_min: Optional[float] = None
    reranked: bool = False
    restricted_count: int = 0
    vector_weight: float = 0.5
    text_weight: float = 0.5
    weight_source: WeightSource = WeightSource.AUTO
    phase: Optional[SearchPhase] = None
    phases_tried: list[SearchPhase] = Field(default_factory=list)
    relaxed: bool = False
    fallback: bool = False
    vector_fallback: bool = False
    query_mode: Optional[str] = Field(default=None, description="'ranked' or 'substring-fallback'")
    tokens: int = 0
    intent: Optional[str] = None
    min_hits: int = 0
    anchor_groups: list[str] = Field(default_factory=list)
    config_hash: Optional[str] = None


class SearchResult(BaseModel):
    """Output of `RetrievalEngine.search`."""
    query: str
    passages: list[RetrievedPassage] = Field(default_factory=list)
    metrics: SearchMetrics = Field(default_factory=SearchMetrics)
    inferred_jurisdictions: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.passages
