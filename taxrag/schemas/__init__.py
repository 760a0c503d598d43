"""
TaxRAG Data Schemas
====================

Pydantic v2 models for the data contracts of the engine:

1. Document / Passage  : the read-only corpus
2. RetrievedPassage    : a scored passage returned by a search
3. SearchOptions / SearchMetrics / SearchResult: search call contract
4. Claim               : sentence-level grounding outcome
"""

from taxrag.schemas.documents import (
    Document,
    Passage,
    validate_passage_sequence,
)
from taxrag.schemas.retrieval import (
    QueryExpression,
    RetrievedPassage,
    SearchMetrics,
    SearchOptions,
    SearchPhase,
    SearchResult,
    WeightSource,
)
from taxrag.schemas.claims import (
    Claim,
    ClaimStatus,
)

__all__ = [
    # Corpus
    "Document",
    "Passage",
    "validate_passage_sequence",
    # Retrieval
    "QueryExpression",
    "RetrievedPassage",
    "SearchMetrics",
    "SearchOptions",
    "SearchPhase",
    "SearchResult",
    "WeightSource",
    # Claims
    "Claim",
    "ClaimStatus",
]
