"""
Hybrid Scorer
==============

Blends vector similarity and full-text rank into one score per passage:

    hybrid = vector_weight * similarity
           + text_weight   * text_rank
           + structural_boost
           + recency_boost

Blend weights:
    - auto: picked from the raw question (token count, legalistic
      keywords, quoted phrases, connectors)
    - manual: given by the caller
    - phase: forced by the config for one engine phase
    Whatever the source, weights are clamped to [0, 1] and renormalized
    to sum to 1 (0/0 becomes 0.5/0.5).

Boosts:
    - structural: "## Pasos" (+0.08) or else "## Errores comunes" (+0.06)
    - recency:    (year - 2019) * 0.003 clamped to [-0.03, +0.06]
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

from taxrag.config import ScoringConfig, WeightOverride
from taxrag.nlp.lexicon import normalize
from taxrag.schemas.retrieval import RetrievedPassage, WeightSource

logger = logging.getLogger("taxrag.retrieve.scoring")

_STEPS_HEADING = re.compile(r"(^|\n)##\s*pasos", re.IGNORECASE)
_ERRORS_HEADING = re.compile(r"(^|\n)##\s*errores(\s+comunes)?", re.IGNORECASE)
_QUOTED_PHRASE = re.compile(r'"[^"]+"')


@dataclass(frozen=True)
class BlendWeights:
    """Normalized vector/text weights and where they came from."""
    vector: float
    text: float
    source: WeightSource = WeightSource.AUTO

    @classmethod
    def text_only(cls) -> "BlendWeights":
        """Degraded mode used when the embedding service is unavailable."""
        return cls(vector=0.0, text=1.0, source=WeightSource.MANUAL)


def normalize_weights(vector: float, text: float) -> tuple[float, float]:
    """Clamp both to [0, 1] and rescale to sum 1; 0/0 → 0.5/0.5."""
    vector = min(max(vector, 0.0), 1.0)
    text = min(max(text, 0.0), 1.0)
    total = vector + text
    if total == 0:
        return 0.5, 0.5
    return vector / total, text / total


def query_token_count(question: str) -> int:
    return len(question.split())


def auto_text_weight(question: str, config: Optional[ScoringConfig] = None) -> float:
    """Text weight suggested by the shape of the question."""
    cfg = config or ScoringConfig()
    tokens = query_token_count(question)
    multi_word = tokens >= cfg.multi_word_tokens
    long_query = tokens >= cfg.long_query_tokens
    legalistic = re.search(cfg.legalistic_pattern, question, re.IGNORECASE) is not None
    has_phrase = _QUOTED_PHRASE.search(question) is not None
    has_connectors = re.search(cfg.connector_pattern, question, re.IGNORECASE) is not None

    weight = cfg.base_text_weight
    if tokens <= cfg.short_query_tokens:
        weight = cfg.short_text_weight
    if legalistic:
        weight = max(weight, cfg.legalistic_text_weight)
    if multi_word:
        weight = min(weight, cfg.multi_word_text_weight)
    if long_query:
        weight = min(weight, cfg.long_query_text_weight)
    if has_phrase:
        weight = min(weight, cfg.phrase_text_weight)
    if has_connectors and multi_word:
        weight = min(weight, cfg.connector_text_weight)
    return weight


def resolve_weights(
    question: str,
    manual_vector: Optional[float] = None,
    manual_text: Optional[float] = None,
    phase_override: Optional[WeightOverride] = None,
    config: Optional[ScoringConfig] = None,
) -> BlendWeights:
    """
    Pick blend weights with precedence phase override > manual > auto.

    When only one side of a pair is given, the other is its complement.
    """
    if phase_override is not None and phase_override.is_set:
        vector, text, source = phase_override.vector_weight, phase_override.text_weight, WeightSource.PHASE
    elif manual_vector is not None or manual_text is not None:
        vector, text, source = manual_vector, manual_text, WeightSource.MANUAL
    else:
        text = auto_text_weight(question, config)
        vector, source = 1.0 - text, WeightSource.AUTO

    if vector is None:
        vector = 1.0 - text
    if text is None:
        text = 1.0 - vector
    v, t = normalize_weights(vector, text)
    return BlendWeights(vector=v, text=t, source=source)


def structural_boost(content: str, config: Optional[ScoringConfig] = None) -> float:
    cfg = config or ScoringConfig()
    text = normalize(content)
    if _STEPS_HEADING.search(text):
        return cfg.steps_heading_boost
    if _ERRORS_HEADING.search(text):
        return cfg.errors_heading_boost
    return 0.0


def recency_boost(year: Optional[int], config: Optional[ScoringConfig] = None) -> float:
    cfg = config or ScoringConfig()
    if year is None:
        return 0.0
    boost = (year - cfg.reference_year) * cfg.recency_slope
    return min(max(boost, cfg.recency_min), cfg.recency_max)


class HybridScorer:
    """
    Applies the blend to candidate passages.

    Usage:
        scorer = HybridScorer(config.scoring)
        weights = resolve_weights(question, config=config.scoring)
        scored = scorer.score_all(rows, weights)
    """

    def __init__(self, config: Optional[ScoringConfig] = None):
        self.config = config or ScoringConfig()

    def score(self, passage: RetrievedPassage, weights: BlendWeights) -> float:
        text_rank = passage.text_rank or 0.0
        return (
            weights.vector * passage.similarity
            + weights.text * text_rank
            + structural_boost(passage.content, self.config)
            + recency_boost(passage.year, self.config)
        )

    def score_all(self, passages: list[RetrievedPassage], weights: BlendWeights) -> list[RetrievedPassage]:
        """Copies of the passages with `hybrid_score` filled in, sorted best first."""
        scored = [
            p.model_copy(update={"hybrid_score": round(self.score(p, weights), 6)})
            for p in passages
        ]
        scored.sort(key=lambda p: p.hybrid_score, reverse=True)
        return scored
