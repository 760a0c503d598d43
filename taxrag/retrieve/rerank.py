"""
Reranker & Diversity Capper
============================

Post-processing of a scored candidate set:

- rerank(mode="lexical"): 0.6 × hybrid (or similarity) + 0.4 × fraction
  of question tokens (length >= 3) literally present in the passage
- rerank(mode="mmr"): greedy Maximal Marginal Relevance,
      λ × relevance − (1 − λ) × max_sim(candidate, selected)
  where passage-to-passage similarity is the cosine of their embeddings
  when both have one, otherwise the Jaccard overlap of their tokens
- dedupe_passages: drop repeated passage ids and identical content
- cap_per_document: keep at most `per_doc` passages of each document,
  the highest-scoring ones
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from taxrag.config import RerankConfig, RerankMode
from taxrag.nlp.lexicon import normalize, tokenize
from taxrag.schemas.retrieval import RetrievedPassage

logger = logging.getLogger("taxrag.retrieve.rerank")


def lexical_overlap(query_tokens: list[str], content: str) -> float:
    """Fraction of query tokens found as substrings of the normalized content."""
    if not query_tokens:
        return 0.0
    haystack = normalize(content)
    return sum(1 for tok in query_tokens if tok in haystack) / len(query_tokens)


def passage_similarity(a: RetrievedPassage, b: RetrievedPassage, min_token_length: int = 3) -> float:
    """Similarity in [0, 1] between two passages."""
    if a.embedding and b.embedding and len(a.embedding) == len(b.embedding):
        va = np.asarray(a.embedding, dtype=np.float32)
        vb = np.asarray(b.embedding, dtype=np.float32)
        denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
        if denom > 0:
            return float(np.clip(np.dot(va, vb) / denom, 0.0, 1.0))
    ta = set(tokenize(a.content, min_length=min_token_length))
    tb = set(tokenize(b.content, min_length=min_token_length))
    if not ta or not tb:
        return 1.0 if normalize(a.content).strip() == normalize(b.content).strip() else 0.0
    return len(ta & tb) / len(ta | tb)


def _lexical(question: str, candidates: list[RetrievedPassage], limit: int, cfg: RerankConfig):
    query_tokens = list(dict.fromkeys(tokenize(question, min_length=cfg.min_token_length)))
    scored = [
        (cfg.lexical_score_weight * c.score + cfg.lexical_overlap_weight * lexical_overlap(query_tokens, c.content), i)
        for i, c in enumerate(candidates)
    ]
    scored.sort(key=lambda t: (-t[0], t[1]))
    return [candidates[i] for _, i in scored[:limit]]


def _mmr(candidates: list[RetrievedPassage], limit: int, lam: float, cfg: RerankConfig):
    remaining = list(candidates)
    selected: list[RetrievedPassage] = []
    seen_ids: set[str] = set()
    while remaining and len(selected) < limit:
        best_index, best_score = 0, float("-inf")
        for i, cand in enumerate(remaining):
            diversity = max(
                (passage_similarity(cand, s, cfg.min_token_length) for s in selected),
                default=0.0,
            )
            score = lam * cand.score - (1 - lam) * diversity
            if score > best_score:
                best_index, best_score = i, score
        picked = remaining.pop(best_index)
        if picked.passage_id in seen_ids:
            continue
        seen_ids.add(picked.passage_id)
        selected.append(picked)
    return selected


def rerank(
    question: str,
    candidates: list[RetrievedPassage],
    mode: RerankMode = RerankMode.LEXICAL,
    limit: Optional[int] = None,
    lam: Optional[float] = None,
    config: Optional[RerankConfig] = None,
) -> list[RetrievedPassage]:
    """
    Reorder candidates and truncate to `limit`.

    Args:
        question: Raw question text.
        candidates: Scored passages.
        mode: LEXICAL or MMR.
        limit: Maximum results (default: all).
        lam: MMR λ; defaults to the configured value.
    """
    cfg = config or RerankConfig()
    limit = len(candidates) if limit is None else max(0, limit)
    if not candidates or limit == 0:
        return []
    if mode == RerankMode.MMR:
        return _mmr(candidates, limit, cfg.mmr_lambda if lam is None else lam, cfg)
    return _lexical(question, candidates, limit, cfg)


def dedupe_passages(passages: list[RetrievedPassage]) -> list[RetrievedPassage]:
    """Keep the first occurrence of each passage id and of each normalized content."""
    seen_ids: set[str] = set()
    seen_content: set[str] = set()
    out = []
    for p in passages:
        key = " ".join(normalize(p.content).split())
        if p.passage_id in seen_ids or key in seen_content:
            continue
        seen_ids.add(p.passage_id)
        seen_content.add(key)
        out.append(p)
    return out


def cap_per_document(passages: list[RetrievedPassage], per_doc: int) -> list[RetrievedPassage]:
    """
    Keep at most `per_doc` passages from each document.

    The survivors of each document are its highest-scoring passages; the
    output is ordered by score, best first.
    """
    per_doc = max(1, per_doc)
    ranked = sorted(enumerate(passages), key=lambda t: (-t[1].score, t[0]))
    counts: dict[str, int] = {}
    kept = []
    for _, p in ranked:
        if counts.get(p.doc_id, 0) >= per_doc:
            continue
        counts[p.doc_id] = counts.get(p.doc_id, 0) + 1
        kept.append(p)
    return kept
