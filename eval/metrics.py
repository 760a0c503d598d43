"""
Evaluation Metrics
===================

Retrieval-quality metrics over batches of search calls.
Categorized into:
    - Ranking metrics: hit rate @k, mean reciprocal rank
    - Engine behaviour: phase distribution, vector-fallback rate
    - Grounding metrics: claim support rate
    - Latency metrics: per-stage timing percentiles
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Sequence

import numpy as np

from taxrag.schemas.claims import Claim
from taxrag.schemas.retrieval import SearchResult

logger = logging.getLogger("taxrag.eval.metrics")


# ───────────────────── Ranking Metrics ──────────────────────────

def _first_relevant_rank(result: SearchResult, relevant: set[str]) -> int | None:
    """1-based rank of the first passage whose doc_id or href is relevant."""
    for rank, p in enumerate(result.passages, start=1):
        if p.doc_id in relevant or p.href in relevant:
            return rank
    return None


def hit_rate_at_k(
    results: Sequence[SearchResult],
    relevant: Sequence[set[str]],
    k: int,
) -> float:
    """
    Fraction of queries with a relevant passage in the top k.

    Args:
        results: One SearchResult per query.
        relevant: Per query, the relevant doc_ids and/or hrefs.
        k: Cutoff.

    Returns:
        Hit rate in [0, 1].
    """
    if len(results) != len(relevant):
        raise ValueError("Results and relevance judgments must have same length")
    if not results:
        return 0.0
    hits = 0
    for result, rel in zip(results, relevant):
        rank = _first_relevant_rank(result, rel)
        if rank is not None and rank <= k:
            hits += 1
    return hits / len(results)


def mean_reciprocal_rank(
    results: Sequence[SearchResult],
    relevant: Sequence[set[str]],
) -> float:
    """MRR over queries; a query with no relevant passage contributes 0."""
    if len(results) != len(relevant):
        raise ValueError("Results and relevance judgments must have same length")
    if not results:
        return 0.0
    total = 0.0
    for result, rel in zip(results, relevant):
        rank = _first_relevant_rank(result, rel)
        if rank is not None:
            total += 1.0 / rank
    return total / len(results)


# ───────────────────── Engine Behaviour ─────────────────────────

def phase_distribution(results: Sequence[SearchResult]) -> dict[str, float]:
    """Share of calls accepted by each phase."""
    if not results:
        return {}
    counts = Counter(
        r.metrics.phase.value if r.metrics.phase else "none" for r in results
    )
    return {phase: n / len(results) for phase, n in sorted(counts.items())}


def vector_fallback_rate(results: Sequence[SearchResult]) -> float:
    if not results:
        return 0.0
    return sum(1 for r in results if r.metrics.vector_fallback) / len(results)


# ───────────────────── Grounding Metrics ────────────────────────

def claim_support_rate(claims: Sequence[Claim]) -> float:
    """Fraction of sentences marked supported."""
    if not claims:
        return 0.0
    return sum(1 for c in claims if c.is_supported) / len(claims)


# ───────────────────── Latency Metrics ──────────────────────────

def latency_stats(
    timings: list[dict[str, float]],
) -> dict[str, dict[str, float]]:
    """
    Aggregate latency statistics across runs.

    Args:
        timings: List of timing dicts (e.g. AnswerResult.timings or
            {"embedding_ms": ..., "store_ms": ...} per search).

    Returns:
        Dict mapping stage → {mean, p50, p95, p99}.
    """
    if not timings:
        return {}

    keys = set()
    for t in timings:
        keys.update(t.keys())

    result = {}
    for key in sorted(keys):
        values = [t[key] for t in timings if key in t]
        if values:
            arr = np.array(values, dtype=float)
            result[key] = {
                "mean": float(arr.mean()),
                "p50": float(np.percentile(arr, 50)),
                "p95": float(np.percentile(arr, 95)),
                "p99": float(np.percentile(arr, 99)),
            }
    return result


def search_timings(results: Sequence[SearchResult]) -> list[dict[str, float]]:
    """Timing dicts suitable for `latency_stats`."""
    return [
        {"embedding_ms": r.metrics.embedding_ms, "store_ms": r.metrics.store_ms}
        for r in results
    ]
