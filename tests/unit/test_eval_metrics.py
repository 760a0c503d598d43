"""Evaluation metric tests over hand-built search results."""

from __future__ import annotations

import pytest

from eval.metrics import (
    claim_support_rate,
    hit_rate_at_k,
    latency_stats,
    mean_reciprocal_rank,
    phase_distribution,
    search_timings,
    vector_fallback_rate,
)
from taxrag.schemas.claims import Claim, ClaimStatus
from taxrag.schemas.retrieval import SearchMetrics, SearchPhase, SearchResult
from tests.conftest import make_retrieved


def _result(doc_ids, phase=SearchPhase.LEXICAL_STRICT, vector_fallback=False) -> SearchResult:
    return SearchResult(
        query="q",
        passages=[make_retrieved(doc_id=d) for d in doc_ids],
        metrics=SearchMetrics(phase=phase, vector_fallback=vector_fallback, embedding_ms=10.0, store_ms=5.0),
    )


class TestRanking:
    def test_hit_rate(self):
        results = [_result(["a", "b"]), _result(["c", "d", "e"])]
        relevant = [{"b"}, {"e"}]
        assert hit_rate_at_k(results, relevant, k=2) == 0.5
        assert hit_rate_at_k(results, relevant, k=3) == 1.0

    def test_mrr(self):
        results = [_result(["a", "b"]), _result(["x"])]
        assert mean_reciprocal_rank(results, [{"b"}, {"y"}]) == pytest.approx(0.25)

    def test_length_mismatch(self):
        with pytest.raises(ValueError):
            hit_rate_at_k([_result(["a"])], [], k=1)

    def test_empty(self):
        assert hit_rate_at_k([], [], k=3) == 0.0
        assert mean_reciprocal_rank([], []) == 0.0


class TestEngineBehaviour:
    def test_phase_distribution(self):
        results = [
            _result(["a"]),
            _result(["a"], phase=SearchPhase.FALLBACK),
            _result([], phase=None),
            _result(["a"]),
        ]
        assert phase_distribution(results) == {"fallback": 0.25, "lexical-strict": 0.5, "none": 0.25}

    def test_vector_fallback_rate(self):
        results = [_result(["a"], vector_fallback=True), _result(["a"])]
        assert vector_fallback_rate(results) == 0.5
        assert vector_fallback_rate([]) == 0.0


class TestGroundingAndLatency:
    def test_claim_support_rate(self):
        claims = [
            Claim(sentence="a", status=ClaimStatus.SUPPORTED, citations=["x#0"]),
            Claim(sentence="b", status=ClaimStatus.NO_EVIDENCE),
        ]
        assert claim_support_rate(claims) == 0.5
        assert claim_support_rate([]) == 0.0

    def test_latency_stats(self):
        stats = latency_stats(search_timings([_result(["a"]), _result(["b"])]))
        assert stats["embedding_ms"]["mean"] == 10.0
        assert stats["store_ms"]["p95"] == 5.0
        assert latency_stats([]) == {}
