"""
Hybrid Scorer Tests
====================

Weight normalization and precedence, auto heuristics, boosts and the
blended score.
"""

from __future__ import annotations

import math

import pytest

from taxrag.config import ScoringConfig, WeightOverride
from taxrag.retrieve.scoring import (
    BlendWeights,
    HybridScorer,
    auto_text_weight,
    normalize_weights,
    recency_boost,
    resolve_weights,
    structural_boost,
)
from taxrag.schemas.retrieval import WeightSource
from tests.conftest import make_retrieved


class TestNormalizeWeights:
    @pytest.mark.parametrize("vector,text", [
        (0.0, 0.0), (1.0, 1.0), (0.3, 0.3), (0.9, 0.1), (5.0, -2.0), (0.0, 0.7), (0.25, 0.5),
    ])
    def test_always_sums_to_one(self, vector, text):
        v, t = normalize_weights(vector, text)
        assert math.isclose(v + t, 1.0)
        assert 0.0 <= v <= 1.0 and 0.0 <= t <= 1.0

    def test_zero_zero_is_even(self):
        assert normalize_weights(0.0, 0.0) == (0.5, 0.5)


class TestAutoWeights:
    def test_short_query_leans_text(self):
        assert auto_text_weight("monotributo") == pytest.approx(0.6)

    def test_legalistic_query(self):
        assert auto_text_weight("patente") == pytest.approx(0.6)

    def test_multi_word_leans_vector(self):
        assert auto_text_weight("requisitos monotributo categorías") == pytest.approx(0.45)

    def test_connectors_in_multi_word(self):
        assert auto_text_weight("requisitos del monotributo") == pytest.approx(0.43)

    def test_long_query(self):
        q = "cuáles son los requisitos y plazos vigentes actualmente hoy"
        assert auto_text_weight(q) == pytest.approx(0.40)

    def test_quoted_phrase(self):
        assert auto_text_weight('buscar "base imponible" ahora') == pytest.approx(0.35)


class TestResolveWeights:
    def test_auto(self):
        w = resolve_weights("monotributo")
        assert w.source == WeightSource.AUTO
        assert w.vector == pytest.approx(0.4)
        assert w.text == pytest.approx(0.6)

    def test_manual_single_side_gets_complement(self):
        w = resolve_weights("monotributo", manual_vector=0.8)
        assert w.source == WeightSource.MANUAL
        assert w.vector == pytest.approx(0.8)
        assert w.text == pytest.approx(0.2)

    def test_manual_pair_renormalized(self):
        w = resolve_weights("x", manual_vector=0.3, manual_text=0.3)
        assert (w.vector, w.text) == pytest.approx((0.5, 0.5))

    def test_phase_override_wins(self):
        w = resolve_weights(
            "x", manual_vector=0.9, manual_text=0.1,
            phase_override=WeightOverride(text_weight=1.0),
        )
        assert w.source == WeightSource.PHASE
        assert (w.vector, w.text) == pytest.approx((0.0, 1.0))

    def test_unset_phase_override_ignored(self):
        w = resolve_weights("x", manual_text=0.7, phase_override=WeightOverride())
        assert w.source == WeightSource.MANUAL

    def test_text_only(self):
        w = BlendWeights.text_only()
        assert (w.vector, w.text, w.source) == (0.0, 1.0, WeightSource.MANUAL)


class TestBoosts:
    def test_steps_heading(self):
        assert structural_boost("Intro\n## Pasos\n1. Ingresar") == pytest.approx(0.08)

    def test_errors_heading(self):
        assert structural_boost("## Errores comunes\n- Olvidar la clave") == pytest.approx(0.06)

    def test_steps_wins_over_errors(self):
        assert structural_boost("## Errores\nx\n## Pasos\ny") == pytest.approx(0.08)

    def test_heading_must_start_line(self):
        assert structural_boost("ver ## pasos") == 0.0

    def test_recency_linear_and_clamped(self):
        assert recency_boost(2019) == 0.0
        assert recency_boost(2024) == pytest.approx(0.015)
        assert recency_boost(2100) == pytest.approx(0.06)
        assert recency_boost(1950) == pytest.approx(-0.03)
        assert recency_boost(None) == 0.0


class TestHybridScorer:
    def test_blend(self):
        scorer = HybridScorer(ScoringConfig())
        p = make_retrieved("texto plano", similarity=0.5, text_rank=1.0, year=2019)
        w = BlendWeights(vector=0.4, text=0.6)
        assert scorer.score(p, w) == pytest.approx(0.4 * 0.5 + 0.6 * 1.0)

    def test_missing_text_rank_counts_zero(self):
        scorer = HybridScorer()
        p = make_retrieved("texto", similarity=0.5, text_rank=None)
        assert scorer.score(p, BlendWeights(vector=1.0, text=0.0)) == pytest.approx(0.5)

    def test_score_all_sorts_and_copies(self):
        scorer = HybridScorer()
        low = make_retrieved("a", similarity=0.1, text_rank=0.1)
        high = make_retrieved("b", similarity=0.9, text_rank=0.9)
        out = scorer.score_all([low, high], BlendWeights(vector=0.5, text=0.5))
        assert [p.passage_id for p in out] == [high.passage_id, low.passage_id]
        assert low.hybrid_score is None
        assert out[0].hybrid_score is not None
