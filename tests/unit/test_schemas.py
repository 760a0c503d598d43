"""
Schema Tests
=============

Data contracts for documents, passages, query expressions, search
options/results and claims: construction, validators and serialization.
"""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from taxrag.schemas.claims import Claim, ClaimStatus
from taxrag.schemas.documents import Document, Passage, validate_passage_sequence
from taxrag.schemas.retrieval import QueryExpression, SearchOptions, SearchResult
from tests.conftest import make_document, make_passages, make_retrieved


class TestDocument:
    def test_codes_upper_cased(self):
        doc = Document(doc_id="d", path="provincial\\d.md", jurisdiction=" ar-ba ", doc_type="ley")
        assert doc.path == "provincial/d.md"
        assert (doc.jurisdiction, doc.doc_type) == ("AR-BA", "LEY")

    def test_blank_code_becomes_none(self):
        assert Document(doc_id="d", path="d.md", jurisdiction="  ").jurisdiction is None

    @pytest.mark.parametrize("year", [1899, 2101])
    def test_year_range(self, year):
        with pytest.raises(ValidationError):
            make_document(year=year)


class TestPassage:
    def test_offsets_must_increase(self):
        with pytest.raises(ValidationError):
            Passage(passage_id="d#0", doc_id="d", idx=0, start=5, end=5, href="d.md#0", content="x")

    def test_negative_index_rejected(self):
        with pytest.raises(ValidationError):
            Passage(passage_id="d#0", doc_id="d", idx=-1, start=0, end=1, href="d.md#0", content="x")

    def test_sequence_validation(self):
        doc = make_document("d")
        passages = make_passages(doc, ["uno", "dos"])
        validate_passage_sequence("d", passages)
        with pytest.raises(ValueError):
            validate_passage_sequence("otro", passages)
        with pytest.raises(ValueError):
            validate_passage_sequence("d", passages[1:])


class TestQueryExpression:
    def test_all_of_drops_empty_groups(self):
        expr = QueryExpression.all_of([["exencion", "exento"], [], ["automotor"]])
        assert expr.clauses == (("exencion", "exento"), ("automotor",))
        assert expr.render() == '("exencion" OR "exento") ("automotor")'

    def test_any_of_dedupes(self):
        expr = QueryExpression.any_of(["iva", "iva", " ", "ganancias"])
        assert expr.clauses == (("iva", "ganancias"),)
        assert expr.terms() == ["iva", "ganancias"]

    def test_empty(self):
        assert QueryExpression.any_of([]).is_empty
        assert QueryExpression().render() == ""


class TestRetrieved:
    def test_score_prefers_hybrid(self):
        assert make_retrieved(similarity=0.4).score == 0.4
        assert make_retrieved(similarity=0.4, hybrid_score=0.9).score == 0.9

    def test_embedding_not_serialized(self):
        p = make_retrieved(embedding=[0.1, 0.2])
        assert "embedding" not in json.loads(p.model_dump_json())

    def test_similarity_bounds(self):
        with pytest.raises(ValidationError):
            make_retrieved(similarity=1.5)

    def test_result_roundtrip(self):
        result = SearchResult(query="q", passages=[make_retrieved("texto")])
        restored = SearchResult.model_validate_json(result.model_dump_json())
        assert restored.passages[0].content == "texto"
        assert not restored.is_empty


class TestSearchOptions:
    @pytest.mark.parametrize("field,value", [
        ("k", 0), ("per_doc", 0), ("min_similarity", 1.0), ("vector_weight", 1.5), ("text_weight", -0.1),
    ])
    def test_bounds(self, field, value):
        with pytest.raises(ValidationError):
            SearchOptions(**{field: value})

    def test_defaults(self):
        opts = SearchOptions()
        assert opts.use_anchors and not opts.authenticated and not opts.jurisdiction_from_query


def test_claim_support_flag():
    assert Claim(sentence="x", status=ClaimStatus.SUPPORTED, citations=["a#0"]).is_supported
    assert not Claim(sentence="x", status="no_evidence").is_supported
