"""
Passage Store Tests
====================

Filters, text rank scaling, vector search, substring fallback,
persistence and load-time validation of the in-memory store.
"""

from __future__ import annotations

import pytest

from taxrag.ingest.indexer import (
    QUERY_MODE_RANKED,
    QUERY_MODE_SUBSTRING,
    PassageStore,
    StoreFilters,
    StoreQuery,
    StoreUnavailableError,
    path_matches,
)
from taxrag.schemas.retrieval import QueryExpression
from tests.conftest import make_document, make_passages


def _query(text="", terms=None, **kwargs) -> StoreQuery:
    expression = QueryExpression.any_of(terms) if terms else QueryExpression()
    return StoreQuery(text=text, expression=expression, **kwargs)


class TestTextRank:
    def test_only_matching_passages_ranked(self, text_store):
        result = text_store.query(_query("automotor", ["automotor"]))
        assert result.query_mode == QUERY_MODE_RANKED
        assert {r.doc_id for r in result.rows} == {"ar-ba-automotor"}

    def test_rank_scaled_into_range(self, text_store):
        result = text_store.query(_query("ingresos brutos", ["ingresos brutos"]))
        ranks = [r.text_rank for r in result.rows]
        assert ranks
        assert all(0.1 <= r <= 1.0 for r in ranks)
        assert max(ranks) == pytest.approx(1.0)

    def test_all_clauses_required(self, text_store):
        expression = QueryExpression.all_of([["exencion", "exento"], ["pymes"]])
        result = text_store.query(StoreQuery(text="x", expression=expression))
        assert [r.passage_id for r in result.rows] == ["ar-ba-pyme#0"]

    def test_limit(self, text_store):
        result = text_store.query(_query("ingresos", ["ingresos"], limit=1))
        assert len(result.rows) == 1

    def test_rows_carry_document_metadata(self, text_store):
        row = text_store.query(_query("monotributo", ["monotributo"])).rows[0]
        assert row.jurisdiction == "AR-NACION"
        assert row.path == "nacional/monotributo.md"
        assert row.title == "Monotributo"
        assert row.similarity == 0.0


class TestFilters:
    def test_jurisdiction_allow_list(self, text_store):
        result = text_store.query(_query("impuesto", ["impuesto"],
                                         filters=StoreFilters(jurisdictions=["ar-nacion"])))
        assert {r.doc_id for r in result.rows} == {"nacion-monotributo"}

    def test_jurisdiction_exclusion(self, text_store):
        result = text_store.query(_query("ingresos brutos", ["ingresos brutos"],
                                         filters=StoreFilters(exclude_jurisdictions=["AR-CABA"])))
        assert result.rows
        assert all(r.jurisdiction != "AR-CABA" for r in result.rows)

    def test_path_like(self, text_store):
        result = text_store.query(_query("impuesto", ["impuesto"],
                                         filters=StoreFilters(path_like="nacional/%")))
        assert {r.doc_id for r in result.rows} == {"nacion-monotributo"}

    def test_doc_types(self, text_store):
        result = text_store.query(_query("pymes", ["pymes"], filters=StoreFilters(doc_types=["resolucion"])))
        assert {r.doc_type for r in result.rows} == {"RESOLUCION"}

    def test_year_bounds_exclude_unknown_years(self):
        store = PassageStore()
        dated = make_document("dated", year=2025)
        undated = make_document("undated", year=None)
        store.add_documents([
            (dated, make_passages(dated, ["alícuota general"])),
            (undated, make_passages(undated, ["alícuota general"])),
        ])
        result = store.query(_query("alicuota", ["alicuota"], filters=StoreFilters(year_min=2024)))
        assert [r.doc_id for r in result.rows] == ["dated"]

    @pytest.mark.parametrize("path,pattern,expected", [
        ("provincial/ar-ba-ley.md", "provincial/%", True),
        ("provincial/ar-ba-ley.md", "AR-BA", True),
        ("provincial/ar-ba-ley.md", "%.txt", False),
        ("nacional/monotributo.md", "provincial/%", False),
        ("provincial/ar-ba-ley.md", "%ba%ley%", True),
    ])
    def test_path_matches(self, path, pattern, expected):
        assert path_matches(path, pattern) is expected


class TestVectorSearch:
    def test_own_embedding_ranks_first(self, store):
        target = next(p for p in store.passages if p.passage_id == "ar-ba-automotor#0")
        result = store.query(StoreQuery(text="", vector=target.embedding))
        assert result.rows[0].passage_id == "ar-ba-automotor#0"
        assert result.rows[0].similarity == pytest.approx(1.0, abs=1e-4)

    def test_min_similarity_drops_vector_only_rows(self, store):
        target = next(p for p in store.passages if p.passage_id == "ar-ba-automotor#0")
        result = store.query(StoreQuery(text="", vector=target.embedding, min_similarity=0.999))
        assert [r.passage_id for r in result.rows] == ["ar-ba-automotor#0"]

    def test_dimension_mismatch(self, store):
        with pytest.raises(ValueError):
            store.query(StoreQuery(text="", vector=[1.0, 0.0]))


class TestSubstringFallback:
    def test_used_when_nothing_ranks(self, text_store):
        result = text_store.query(_query("vehículos adaptados", ["inexistente"]))
        assert result.query_mode == QUERY_MODE_SUBSTRING
        assert [r.passage_id for r in result.rows] == ["ar-ba-automotor#0"]
        assert result.rows[0].text_rank is None

    def test_orders_by_word_hits(self, text_store):
        result = text_store.query(_query("certificado mipyme alicuota"))
        assert result.rows[0].passage_id == "ar-ba-pyme#1"

    def test_fallback_words(self):
        store = PassageStore(fallback_max_words=2)
        assert store.fallback_words("de la ley del IVA ley") == ["ley", "del"]

    def test_no_words_no_rows(self, text_store):
        result = text_store.query(_query("de la"))
        assert result.rows == []


class TestLoading:
    def test_rejects_foreign_passage(self):
        doc = make_document("a")
        other = make_document("b")
        with pytest.raises(ValueError):
            PassageStore().add_documents([(doc, make_passages(other, ["texto"]))])

    def test_rejects_gaps(self):
        doc = make_document("a")
        passages = make_passages(doc, ["uno", "dos", "tres"])
        with pytest.raises(ValueError):
            PassageStore().add_documents([(doc, [passages[0], passages[2]])])

    def test_replaces_document(self):
        store = PassageStore()
        doc = make_document("a")
        store.add_documents([(doc, make_passages(doc, ["uno", "dos"]))])
        store.add_documents([(doc, make_passages(doc, ["tres"]))])
        assert store.size == 1
        assert store.passages[0].content == "tres"

    def test_empty_store(self):
        result = PassageStore().query(_query("algo", ["algo"]))
        assert result.rows == []


class TestPersistence:
    def test_save_and_load(self, store, tmp_path):
        path = store.save(tmp_path / "store.json")
        loaded = PassageStore.load(path)
        assert loaded.size == store.size
        assert {d.doc_id for d in loaded.documents} == {d.doc_id for d in store.documents}
        assert loaded.passages[0].embedding is not None

    def test_missing_file(self, tmp_path):
        with pytest.raises(StoreUnavailableError):
            PassageStore.load(tmp_path / "missing.json")

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(StoreUnavailableError):
            PassageStore.load(path)
