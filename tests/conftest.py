"""
TaxRAG Test Configuration
==========================

Shared fixtures, factories, and test doubles for the entire test suite.

Test doubles:
    - HashingEmbedder:  deterministic bag-of-words vectors (no network)
    - FailingEmbedder:  always raises EmbeddingServiceUnavailableError
    - RecordingStore:   wraps a store and records every query it receives
    - FailingStore:     always raises StoreUnavailableError
"""

from __future__ import annotations

import hashlib
import uuid
from typing import Optional

import numpy as np
import pytest

from taxrag.config import TaxRAGConfig
from taxrag.ingest.embedder import EmbeddingService, EmbeddingServiceUnavailableError, l2_normalize
from taxrag.ingest.indexer import (
    PassageStore,
    RetrievalStore,
    StoreQuery,
    StoreResult,
    StoreUnavailableError,
)
from taxrag.nlp.lexicon import tokenize
from taxrag.retrieve.engine import RetrievalEngine
from taxrag.schemas.documents import Document, Passage
from taxrag.schemas.retrieval import RetrievedPassage


# ── Markers ─────────────────────────────────────────────────────

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: fast unit tests")
    config.addinivalue_line("markers", "integration: multi-component tests")


# ── Test doubles ────────────────────────────────────────────────

class HashingEmbedder(EmbeddingService):
    """Bag-of-words vectors hashed into a fixed number of buckets."""

    def __init__(self, dimension: int = 64):
        super().__init__(dimension)
        self.calls: list[list[str]] = []

    def embed_texts(self, texts: list[str]) -> np.ndarray:
        self.calls.append(list(texts))
        matrix = np.zeros((len(texts), self._dimension), dtype=np.float32)
        for row, text in enumerate(texts):
            for tok in tokenize(text, min_length=3):
                bucket = int(hashlib.md5(tok.encode("utf-8")).hexdigest(), 16) % self._dimension
                matrix[row, bucket] += 1.0
        return l2_normalize(matrix)


class FailingEmbedder(EmbeddingService):
    """Simulates an embedding backend that is down."""

    def __init__(self):
        super().__init__(None)
        self.calls = 0

    def embed_texts(self, texts: list[str]) -> np.ndarray:
        self.calls += 1
        raise EmbeddingServiceUnavailableError("connection refused")


class RecordingStore(RetrievalStore):
    """Delegates to an inner store and keeps every StoreQuery."""

    def __init__(self, inner: RetrievalStore):
        self.inner = inner
        self.queries: list[StoreQuery] = []

    def query(self, query: StoreQuery) -> StoreResult:
        self.queries.append(query)
        return self.inner.query(query)


class FailingStore(RetrievalStore):
    def __init__(self):
        self.calls = 0

    def query(self, query: StoreQuery) -> StoreResult:
        self.calls += 1
        raise StoreUnavailableError("database is down")


# ── Factories ───────────────────────────────────────────────────

def make_document(
    doc_id: str = "doc_0",
    path: Optional[str] = None,
    title: str = "Documento",
    jurisdiction: Optional[str] = "AR-BA",
    doc_type: Optional[str] = "LEY",
    year: Optional[int] = 2023,
) -> Document:
    """Factory for creating test documents."""
    return Document(
        doc_id=doc_id,
        path=path or f"provincial/{doc_id}.md",
        title=title,
        jurisdiction=jurisdiction,
        doc_type=doc_type,
        year=year,
    )


def make_passages(document: Document, contents: list[str]) -> list[Passage]:
    """Factory for a document's passages, offsets laid end to end."""
    passages = []
    offset = 0
    for idx, content in enumerate(contents):
        passages.append(Passage(
            passage_id=f"{document.doc_id}#{idx}",
            doc_id=document.doc_id,
            idx=idx,
            start=offset,
            end=offset + len(content),
            href=f"{document.path}#{idx}",
            content=content,
        ))
        offset += len(content) + 1
    return passages


def make_retrieved(
    content: str = "Texto por defecto.",
    doc_id: str = "doc_0",
    passage_id: Optional[str] = None,
    similarity: float = 0.5,
    hybrid_score: Optional[float] = None,
    text_rank: Optional[float] = None,
    embedding: Optional[list[float]] = None,
    year: Optional[int] = None,
) -> RetrievedPassage:
    """Factory for creating retrieved passages."""
    if passage_id is None:
        passage_id = f"p_{uuid.uuid4().hex[:8]}"
    return RetrievedPassage(
        passage_id=passage_id,
        doc_id=doc_id,
        title=f"Doc {doc_id}",
        href=f"{doc_id}#{passage_id}",
        content=content,
        similarity=similarity,
        hybrid_score=hybrid_score,
        text_rank=text_rank,
        embedding=embedding,
        year=year,
    )


def embed_corpus(items, embedder: EmbeddingService):
    """Attach embeddings to every passage of (Document, [Passage]) items."""
    out = []
    for doc, passages in items:
        vectors = embedder.embed_texts([p.content for p in passages])
        out.append((doc, [p.model_copy(update={"embedding": v.tolist()}) for p, v in zip(passages, vectors)]))
    return out


# ── Corpus ──────────────────────────────────────────────────────

SCENARIO_A_QUESTION = "¿Cómo adhiero al régimen simplificado de ingresos brutos en Buenos Aires?"


def build_tax_corpus() -> list[tuple[Document, list[Passage]]]:
    rs = make_document(
        "ar-ba-iibb-rs", path="provincial/ar-ba-iibb-regimen-simplificado.md",
        title="Régimen Simplificado de Ingresos Brutos - ARBA", doc_type="GUIA", year=2024,
    )
    caba = make_document(
        "ar-caba-iibb", path="provincial/ar-caba-iibb.md",
        title="Inscripción en Ingresos Brutos CABA", jurisdiction="AR-CABA", doc_type="GUIA", year=2023,
    )
    auto = make_document(
        "ar-ba-automotor", path="provincial/ar-ba-automotor.md",
        title="Impuesto a los Automotores", year=2023,
    )
    mono = make_document(
        "nacion-monotributo", path="nacional/monotributo.md",
        title="Monotributo", jurisdiction="AR-NACION", year=2022,
    )
    pyme = make_document(
        "ar-ba-pyme", path="provincial/ar-ba-pyme.md",
        title="Beneficios PyME", doc_type="RESOLUCION", year=2025,
    )
    return [
        (rs, make_passages(rs, [
            "## Pasos\nPara la adhesión al Régimen Simplificado de Ingresos Brutos en la "
            "Provincia de Buenos Aires ingresá a ARBA con tu CUIT y clave fiscal.",
            "Las categorías se determinan por facturación anual y superficie afectada.",
        ])),
        (caba, make_passages(caba, [
            "La inscripción en Ingresos Brutos en la Ciudad de Buenos Aires se realiza ante AGIP. "
            "Trámite de adhesión al régimen simplificado CABA.",
        ])),
        (auto, make_passages(auto, [
            "Exención del impuesto automotor para vehículos de personas con discapacidad. "
            "Quedan exentos los rodados adaptados.",
            "## Errores comunes\nNo presentar el certificado antes del vencimiento de la boleta.",
        ])),
        (mono, make_passages(mono, [
            "El monotributo reúne impuesto a las ganancias e IVA en una cuota mensual.",
        ])),
        (pyme, make_passages(pyme, [
            "La exención para pymes en ingresos brutos aplica hasta 2026 con certificado MiPyME vigente.",
            "Las pymes con certificado MiPyME acceden a una alícuota reducida en ingresos brutos.",
        ])),
    ]


# ── Fixtures ────────────────────────────────────────────────────

@pytest.fixture
def config() -> TaxRAGConfig:
    """Default config."""
    return TaxRAGConfig()


@pytest.fixture
def embedder() -> HashingEmbedder:
    return HashingEmbedder()


@pytest.fixture
def tax_corpus() -> list[tuple[Document, list[Passage]]]:
    return build_tax_corpus()


@pytest.fixture
def store(tax_corpus, embedder) -> PassageStore:
    """Store over the tax corpus with hashed embeddings."""
    s = PassageStore()
    s.add_documents(embed_corpus(tax_corpus, embedder))
    return s


@pytest.fixture
def text_store(tax_corpus) -> PassageStore:
    """Store over the tax corpus without embeddings."""
    s = PassageStore()
    s.add_documents(tax_corpus)
    return s


@pytest.fixture
def recording_store(store) -> RecordingStore:
    return RecordingStore(store)


@pytest.fixture
def engine(recording_store, embedder, config) -> RetrievalEngine:
    return RetrievalEngine(recording_store, embedder, config)
