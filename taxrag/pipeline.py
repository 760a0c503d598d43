"""
TaxRAG End-to-End Pipeline
===========================

Orchestrates the full flow around the retrieval engine:
    Question → Search → Context assembly → Generate (with model fallback) → Claim check

The language model is an external collaborator (`TextGenerator`); the
pipeline only decides what evidence it sees and checks what it says.

Usage:
    from taxrag.pipeline import TaxRAGPipeline

    pipeline = TaxRAGPipeline.from_config()
    pipeline.ingest([{"path": "provincial/ar-ba-ley.md", "text": "..."}])
    result = pipeline.search("¿Qué alícuota de IIBB paga una pyme?")
    answer = pipeline.answer("¿Qué alícuota de IIBB paga una pyme?", generator)
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import BaseModel, Field

from taxrag.config import TaxRAGConfig, get_config
from taxrag.generate.fallback import GenerationResult, TextGenerator, generate_with_fallback
from taxrag.ingest.chunker import DocumentChunker
from taxrag.ingest.embedder import EmbeddingService, EmbeddingServiceUnavailableError, create_embedder
from taxrag.ingest.indexer import PassageStore, RetrievalStore
from taxrag.retrieve.engine import RetrievalEngine
from taxrag.schemas.claims import Claim
from taxrag.schemas.retrieval import RetrievedPassage, SearchOptions, SearchResult
from taxrag.utils import snippet
from taxrag.verify.claim_checker import ClaimStats, claim_check, claim_stats

logger = logging.getLogger("taxrag.pipeline")

SNIPPET_CHARS = 280
CONTEXT_CHARS = 600

SYSTEM_PROMPT = """Eres un asistente tributario. Respondes SIEMPRE así, en este orden:

1) Respuesta directa: qué se puede afirmar con lo recuperado.
2) Lo que NO se puede afirmar: qué falta o no aparece.
3) Citas [[n]]: solo de los fragmentos recuperados.
4) Siguiente paso: cómo afinar la búsqueda (jurisdicción, año, tipo).

Reglas:
- Usa SOLO los fragmentos recuperados. Si no están, di: "no está en el corpus recuperado".
- Si la pregunta es sobre una exención muy específica y no aparece textual, di que no aparece.
- Puedes decir: "lo más cercano que encontré es X" y citarlo."""


class Citation(BaseModel):
    """A retrieved passage as shown to the user next to an answer."""
    id: str = Field(description="1-based citation number, as used in [[n]]")
    title: str
    href: str
    similarity: float
    hybrid_score: Optional[float] = None
    jurisdiction: Optional[str] = None
    doc_type: Optional[str] = None
    year: Optional[int] = None
    snippet: str


def format_citations(passages: list[RetrievedPassage]) -> list[Citation]:
    return [
        Citation(
            id=str(i + 1),
            title=p.title,
            href=p.href,
            similarity=p.similarity,
            hybrid_score=p.hybrid_score,
            jurisdiction=p.jurisdiction,
            doc_type=p.doc_type,
            year=p.year,
            snippet=snippet(p.content, SNIPPET_CHARS),
        )
        for i, p in enumerate(passages)
    ]


def build_context(passages: list[RetrievedPassage], max_chars: int = CONTEXT_CHARS) -> str:
    """Numbered `[[n]] title (href)\\ncontent` blocks for the prompt."""
    return "\n\n".join(
        f"[[{i + 1}]] {p.title} ({p.href or 'sin-link'})\n{p.content[:max_chars]}"
        for i, p in enumerate(passages)
    )


def build_prompt(question: str, context: str) -> str:
    if not context:
        context = "(sin fragmentos recuperados)"
    return f"Contexto recuperado (citar como [[n]]). Si no alcanza, dilo.\n{context}\n\nPregunta: {question}"


@dataclass
class AnswerResult:
    """Complete output of one `answer` call."""
    question: str
    answer: str
    model_id: str
    attempts: int
    search: SearchResult
    citations: list[Citation]
    claims: list[Claim]
    timings: dict[str, float] = field(default_factory=dict)

    @property
    def stats(self) -> ClaimStats:
        return claim_stats(self.claims)

    @property
    def unsupported(self) -> list[Claim]:
        return [c for c in self.claims if not c.is_supported]


class TaxRAGPipeline:
    """
    Ingestion, search and grounded answering behind one object.

    Args:
        config: TaxRAG configuration.
        store: Passage store; defaults to an empty in-memory PassageStore.
        embedder: Embedding service; defaults to the configured backend.
    """

    def __init__(
        self,
        config: Optional[TaxRAGConfig] = None,
        store: Optional[RetrievalStore] = None,
        embedder: Optional[EmbeddingService] = None,
    ):
        self.config = config or get_config()
        self.store = store if store is not None else PassageStore(
            title_weight=self.config.scoring.title_weight,
            fallback_max_words=self.config.retrieval.fallback_max_words,
            fallback_min_word_length=self.config.retrieval.fallback_min_word_length,
        )
        self.embedder = embedder if embedder is not None else create_embedder(self.config.embedding)
        self.engine = RetrievalEngine(self.store, self.embedder, self.config)
        self.chunker = DocumentChunker()

    @classmethod
    def from_config(cls, config_path: Optional[str] = None, **kwargs) -> "TaxRAGPipeline":
        """Create pipeline from config file or environment."""
        return cls(get_config(config_path), **kwargs)

    # ── Ingestion ──────────────────────────────────────────────────

    def ingest(self, documents: list[dict[str, Any]], embed: bool = True) -> int:
        """
        Chunk, embed and store documents.

        Args:
            documents: Dicts with 'path' and 'text' (front matter allowed)
                and optionally 'doc_id', 'title', 'metadata'.
            embed: Compute passage embeddings. If the embedding service
                is down, passages are stored without them.

        Returns:
            Number of passages stored.
        """
        if not isinstance(self.store, PassageStore):
            raise TypeError("ingest() requires a PassageStore")

        t0 = time.perf_counter()
        items = self.chunker.chunk_documents(documents)
        if embed and self.embedder is not None:
            items = [(doc, self._embed_passages(passages)) for doc, passages in items]
        self.store.add_documents(items)

        count = sum(len(p) for _, p in items)
        logger.info(f"Ingested {len(items)} documents ({count} passages) in {time.perf_counter() - t0:.2f}s")
        return count

    def _embed_passages(self, passages):
        if not passages:
            return passages
        try:
            vectors = self.embedder.embed_texts([p.content for p in passages])
        except EmbeddingServiceUnavailableError as e:
            logger.warning(f"Embedding service unavailable during ingestion, storing text only: {e}")
            return passages
        return [p.model_copy(update={"embedding": v.tolist()}) for p, v in zip(passages, vectors)]

    # ── Search ─────────────────────────────────────────────────────

    def search(
        self,
        question: str,
        k: Optional[int] = None,
        options: Optional[SearchOptions] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> SearchResult:
        return self.engine.search(question, k=k, options=options, cancel_event=cancel_event)

    # ── Answering ──────────────────────────────────────────────────

    def answer(
        self,
        question: str,
        generator: TextGenerator,
        options: Optional[SearchOptions] = None,
        model_ids: Optional[list[str]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> AnswerResult:
        """
        Search, generate an answer from the evidence and claim-check it.

        Raises:
            QueryValidationError: blank question.
            Exception: generation failed on every model.
        """
        timings: dict[str, float] = {}

        t0 = time.perf_counter()
        result = self.search(question, k=self.config.generation.context_k, options=options,
                             cancel_event=cancel_event)
        timings["search"] = time.perf_counter() - t0

        context = build_context(result.passages)
        t1 = time.perf_counter()
        generation: GenerationResult = generate_with_fallback(
            generator,
            model_ids or self.config.generation.models,
            SYSTEM_PROMPT,
            build_prompt(question, context),
        )
        timings["generate"] = time.perf_counter() - t1

        t2 = time.perf_counter()
        claims = claim_check(generation.text, result.passages, self.config.claim_check)
        timings["claim_check"] = time.perf_counter() - t2
        timings["total"] = time.perf_counter() - t0

        stats = claim_stats(claims)
        logger.info(
            f"Answered with {generation.model_id}: {stats.supported}/{stats.total} sentences supported "
            f"(phase={result.metrics.phase.value if result.metrics.phase else None})"
        )
        return AnswerResult(
            question=question,
            answer=generation.text,
            model_id=generation.model_id,
            attempts=generation.attempts,
            search=result,
            citations=format_citations(result.passages),
            claims=claims,
            timings=timings,
        )
