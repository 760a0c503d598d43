"""
Multi-Phase Retrieval Engine
=============================

Turns a free-text question into a ranked, deduplicated,
jurisdiction-aware set of evidence passages.

Phases (tried in order, the first with a non-empty filtered set wins):
    1. lexical-strict   AND of one OR-clause per anchor group,
                        co-occurrence with >= min_hits groups
    2. mmr-expanded     every anchor term OR'd with the question's content
                        words, co-occurrence with >= max(1, min_hits - 1)
    3. relaxed          first anchor group only, must co-occur with it
    4. fallback         the question's content words, no anchor filter;
                        terminal, may return nothing

Anchored phases are skipped when the question produced no anchor groups.

Per phase:
    store query → sanitize → hybrid score → floor filter → co-occurrence
    → dedupe → per-document cap → rerank (truncated to k)

The similarity floor only applies to rows that carry an embedding; rows
stored without one are kept on their text rank alone.

The question is embedded once per call. If the embedding service is
unavailable the call degrades to text-only scoring (vector weight 0)
instead of failing. Store failures propagate unchanged. An explicit
jurisdiction filter that the access policy empties ends the call with an
empty result before any embedding or store call.

Usage:
    engine = RetrievalEngine(store, embedder, config)
    result = engine.search("¿Cómo adhiero al régimen simplificado de IIBB?", k=6)
    result.metrics.phase  # SearchPhase.LEXICAL_STRICT
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from taxrag.config import PhaseSettings, TaxRAGConfig
from taxrag.ingest.embedder import EmbeddingService, EmbeddingServiceUnavailableError
from taxrag.ingest.indexer import (
    QUERY_MODE_RANKED,
    RetrievalStore,
    StoreFilters,
    StoreQuery,
)
from taxrag.nlp.anchors import AnchorGroup, AnchorPlan, build_anchor_groups, filter_by_cooccurrence
from taxrag.nlp.intent import detect_intent, detect_jurisdictions
from taxrag.nlp.lexicon import JURISDICTION_PATH_PREFIXES, content_words
from taxrag.retrieve.access import AccessPolicy
from taxrag.retrieve.rerank import cap_per_document, dedupe_passages, rerank
from taxrag.retrieve.sanitize import sanitize_context
from taxrag.retrieve.scoring import BlendWeights, HybridScorer, query_token_count, resolve_weights
from taxrag.schemas.retrieval import (
    QueryExpression,
    RetrievedPassage,
    SearchMetrics,
    SearchOptions,
    SearchPhase,
    SearchResult,
)
from taxrag.utils import Stopwatch

logger = logging.getLogger("taxrag.retrieve.engine")


class QueryValidationError(ValueError):
    """The question is empty or otherwise unusable."""


class SearchCancelledError(RuntimeError):
    """The caller abandoned the search."""


@dataclass(frozen=True)
class PhaseContext:
    """Per-call inputs shared by the phase builders."""
    question: str
    plan: AnchorPlan
    words: tuple[str, ...]


@dataclass(frozen=True)
class PhaseSpec:
    """
    One retrieval pass.

    Attributes:
        phase: Label recorded in metrics and on each passage.
        build_query: Text expression sent to the store.
        build_filter: (groups, min_hits) for the co-occurrence filter,
            or None for no anchor filtering.
        requires_anchors: Skip the phase when the plan has no groups.
        relaxed: Mark results as relaxed in metrics.
        fallback: Terminal unrestricted phase.
    """
    phase: SearchPhase
    build_query: Callable[[PhaseContext], QueryExpression]
    build_filter: Callable[[PhaseContext], Optional[tuple[tuple[AnchorGroup, ...], int]]]
    requires_anchors: bool = True
    relaxed: bool = False
    fallback: bool = False


DEFAULT_PHASES: tuple[PhaseSpec, ...] = (
    PhaseSpec(
        phase=SearchPhase.LEXICAL_STRICT,
        build_query=lambda ctx: ctx.plan.strict_query(),
        build_filter=lambda ctx: (ctx.plan.groups, ctx.plan.min_hits),
    ),
    PhaseSpec(
        phase=SearchPhase.MMR_EXPANDED,
        build_query=lambda ctx: QueryExpression.any_of(ctx.plan.expanded_terms() + list(ctx.words)),
        build_filter=lambda ctx: (ctx.plan.groups, max(1, ctx.plan.min_hits - 1)),
    ),
    PhaseSpec(
        phase=SearchPhase.RELAXED,
        build_query=lambda ctx: QueryExpression.all_of([ctx.plan.groups[0].terms]),
        build_filter=lambda ctx: (ctx.plan.groups[:1], 1),
        relaxed=True,
    ),
    PhaseSpec(
        phase=SearchPhase.FALLBACK,
        build_query=lambda ctx: QueryExpression.any_of(list(ctx.words)),
        build_filter=lambda ctx: None,
        requires_anchors=False,
        relaxed=True,
        fallback=True,
    ),
)


@dataclass
class _PhaseOutcome:
    passages: list[RetrievedPassage]
    weights: BlendWeights
    query_mode: str
    store_ms: float


class RetrievalEngine:
    """
    Hybrid multi-phase search over a RetrievalStore.

    Stateless between calls apart from its collaborators, so one engine
    can serve concurrent searches.

    Args:
        store: Passage store.
        embedder: Query embedding service; None = always text-only.
        config: Engine configuration.
        phases: Ordered phase descriptors.
    """

    def __init__(
        self,
        store: RetrievalStore,
        embedder: Optional[EmbeddingService] = None,
        config: Optional[TaxRAGConfig] = None,
        phases: tuple[PhaseSpec, ...] = DEFAULT_PHASES,
    ):
        if not phases or not phases[-1].fallback:
            raise ValueError("The last phase must be the unrestricted fallback")
        self.store = store
        self.embedder = embedder
        self.config = config or TaxRAGConfig()
        self.phases = phases
        self.scorer = HybridScorer(self.config.scoring)
        self.access = AccessPolicy(self.config.access)
        self._config_hash = self.config.config_hash()

    # ── Public API ─────────────────────────────────────────────────

    def search(
        self,
        question: str,
        k: Optional[int] = None,
        options: Optional[SearchOptions] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> SearchResult:
        """
        Retrieve evidence passages for a question.

        Args:
            question: Free-text question.
            k: Result count (overrides options.k).
            options: Filters, weights, diversity and auth.
            cancel_event: Set it from another thread to abandon the call.

        Raises:
            QueryValidationError: blank question.
            SearchCancelledError: cancel_event was set.
            StoreUnavailableError: the store failed (no retry).
        """
        if question is None or not question.strip():
            raise QueryValidationError("Query must not be empty")
        question = question.strip()
        opts = options or SearchOptions()
        rcfg = self.config.retrieval

        k = max(1, min(k or opts.k or rcfg.default_k, rcfg.max_k))
        per_doc = max(1, min(opts.per_doc or rcfg.default_per_doc, rcfg.max_per_doc))
        tokens = query_token_count(question)
        default_floor = (
            rcfg.short_query_min_similarity if tokens <= rcfg.short_query_tokens
            else rcfg.default_min_similarity
        )

        intent = detect_intent(question)
        inferred = detect_jurisdictions(question)
        hint = opts.jurisdiction_hint.strip().upper() if opts.jurisdiction_hint else None
        hints = list(dict.fromkeys(inferred + ([hint] if hint else [])))
        if opts.use_anchors:
            plan = build_anchor_groups(intent, question, hints, self.config.anchors)
        else:
            plan = AnchorPlan(intent=intent)
        ctx = PhaseContext(question=question, plan=plan, words=tuple(content_words(question)))

        requested = opts.jurisdictions
        if requested is None and opts.jurisdiction_from_query and inferred:
            requested = inferred
        decision = self.access.apply(requested, opts.authenticated)
        filters = StoreFilters(
            path_like=opts.path_like or (JURISDICTION_PATH_PREFIXES.get(hint) if hint else None),
            jurisdictions=decision.allowed,
            exclude_jurisdictions=decision.excluded,
            doc_types=opts.doc_types,
            year_min=opts.year_min,
            year_max=opts.year_max,
        )
        if requested and decision.allowed == []:
            logger.info(
                f"Search intent={intent.value} skipped: every requested jurisdiction is restricted "
                f"({', '.join(decision.excluded)})"
            )
            return SearchResult(
                query=question,
                metrics=SearchMetrics(
                    restricted_count=decision.restricted_count,
                    tokens=tokens,
                    intent=intent.value,
                    min_hits=plan.min_hits,
                    anchor_groups=plan.group_names,
                    config_hash=self._config_hash,
                ),
                inferred_jurisdictions=inferred,
            )

        self._check_cancel(cancel_event)
        vector, embedding_ms, vector_fallback = self._embed(question)
        self._check_cancel(cancel_event)

        phases_tried: list[SearchPhase] = []
        store_ms = 0.0
        outcome: Optional[_PhaseOutcome] = None
        accepted: Optional[PhaseSpec] = None

        for spec in self.phases:
            if spec.requires_anchors and plan.is_empty:
                continue
            self._check_cancel(cancel_event)
            phases_tried.append(spec.phase)
            outcome = self._run_phase(
                spec, ctx, vector, vector_fallback, filters, k, per_doc, default_floor, opts,
            )
            store_ms += outcome.store_ms
            accepted = spec
            logger.debug(f"Phase {spec.phase.value}: {len(outcome.passages)} passages")
            if outcome.passages:
                break

        metrics = self._metrics(
            outcome, accepted, phases_tried, plan, tokens, embedding_ms, store_ms,
            vector_fallback, decision.restricted_count,
        )
        logger.info(
            f"Search intent={intent.value} phase={accepted.phase.value} "
            f"results={metrics.k} embed={embedding_ms:.0f}ms store={store_ms:.0f}ms "
            f"config={self._config_hash}"
        )
        return SearchResult(
            query=question,
            passages=outcome.passages,
            metrics=metrics,
            inferred_jurisdictions=inferred,
        )

    # ── Internals ──────────────────────────────────────────────────

    @staticmethod
    def _check_cancel(cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise SearchCancelledError("Search cancelled by caller")

    def _embed(self, question: str) -> tuple[Optional[list[float]], float, bool]:
        if self.embedder is None:
            return None, 0.0, True
        try:
            vector, latency_ms = self.embedder.embed(question)
        except EmbeddingServiceUnavailableError as e:
            logger.warning(f"Embedding service unavailable, falling back to text-only search: {e}")
            return None, 0.0, True
        return vector, latency_ms, False

    def _phase_settings(self, phase: SearchPhase) -> PhaseSettings:
        return self.config.phases.get(phase.value) or PhaseSettings()

    def _run_phase(
        self,
        spec: PhaseSpec,
        ctx: PhaseContext,
        vector: Optional[list[float]],
        vector_fallback: bool,
        filters: StoreFilters,
        k: int,
        per_doc: int,
        default_floor: float,
        opts: SearchOptions,
    ) -> _PhaseOutcome:
        settings = self._phase_settings(spec.phase)
        if vector_fallback:
            weights = BlendWeights.text_only()
        else:
            weights = resolve_weights(
                ctx.question,
                manual_vector=opts.vector_weight,
                manual_text=opts.text_weight,
                phase_override=settings.weights,
                config=self.config.scoring,
            )
        if opts.min_similarity is not None:
            floor = opts.min_similarity
        elif settings.min_similarity is not None:
            floor = settings.min_similarity
        else:
            floor = default_floor

        with Stopwatch() as sw:
            result = self.store.query(StoreQuery(
                text=ctx.question,
                expression=spec.build_query(ctx),
                vector=vector,
                limit=k * self.config.retrieval.fetch_multiplier,
                filters=filters,
                min_similarity=floor,
            ))

        rows = []
        for row in result.rows:
            content = sanitize_context(row.content)
            if content:
                rows.append(row.model_copy(update={"content": content, "phase": spec.phase}))

        scored = self.scorer.score_all(rows, weights)
        # Rows without an embedding score 0 on similarity; only text can qualify them.
        kept = [
            p for p in scored
            if (weights.vector <= 0 or p.similarity >= floor or p.embedding is None)
            and (weights.text <= 0 or p.text_rank is None or p.text_rank > 0)
            and (p.embedding is not None or p.text_rank is None or p.text_rank > 0)
        ]

        anchor_filter = spec.build_filter(ctx)
        if anchor_filter is not None:
            groups, min_hits = anchor_filter
            kept = filter_by_cooccurrence(kept, groups, min_hits)

        kept = cap_per_document(dedupe_passages(kept), per_doc)
        limit = min(k, opts.rerank_limit) if opts.rerank_limit else k
        passages = rerank(
            ctx.question,
            kept,
            mode=opts.rerank_mode or settings.rerank_mode,
            limit=limit,
            config=self.config.rerank,
        )
        return _PhaseOutcome(
            passages=passages,
            weights=weights,
            query_mode=result.query_mode or QUERY_MODE_RANKED,
            store_ms=sw.elapsed_ms,
        )

    def _metrics(
        self,
        outcome: _PhaseOutcome,
        spec: PhaseSpec,
        phases_tried: list[SearchPhase],
        plan: AnchorPlan,
        tokens: int,
        embedding_ms: float,
        store_ms: float,
        vector_fallback: bool,
        restricted_count: int,
    ) -> SearchMetrics:
        passages = outcome.passages
        sims = [p.similarity for p in passages]
        hybrids = [p.score for p in passages]
        return SearchMetrics(
            embedding_ms=round(embedding_ms, 3),
            store_ms=round(store_ms, 3),
            k=len(passages),
            similarity_avg=sum(sims) / len(sims) if sims else 0.0,
            similarity_min=min(sims) if sims else 0.0,
            hybrid_avg=sum(hybrids) / len(hybrids) if hybrids else None,
            hybrid_min=min(hybrids) if hybrids else None,
            reranked=bool(passages),
            restricted_count=restricted_count,
            vector_weight=outcome.weights.vector,
            text_weight=outcome.weights.text,
            weight_source=outcome.weights.source,
            phase=spec.phase,
            phases_tried=phases_tried,
            relaxed=spec.relaxed,
            fallback=spec.fallback,
            vector_fallback=vector_fallback,
            query_mode=outcome.query_mode,
            tokens=tokens,
            intent=plan.intent.value,
            min_hits=plan.min_hits,
            anchor_groups=plan.group_names,
            config_hash=self._config_hash,
        )
