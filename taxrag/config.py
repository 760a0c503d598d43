"""
TaxRAG Configuration System
============================

Central configuration using Pydantic Settings. Supports:
- Environment variables (TAXRAG_ prefix)
- .env file loading
- YAML config file overrides

Every knob of the retrieval engine lives here: blend-weight heuristics,
structural/recency boosts, anchor min-hits policy, per-phase similarity
floors, reranker parameters and the claim-check thresholds.

The config produces a deterministic hash for reproducibility tracking.
Every search logs it and stamps it on SearchMetrics.

Usage:
    from taxrag.config import get_config
    cfg = get_config()                    # loads from env / .env
    cfg = get_config("configs/strict.yaml")  # loads with YAML overrides
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from taxrag.utils import compute_hash


# ── Enums shared by config and schemas ─────────────────────────────
class RerankMode(str, Enum):
    """Post-retrieval reranking strategy."""
    LEXICAL = "lexical"
    MMR = "mmr"


class EmbeddingBackend(str, Enum):
    """
    Which embedding backend serves query vectors.

    - OPENAI: any OpenAI-compatible /embeddings endpoint (OpenAI, Ollama,
              vLLM...). Selected through `base_url`.
    - LOCAL:  sentence-transformers model loaded in-process.
    """
    OPENAI = "openai"
    LOCAL = "local"


# ── Sub-configs ────────────────────────────────────────────────────
class RetrievalConfig(BaseModel):
    """Limits and defaults for a single search call."""
    default_k: int = Field(default=6, ge=1, description="Results returned when the caller gives no k")
    max_k: int = Field(default=50, ge=1, description="Hard cap on k")
    default_per_doc: int = Field(default=3, ge=1, description="Max passages per source document")
    max_per_doc: int = Field(default=10, ge=1, description="Hard cap on per_doc")
    fetch_multiplier: int = Field(
        default=4, ge=1,
        description="Candidates pulled from the store per phase = k * fetch_multiplier"
    )
    short_query_tokens: int = Field(default=2, description="Queries with <= this many tokens are 'short'")
    short_query_min_similarity: float = Field(default=0.05, ge=0.0, le=0.999)
    default_min_similarity: float = Field(default=0.15, ge=0.0, le=0.999)
    fallback_max_words: int = Field(default=6, description="Words used by the substring fallback query")
    fallback_min_word_length: int = Field(default=3, description="Shortest word used by the substring fallback")


class ScoringConfig(BaseModel):
    """
    Hybrid blend heuristics and boosts.

    Short or legalistic queries lean on full-text rank; long, multi-word
    or quoted-phrase queries lean on vector similarity.
    """
    base_text_weight: float = Field(default=0.52, ge=0.0, le=1.0)
    short_text_weight: float = Field(default=0.60, ge=0.0, le=1.0)
    legalistic_text_weight: float = Field(default=0.60, ge=0.0, le=1.0)
    multi_word_text_weight: float = Field(default=0.45, ge=0.0, le=1.0)
    long_query_text_weight: float = Field(default=0.40, ge=0.0, le=1.0)
    phrase_text_weight: float = Field(default=0.35, ge=0.0, le=1.0)
    connector_text_weight: float = Field(default=0.43, ge=0.0, le=1.0)
    short_query_tokens: int = Field(default=2, description="Token count up to which a query is short")
    multi_word_tokens: int = Field(default=3, description="Token count from which a query is multi-word")
    long_query_tokens: int = Field(default=8, description="Token count from which a query is long")
    legalistic_pattern: str = Field(
        default=r"(exenci[oó]n|patente|automotor(es)?|pymes?)",
        description="Regex marking legalistic queries (case-insensitive)"
    )
    connector_pattern: str = Field(
        default=r"[,;]|\b(de(l)?|para|sobre|seg[uú]n|respecto|contra|sin|con)\b",
        description="Regex marking queries with Spanish connectors (case-insensitive)"
    )

    steps_heading_boost: float = Field(default=0.08, description="Bonus for a '## Pasos' heading")
    errors_heading_boost: float = Field(default=0.06, description="Bonus for a '## Errores comunes' heading")
    reference_year: int = Field(default=2019, description="Year with zero recency boost")
    recency_slope: float = Field(default=0.003, description="Boost per year after reference_year")
    recency_min: float = Field(default=-0.03, le=0.0)
    recency_max: float = Field(default=0.06, ge=0.0)
    title_weight: float = Field(default=2.0, ge=0.0, description="Title weight relative to body in text rank")


class WeightOverride(BaseModel):
    """Blend weights forced for one phase (either side may be omitted)."""
    vector_weight: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    text_weight: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    @property
    def is_set(self) -> bool:
        return self.vector_weight is not None or self.text_weight is not None


class PhaseSettings(BaseModel):
    """Per-phase knobs of the multi-phase engine."""
    min_similarity: Optional[float] = Field(
        default=0.35, ge=0.0, le=0.999,
        description="Vector similarity floor; None = query-length default"
    )
    rerank_mode: RerankMode = Field(default=RerankMode.LEXICAL)
    weights: WeightOverride = Field(default_factory=WeightOverride)


def _default_phases() -> dict[str, PhaseSettings]:
    return {
        "lexical-strict": PhaseSettings(
            rerank_mode=RerankMode.LEXICAL,
            weights=WeightOverride(text_weight=0.8),
        ),
        "mmr-expanded": PhaseSettings(rerank_mode=RerankMode.MMR),
        "relaxed": PhaseSettings(rerank_mode=RerankMode.LEXICAL),
        "fallback": PhaseSettings(min_similarity=None, rerank_mode=RerankMode.MMR),
    }


class AnchorConfig(BaseModel):
    """Policy for the minimum number of distinct anchor groups a passage must hit."""
    multi_group_min_hits: int = Field(default=2, ge=2, description="min_hits once there are >= 2 groups")
    strict_intent_bonus: int = Field(
        default=1, ge=0,
        description="Extra hit for exemption / rate-base intents with more than 2 groups"
    )
    registration_cap: int = Field(default=2, ge=2, description="Upper bound of min_hits for registration")


class RerankConfig(BaseModel):
    """Reranker parameters."""
    lexical_score_weight: float = Field(default=0.6, ge=0.0, le=1.0)
    lexical_overlap_weight: float = Field(default=0.4, ge=0.0, le=1.0)
    min_token_length: int = Field(default=3, description="Shortest question token counted for overlap")
    mmr_lambda: float = Field(default=0.7, ge=0.0, le=1.0)


class ClaimCheckConfig(BaseModel):
    """Sentence-level grounding thresholds."""
    min_token_length: int = Field(default=4)
    min_matching_tokens: int = Field(default=2, ge=1)


class AccessConfig(BaseModel):
    """Jurisdictions hidden from unauthenticated callers."""
    restricted_jurisdictions: list[str] = Field(default_factory=lambda: ["AR-CABA"])


class EmbeddingConfig(BaseModel):
    """Query embedding service."""
    backend: EmbeddingBackend = Field(default=EmbeddingBackend.OPENAI)
    model: str = Field(default="nomic-embed-text", description="Embedding model name / HF ID")
    base_url: Optional[str] = Field(
        default="http://localhost:11434/v1",
        description="OpenAI-compatible endpoint; None = api.openai.com"
    )
    api_key: Optional[str] = Field(default=None, description="API key (Ollama accepts any value)")
    timeout_s: float = Field(default=10.0, gt=0.0)
    dimension: Optional[int] = Field(default=None, description="Expected vector size (checked when set)")


class GenerationConfig(BaseModel):
    """Answer generation through an OpenAI-compatible chat endpoint."""
    models: list[str] = Field(
        default_factory=lambda: ["llama3.1:8b"],
        description="Model ids tried in order by the fallback loop"
    )
    base_url: Optional[str] = Field(default="http://localhost:11434/v1")
    api_key: Optional[str] = Field(default=None)
    temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1200, ge=1)
    context_k: int = Field(default=6, ge=1, description="Passages put in the prompt")


# ── Main Config ────────────────────────────────────────────────────
class TaxRAGConfig(BaseSettings):
    """
    Root configuration for TaxRAG.

    Loads from environment variables (TAXRAG_ prefix, `__` for nesting)
    and .env file. Can be extended with YAML overrides via
    `get_config(yaml_path)`.

    Example:
        export TAXRAG_LOG_LEVEL=DEBUG
        export TAXRAG_RETRIEVAL__DEFAULT_K=8
    """
    model_config = SettingsConfigDict(
        env_prefix="TAXRAG_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    store_path: Path = Field(default=Path("./data/store.json"), description="Persisted passage store")
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="text", description="Log format: 'json' or 'text'")

    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    anchors: AnchorConfig = Field(default_factory=AnchorConfig)
    phases: dict[str, PhaseSettings] = Field(default_factory=_default_phases)
    rerank: RerankConfig = Field(default_factory=RerankConfig)
    claim_check: ClaimCheckConfig = Field(default_factory=ClaimCheckConfig)
    access: AccessConfig = Field(default_factory=AccessConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)

    @model_validator(mode="after")
    def fill_missing_phases(self) -> "TaxRAGConfig":
        """Partial YAML `phases:` blocks keep the defaults for unnamed phases."""
        for name, settings in _default_phases().items():
            self.phases.setdefault(name, settings)
        return self

    def phase(self, name: str) -> PhaseSettings:
        """Settings for a phase by name."""
        return self.phases[name]

    def config_hash(self) -> str:
        """
        Produce a deterministic SHA-256 hash of the configuration.

        Two searches with the same config hash over the same store
        produce identical rankings.
        """
        config_dict = self.model_dump(mode="json", exclude={"embedding": {"api_key"}, "generation": {"api_key"}})
        return compute_hash(config_dict)


# ── Config Loading ─────────────────────────────────────────────────
def get_config(yaml_path: Optional[str] = None) -> TaxRAGConfig:
    """
    Load TaxRAG configuration.

    Priority (highest to lowest):
        1. Explicit YAML values (if a file is given)
        2. Environment variables (TAXRAG_ prefix)
        3. .env file
        4. Default values

    Args:
        yaml_path: Optional path to a YAML config file for overrides.

    Returns:
        Fully resolved TaxRAGConfig instance.
    """
    if yaml_path:
        import yaml
        with open(yaml_path, encoding="utf-8") as f:
            overrides = yaml.safe_load(f) or {}
        return TaxRAGConfig(**overrides)
    return TaxRAGConfig()
