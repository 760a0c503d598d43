"""
Query & Passage Embedder
=========================

Dense embeddings for questions (at search time) and passages (at
ingestion time).

Two Backends:
    - OPENAI: any OpenAI-compatible /embeddings endpoint (OpenAI, Ollama,
              vLLM...) reached through `base_url`
    - LOCAL:  sentence-transformers model loaded in-process

All vectors are L2-normalized so cosine similarity = dot product.

Failure contract:
    Connection failures, timeouts and 5xx responses raise
    EmbeddingServiceUnavailableError. The retrieval engine catches that
    one error and degrades to text-only scoring; anything else (bad
    model name, dimension mismatch) propagates.

Data Flow:
    question → EmbeddingService.embed → (vector, latency_ms) → RetrievalEngine
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Optional

import numpy as np

from taxrag.config import EmbeddingBackend, EmbeddingConfig

logger = logging.getLogger("taxrag.ingest.embedder")


class EmbeddingServiceUnavailableError(RuntimeError):
    """The embedding backend could not be reached or answered with a server error."""


def l2_normalize(vectors: np.ndarray) -> np.ndarray:
    """Row-wise L2 normalization; zero rows stay zero."""
    vectors = np.asarray(vectors, dtype=np.float32)
    if vectors.ndim == 1:
        norm = float(np.linalg.norm(vectors))
        return vectors / norm if norm > 0 else vectors
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    norms = np.maximum(norms, 1e-12)
    return vectors / norms


class EmbeddingService(ABC):
    """
    Abstract embedding service.

    Subclasses implement `embed_texts`; `embed` wraps it for a single
    question and reports latency.
    """

    def __init__(self, dimension: Optional[int] = None):
        self._dimension = dimension

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    @abstractmethod
    def embed_texts(self, texts: list[str]) -> np.ndarray:
        """Embed a batch; returns an (n, d) L2-normalized array."""
        ...

    def embed(self, text: str) -> tuple[list[float], float]:
        """
        Embed one text.

        Returns:
            (vector, latency_ms)

        Raises:
            EmbeddingServiceUnavailableError: backend unreachable.
            ValueError: vector size differs from the configured dimension.
        """
        t0 = time.perf_counter()
        vectors = self.embed_texts([text])
        latency_ms = (time.perf_counter() - t0) * 1000
        vector = np.asarray(vectors[0], dtype=np.float32)
        self._check_dimension(vector.shape[0])
        return vector.tolist(), latency_ms

    def _check_dimension(self, size: int) -> None:
        if self._dimension is None:
            self._dimension = size
        elif size != self._dimension:
            raise ValueError(f"Embedding dimension mismatch: expected {self._dimension}, got {size}")


class OpenAIEmbeddingService(EmbeddingService):
    """
    Embeddings through an OpenAI-compatible API.

    Usage:
        svc = OpenAIEmbeddingService(model="nomic-embed-text",
                                     base_url="http://localhost:11434/v1")
        vector, ms = svc.embed("¿Cómo me inscribo en IIBB?")

    Args:
        model: Embedding model name.
        base_url: API root; None = api.openai.com.
        api_key: API key (Ollama accepts any non-empty value).
        timeout_s: Per-request timeout.
        batch_size: Texts per request.
    """

    def __init__(
        self,
        model: str = "nomic-embed-text",
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout_s: float = 10.0,
        batch_size: int = 64,
        dimension: Optional[int] = None,
    ):
        super().__init__(dimension)
        self.model = model
        self.base_url = base_url
        self.api_key = api_key
        self.timeout_s = timeout_s
        self.batch_size = batch_size
        self._client = None

    def _get_client(self):
        if self._client is None:
            try:
                from openai import OpenAI
            except ImportError:
                raise RuntimeError(
                    "openai package required for the openai embedding backend. "
                    "Install with: pip install 'taxrag[openai]'"
                )
            # Local OpenAI-compatible servers ignore the key but the client requires one.
            self._client = OpenAI(
                api_key=self.api_key or "not-needed",
                base_url=self.base_url,
                timeout=self.timeout_s,
                max_retries=0,
            )
        return self._client

    def embed_texts(self, texts: list[str]) -> np.ndarray:
        if not texts:
            return np.zeros((0, self._dimension or 0), dtype=np.float32)

        client = self._get_client()
        import openai

        all_embeddings: list[list[float]] = []
        for i in range(0, len(texts), self.batch_size):
            batch = texts[i:i + self.batch_size]
            logger.debug(f"Embedding batch {i // self.batch_size + 1} ({len(batch)} texts)")
            try:
                response = client.embeddings.create(model=self.model, input=batch)
            except (openai.APIConnectionError, openai.APITimeoutError, openai.InternalServerError) as e:
                raise EmbeddingServiceUnavailableError(
                    f"Embedding service at {self.base_url or 'api.openai.com'} unavailable: {e}"
                ) from e
            all_embeddings.extend(item.embedding for item in response.data)

        return l2_normalize(np.array(all_embeddings, dtype=np.float32))


class LocalEmbeddingService(EmbeddingService):
    """
    Embeddings from a sentence-transformers model loaded in-process.

    e5-family models get the "query: " / "passage: " prefixes they were
    trained with.
    """

    def __init__(
        self,
        model_name: str = "intfloat/multilingual-e5-small",
        device: str = "cpu",
        batch_size: int = 64,
        dimension: Optional[int] = None,
    ):
        super().__init__(dimension)
        self.model_name = model_name
        self.device = device
        self.batch_size = batch_size
        self._model = None

    def _load_model(self) -> None:
        if self._model is not None:
            return
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError:
            raise RuntimeError(
                "sentence-transformers required for the local embedding backend. "
                "Install with: pip install 'taxrag[local]'"
            )
        logger.info(f"Loading embedding model: {self.model_name} on {self.device}")
        try:
            self._model = SentenceTransformer(self.model_name, device=self.device)
        except OSError as e:
            raise EmbeddingServiceUnavailableError(f"Could not load {self.model_name}: {e}") from e
        logger.info(f"Embedding model loaded. Dimension: {self._model.get_sentence_embedding_dimension()}")

    def _encode(self, texts: list[str], prefix: str) -> np.ndarray:
        if not texts:
            return np.zeros((0, self._dimension or 0), dtype=np.float32)
        self._load_model()
        if "e5" in self.model_name.lower():
            texts = [f"{prefix}{t}" for t in texts]
        embeddings = self._model.encode(
            texts,
            batch_size=self.batch_size,
            show_progress_bar=len(texts) > 100,
            normalize_embeddings=True,
        )
        return np.array(embeddings, dtype=np.float32)

    def embed_texts(self, texts: list[str]) -> np.ndarray:
        return self._encode(texts, "passage: ")

    def embed(self, text: str) -> tuple[list[float], float]:
        t0 = time.perf_counter()
        vector = self._encode([text], "query: ")[0]
        latency_ms = (time.perf_counter() - t0) * 1000
        self._check_dimension(vector.shape[0])
        return vector.tolist(), latency_ms


def create_embedder(config: Optional[EmbeddingConfig] = None) -> EmbeddingService:
    """Build the embedding service selected by the config."""
    cfg = config or EmbeddingConfig()
    if cfg.backend == EmbeddingBackend.LOCAL:
        return LocalEmbeddingService(model_name=cfg.model, dimension=cfg.dimension)
    return OpenAIEmbeddingService(
        model=cfg.model,
        base_url=cfg.base_url,
        api_key=cfg.api_key,
        timeout_s=cfg.timeout_s,
        dimension=cfg.dimension,
    )
