"""
Model Fallback
===============

Provider error classification and the ordered model-fallback loop used
by the answer pipeline. The language model itself is an external
collaborator reached through the `TextGenerator` interface.

Error kinds (closed set):
    rate_limited       429 / "rate limit"           skip, wait 0.3s + backoff
    auth_error         401 / 403                    skip
    quota_exhausted    402 / "insufficient credits" skip
    model_unavailable  404 / "model not found"      skip
    server_error       5xx                          skip, wait 0.2s + backoff
    unknown            anything else                re-raise immediately

Classification only reads `status_code`, `status`, `response.status_code`
and the message text, so it works with any HTTP client's exceptions.
"""

from __future__ import annotations

import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Sequence

logger = logging.getLogger("taxrag.generate.fallback")


class ProviderErrorKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    AUTH_ERROR = "auth_error"
    QUOTA_EXHAUSTED = "quota_exhausted"
    MODEL_UNAVAILABLE = "model_unavailable"
    SERVER_ERROR = "server_error"
    UNKNOWN = "unknown"


SKIPPABLE_KINDS = frozenset(ProviderErrorKind) - {ProviderErrorKind.UNKNOWN}

BASE_WAIT_S: dict[ProviderErrorKind, float] = {
    ProviderErrorKind.RATE_LIMITED: 0.3,
    ProviderErrorKind.SERVER_ERROR: 0.2,
}
BACKOFF_STEP_S = 0.2
BACKOFF_MAX_S = 1.0


class NoModelsAvailableError(RuntimeError):
    """The fallback loop was given no model ids."""


def _status_of(exc: BaseException) -> Optional[int]:
    for attr in ("status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def classify_provider_error(exc: BaseException) -> ProviderErrorKind:
    """Map any provider exception to a ProviderErrorKind."""
    status = _status_of(exc)
    message = str(exc)

    if status in (401, 403):
        return ProviderErrorKind.AUTH_ERROR
    if status == 402 or re.search(r"insufficient\s+credits|quota\s+exceeded", message, re.IGNORECASE):
        return ProviderErrorKind.QUOTA_EXHAUSTED
    if status == 404 or re.search(r"model\s+not\s+found", message, re.IGNORECASE):
        return ProviderErrorKind.MODEL_UNAVAILABLE
    if status == 429 or re.search(r"rate\s*limit", message, re.IGNORECASE):
        return ProviderErrorKind.RATE_LIMITED
    if status is not None and 500 <= status < 600:
        return ProviderErrorKind.SERVER_ERROR
    return ProviderErrorKind.UNKNOWN


def wait_seconds(kind: ProviderErrorKind, attempt: int) -> float:
    """Pause before the next model; grows with the attempt number."""
    base = BASE_WAIT_S.get(kind)
    if base is None:
        return 0.0
    return base + min(BACKOFF_MAX_S, attempt * BACKOFF_STEP_S)


class TextGenerator(ABC):
    """A language model endpoint that can serve several model ids."""

    @abstractmethod
    def generate(self, model_id: str, system: str, prompt: str) -> str:
        ...


class OpenAIChatGenerator(TextGenerator):
    """
    Chat completions through any OpenAI-compatible API (OpenAI,
    OpenRouter, Ollama...).
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        temperature: float = 0.2,
        max_tokens: int = 1200,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = None

    def _get_client(self):
        if self._client is None:
            try:
                from openai import OpenAI
            except ImportError:
                raise RuntimeError(
                    "openai package required for generation. "
                    "Install with: pip install 'taxrag[openai]'"
                )
            self._client = OpenAI(api_key=self.api_key or "not-needed", base_url=self.base_url, max_retries=0)
        return self._client

    def generate(self, model_id: str, system: str, prompt: str) -> str:
        response = self._get_client().chat.completions.create(
            model=model_id,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        return response.choices[0].message.content or ""


@dataclass(frozen=True)
class GenerationResult:
    text: str
    model_id: str
    attempts: int


def generate_with_fallback(
    generator: TextGenerator,
    model_ids: Sequence[str],
    system: str,
    prompt: str,
    sleep: Callable[[float], None] = time.sleep,
) -> GenerationResult:
    """
    Try each model in order until one answers.

    Raises:
        NoModelsAvailableError: `model_ids` is empty.
        Exception: the last error when every model was skipped, or the
            first error classified as unknown.
    """
    if not model_ids:
        raise NoModelsAvailableError("No LLM models configured")

    for attempt, model_id in enumerate(model_ids):
        logger.info(f"LLM attempt {attempt + 1}/{len(model_ids)} → {model_id}")
        try:
            text = generator.generate(model_id, system, prompt)
        except Exception as e:
            kind = classify_provider_error(e)
            if kind not in SKIPPABLE_KINDS:
                logger.error(f"Non-skippable error from {model_id}: {e}")
                raise
            if attempt == len(model_ids) - 1:
                logger.error(f"No models left to try after {model_id} ({kind.value})")
                raise
            pause = wait_seconds(kind, attempt)
            if pause:
                sleep(pause)
            logger.warning(f"Skipping {model_id}: {kind.value} → next model")
            continue
        logger.info(f"LLM OK with {model_id} (attempt {attempt + 1})")
        return GenerationResult(text=text, model_id=model_id, attempts=attempt + 1)

    raise NoModelsAvailableError("No LLM models available")
