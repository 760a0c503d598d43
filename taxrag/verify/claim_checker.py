"""
Claim Checker
==============

Sentence-level lexical grounding of generated text against the
passages it was generated from.

For each sentence:
    1. tokenize into normalized alphanumeric words of length >= 4
    2. a passage supports the sentence when at least 2 distinct tokens
       occur literally in its (normalized) content
    3. supported sentences cite every supporting passage's href

No semantic entailment is attempted; the two-token floor keeps generic
sentences from being rubber-stamped. Never raises on malformed text:
worst case, every sentence is `no_evidence`.

Data Flow:
    generated text + [Passage | RetrievedPassage] → claim_check → [Claim]
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

from taxrag.config import ClaimCheckConfig
from taxrag.nlp.lexicon import normalize, tokenize
from taxrag.schemas.claims import Claim, ClaimStatus

logger = logging.getLogger("taxrag.verify.claim_checker")

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")


class EvidenceLike(Protocol):
    content: str
    href: str


def split_sentences(text: str) -> list[str]:
    """Split on whitespace that follows terminal punctuation; drop empties."""
    if not text:
        return []
    return [s.strip() for s in _SENTENCE_SPLIT.split(text) if s.strip()]


def sentence_tokens(sentence: str, min_length: int = 4) -> list[str]:
    return list(dict.fromkeys(tokenize(sentence, min_length=min_length)))


def supports(content_norm: str, tokens: Sequence[str], min_matching: int = 2) -> bool:
    matches = 0
    for token in tokens:
        if token in content_norm:
            matches += 1
            if matches >= min_matching:
                return True
    return False


def claim_check(
    text: str,
    passages: Sequence[EvidenceLike],
    config: Optional[ClaimCheckConfig] = None,
) -> list[Claim]:
    """
    Mark each sentence of `text` as supported or not.

    Args:
        text: Generated output.
        passages: Evidence with `content` and `href`.
        config: Token length and match thresholds.

    Returns:
        One Claim per sentence, in order. Deterministic for the same inputs.
    """
    cfg = config or ClaimCheckConfig()
    normalized = [(normalize(p.content or ""), p.href) for p in passages]

    claims = []
    for sentence in split_sentences(text or ""):
        tokens = sentence_tokens(sentence, cfg.min_token_length)
        citations = list(dict.fromkeys(
            href for content_norm, href in normalized
            if supports(content_norm, tokens, cfg.min_matching_tokens)
        ))
        claims.append(Claim(
            sentence=sentence,
            status=ClaimStatus.SUPPORTED if citations else ClaimStatus.NO_EVIDENCE,
            citations=citations,
        ))

    logger.debug(f"Claim check: {len(claims)} sentences against {len(normalized)} passages")
    return claims


@dataclass(frozen=True)
class ClaimStats:
    supported: int
    no_evidence: int

    @property
    def total(self) -> int:
        return self.supported + self.no_evidence

    @property
    def support_rate(self) -> float:
        return self.supported / self.total if self.total else 0.0


def claim_stats(claims: Sequence[Claim]) -> ClaimStats:
    supported = sum(1 for c in claims if c.is_supported)
    return ClaimStats(supported=supported, no_evidence=len(claims) - supported)
