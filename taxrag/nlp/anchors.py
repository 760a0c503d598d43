"""
Anchor Planner
===============

Turns an intent + question into ordered anchor groups (sets of
near-synonyms) and the minimum number of distinct groups a passage
must mention to count as co-occurrent.

Group order:
    1. the intent's canonical groups
    2. topic groups the question mentions (vehicles, gross receipts, SMEs...)
    3. jurisdiction groups for each jurisdiction hint

min_hits policy (counts distinct groups, not raw terms):
    0 groups  → 0
    1 group   → 1
    ≥2 groups → 2, then intent tweaks, always capped at the group count
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from taxrag.config import AnchorConfig
from taxrag.nlp.intent import Intent
from taxrag.nlp.lexicon import (
    JURISDICTION_GROUPS,
    LEXICON,
    TOPIC_GROUPS,
    contains_any,
    normalize,
)
from taxrag.schemas.retrieval import QueryExpression

logger = logging.getLogger("taxrag.nlp.anchors")


@dataclass(frozen=True)
class AnchorGroup:
    """A named set of near-synonymous terms."""
    name: str
    terms: tuple[str, ...]

    def __post_init__(self):
        if not self.terms:
            raise ValueError(f"Anchor group '{self.name}' has no terms")

    def hit(self, text_norm: str) -> bool:
        """True if any term occurs in already-normalized text."""
        return contains_any(text_norm, self.terms)

    @classmethod
    def from_lexicon(cls, name: str) -> "AnchorGroup":
        return cls(name=name, terms=LEXICON[name])


@dataclass(frozen=True)
class AnchorPlan:
    """Anchor groups and co-occurrence threshold for one question."""
    intent: Intent
    groups: tuple[AnchorGroup, ...] = ()
    min_hits: int = 0
    jurisdictions: tuple[str, ...] = field(default=())

    @property
    def is_empty(self) -> bool:
        return not self.groups

    @property
    def group_names(self) -> list[str]:
        return [g.name for g in self.groups]

    def strict_query(self) -> QueryExpression:
        """AND of one OR-clause per group."""
        return QueryExpression.all_of([g.terms for g in self.groups])

    def expanded_terms(self) -> list[str]:
        """Every anchor term once, in group order."""
        return list(dict.fromkeys(t for g in self.groups for t in g.terms))


_INTENT_GROUPS: dict[Intent, tuple[str, ...]] = {
    Intent.REGISTRATION: ("adhesion", "iibb"),
    Intent.EXEMPTION: ("exencion",),
    Intent.RATE_OR_BASE: ("base_alicuota",),
    Intent.BILL: ("boleta",),
    Intent.GENERIC: (),
}


def compute_min_hits(intent: Intent, group_count: int, config: Optional[AnchorConfig] = None) -> int:
    """Minimum distinct groups a passage must mention."""
    cfg = config or AnchorConfig()
    if group_count == 0:
        return 0
    if group_count == 1:
        return 1
    min_hits = min(cfg.multi_group_min_hits, group_count)
    if intent in (Intent.EXEMPTION, Intent.RATE_OR_BASE):
        bonus = cfg.strict_intent_bonus if group_count > 2 else 0
        min_hits = min(min_hits + bonus, group_count)
    elif intent == Intent.REGISTRATION:
        min_hits = min(min_hits, cfg.registration_cap)
    return min(min_hits, group_count)


def build_anchor_groups(
    intent: Intent,
    question: str,
    jurisdiction_hints: Optional[Iterable[str]] = None,
    config: Optional[AnchorConfig] = None,
) -> AnchorPlan:
    """
    Build the anchor plan for a question.

    Args:
        intent: Detected intent.
        question: Raw question text.
        jurisdiction_hints: Jurisdiction codes (e.g. "AR-BA") whose
            synonym groups should be added.
        config: min_hits policy.

    Returns:
        AnchorPlan with de-duplicated groups in priority order.
    """
    s = normalize(question)
    names: list[str] = list(_INTENT_GROUPS[intent])

    for topic in TOPIC_GROUPS:
        if topic not in names and contains_any(s, LEXICON[topic]):
            names.append(topic)

    hints = tuple(dict.fromkeys(h.strip().upper() for h in (jurisdiction_hints or ()) if h))
    for code in hints:
        group_name = JURISDICTION_GROUPS.get(code)
        if group_name and group_name not in names:
            names.append(group_name)

    groups = tuple(AnchorGroup.from_lexicon(n) for n in names)
    min_hits = compute_min_hits(intent, len(groups), config)
    logger.debug(f"Anchor plan for {intent.value}: {names} (min_hits={min_hits})")
    return AnchorPlan(intent=intent, groups=groups, min_hits=min_hits, jurisdictions=hints)


# ── Co-occurrence filtering ────────────────────────────────────────

def count_group_hits(text: str, groups: Sequence[AnchorGroup]) -> int:
    """Number of distinct groups with at least one term in the text."""
    t = normalize(text)
    return sum(1 for g in groups if g.hit(t))


def effective_min_hits(groups: Sequence[AnchorGroup], min_hits: int) -> int:
    if len(groups) <= 1:
        return 1
    return max(1, min(min_hits, len(groups)))


def has_cooccurrence(text: str, groups: Sequence[AnchorGroup], min_hits: int) -> bool:
    if not groups:
        return True
    return count_group_hits(text, groups) >= effective_min_hits(groups, min_hits)


def filter_by_cooccurrence(passages: list, groups: Sequence[AnchorGroup], min_hits: int) -> list:
    """Keep passages whose content mentions at least `min_hits` distinct groups."""
    if not groups:
        return list(passages)
    return [p for p in passages if has_cooccurrence(p.content, groups, min_hits)]
