"""
Access Policy
==============

Jurisdictions whose documents are only visible to authenticated
callers. Applied before any store query, identically in every phase.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from taxrag.config import AccessConfig


def _code(value: str) -> str:
    return value.strip().upper()


@dataclass(frozen=True)
class AccessDecision:
    """Jurisdiction filters after applying the access policy."""
    allowed: Optional[list[str]]
    excluded: list[str]

    @property
    def restricted_count(self) -> int:
        return len(self.excluded)


class AccessPolicy:
    """
    Usage:
        policy = AccessPolicy(AccessConfig(restricted_jurisdictions=["AR-CABA"]))
        decision = policy.apply(["AR-BA", "AR-CABA"], authenticated=False)
        decision.allowed   # ["AR-BA"]
        decision.excluded  # ["AR-CABA"]
    """

    def __init__(self, config: Optional[AccessConfig] = None):
        cfg = config or AccessConfig()
        self._restricted = tuple(dict.fromkeys(_code(c) for c in cfg.restricted_jurisdictions if c.strip()))

    @property
    def restricted(self) -> tuple[str, ...]:
        return self._restricted

    def restricted_for(self, authenticated: bool) -> list[str]:
        """Jurisdiction codes hidden from this caller."""
        return [] if authenticated else list(self._restricted)

    def sanitize(self, requested: Optional[Iterable[str]], authenticated: bool) -> Optional[list[str]]:
        """Drop restricted codes from an explicit jurisdiction filter (None stays None)."""
        if requested is None:
            return None
        hidden = set(self.restricted_for(authenticated))
        return [_code(j) for j in requested if j and j.strip() and _code(j) not in hidden]

    def apply(self, requested: Optional[Iterable[str]], authenticated: bool) -> AccessDecision:
        return AccessDecision(
            allowed=self.sanitize(requested, authenticated),
            excluded=self.restricted_for(authenticated),
        )
