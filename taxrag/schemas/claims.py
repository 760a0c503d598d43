"""
Claim Schema
=============

The output of the claim checker: one Claim per sentence of generated
text, each marked `supported` (with the passages that back it) or
`no_evidence`.

Data Flow:
    Generated answer + evidence passages → claim_check → [Claim]
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class ClaimStatus(str, Enum):
    """Lexical grounding outcome for a sentence."""
    SUPPORTED = "supported"
    NO_EVIDENCE = "no_evidence"


class Claim(BaseModel):
    """
    A sentence of generated output and its support status.

    Schema:
        {
          "sentence": "Las pymes tienen exención hasta 2026.",
          "status": "supported",
          "citations": ["provincial/ar-ba-ley.md#4"]
        }
    """
    sentence: str = Field(description="The sentence as it appears in the output")
    status: ClaimStatus = Field(description="supported / no_evidence")
    citations: list[str] = Field(
        default_factory=list,
        description="References (href) of the passages that support the sentence"
    )

    @property
    def is_supported(self) -> bool:
        return self.status == ClaimStatus.SUPPORTED
