"""
Verification Module
====================

Lexical, sentence-level grounding of generated text.
"""

from taxrag.verify.claim_checker import ClaimStats, claim_check, claim_stats, split_sentences

__all__ = ["ClaimStats", "claim_check", "claim_stats", "split_sentences"]
