"""
Intent Classifier
==================

Maps a question to one of a closed set of intents using lexicon
membership tests, evaluated in fixed priority order (the first rule
that fires wins; term counts never break ties):

    1. REGISTRATION   registration terms AND gross-receipts terms
    2. EXEMPTION      exemption terms
    3. RATE_OR_BASE   taxable-base or rate terms
    4. BILL           bill / settlement / due-date terms
    5. GENERIC        anything else

Also detects the jurisdictions a question mentions.
"""

from __future__ import annotations

from enum import Enum

from taxrag.nlp.lexicon import JURISDICTION_GROUPS, LEXICON, contains_any, normalize


class Intent(str, Enum):
    REGISTRATION = "registration"
    EXEMPTION = "exemption"
    RATE_OR_BASE = "rate_or_base"
    BILL = "bill"
    GENERIC = "generic"


def detect_intent(question: str) -> Intent:
    """Classify a question. Deterministic and side-effect free."""
    s = normalize(question)
    if contains_any(s, LEXICON["adhesion"]) and contains_any(s, LEXICON["iibb"]):
        return Intent.REGISTRATION
    if contains_any(s, LEXICON["exencion"]):
        return Intent.EXEMPTION
    if contains_any(s, LEXICON["base_alicuota"]):
        return Intent.RATE_OR_BASE
    if contains_any(s, LEXICON["boleta"]) or contains_any(s, ("detalle", "concepto")):
        return Intent.BILL
    return Intent.GENERIC


def detect_jurisdictions(question: str) -> list[str]:
    """
    Jurisdiction codes mentioned in the question, in table order.

    "ciudad de buenos aires" also contains "buenos aires"; AR-BA is only
    kept for a CABA question when the province is named on its own.
    """
    s = normalize(question)
    found: list[str] = []
    for code, group_name in JURISDICTION_GROUPS.items():
        if contains_any(s, LEXICON[group_name]):
            found.append(code)
    if "AR-CABA" in found and "AR-BA" in found:
        remainder = s.replace("ciudad de buenos aires", " ")
        if not contains_any(remainder, LEXICON["pba"]):
            found.remove("AR-BA")
    return found
