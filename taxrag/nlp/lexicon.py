"""
Lexicon & Normalizer
=====================

Accent-insensitive normalization plus the domain synonym table used by
intent detection, anchor planning and co-occurrence filtering.

The table is built once at import time and exposed through read-only
mappings of tuples; nothing mutates it afterwards, so concurrent
searches can share it freely.

All containment checks compare normalized forms:
    normalize("Exención") == "exencion"
Terms of three characters or fewer ("rs", "iva", "pba") only match as
whole words so they do not fire inside longer words.
"""

from __future__ import annotations

import re
import unicodedata
from functools import lru_cache
from types import MappingProxyType
from typing import Iterable, Mapping


# ── Normalization ──────────────────────────────────────────────────

def strip_accents(text: str) -> str:
    """Remove combining diacritics (NFD decomposition)."""
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize(text: str) -> str:
    """Strip diacritics and lower-case."""
    return strip_accents(text or "").lower()


_TOKEN_RE = re.compile(r"[a-z0-9]+")


def tokenize(text: str, min_length: int = 1) -> list[str]:
    """Normalized alphanumeric words of at least `min_length` characters."""
    return [t for t in _TOKEN_RE.findall(normalize(text)) if len(t) >= min_length]


_SHORT_TERM_MAX = 3


@lru_cache(maxsize=4096)
def _term_pattern(term_norm: str) -> re.Pattern[str]:
    return re.compile(rf"(?<![a-z0-9]){re.escape(term_norm)}(?![a-z0-9])")


def contains_term(text_norm: str, term: str) -> bool:
    """
    True if `term` occurs in already-normalized `text_norm`.

    Longer terms use plain substring containment so stems such as
    "no alcanzad" match "no alcanzados"; short terms need word boundaries.
    """
    term_norm = normalize(term).strip()
    if not term_norm:
        return False
    if len(term_norm) <= _SHORT_TERM_MAX:
        return _term_pattern(term_norm).search(text_norm) is not None
    return term_norm in text_norm


def contains_any(text_norm: str, terms: Iterable[str]) -> bool:
    return any(contains_term(text_norm, t) for t in terms)


# ── Synonym table ──────────────────────────────────────────────────

_BASE = (
    "base imponible", "base de cálculo", "base de calculo", "valuación fiscal",
    "valuacion fiscal", "valúo", "valuo", "valor imponible", "determinación",
    "determinacion",
)
_ALICUOTA = ("alícuota", "alicuota", "tasa", "porcentaje")

_RAW_LEXICON: dict[str, tuple[str, ...]] = {
    # topics
    "adhesion": (
        "adhesion", "adhesión", "adhiero", "inscripcion", "inscripción", "alta",
        "empadronamiento", "tramite", "trámite", "adherir",
    ),
    "exencion": (
        "exención", "exencion", "exento", "exentos", "exímase", "eximase",
        "exceptúase", "exceptuase", "no alcanzad",
    ),
    "automotor": (
        "automotor", "automotores", "rodado", "rodados", "vehiculo", "vehículos",
        "vehiculo/s", "patente", "impuesto a los automotores",
    ),
    "iibb": (
        "ingresos brutos", "iibb", "régimen simplificado", "regimen simplificado", "rs",
    ),
    "base": _BASE,
    "alicuota": _ALICUOTA,
    "base_alicuota": _BASE + _ALICUOTA,
    "iva": ("iva", "impuesto al valor agregado"),
    "ganancias": ("ganancias", "impuesto a las ganancias"),
    "monotributo": ("monotributo", "régimen simplificado nacional"),
    "boleta": ("boleta", "liquidación", "liquidacion", "comprobante", "vencimiento"),
    "pyme": (
        "pyme", "PyME", "pymes", "mipyme", "mi pyme", "micro", "pequena", "pequeña",
        "mediana", "sme",
    ),
    # jurisdictions
    "pba": ("provincia de buenos aires", "pba", "arba", "buenos aires"),
    "caba": ("caba", "ciudad de buenos aires", "gcba"),
    "cba": ("cordoba", "córdoba", "dgr cordoba", "rentas cordoba"),
    "nacion": ("nacion", "nacional", "argentina"),
}

LEXICON: Mapping[str, tuple[str, ...]] = MappingProxyType(_RAW_LEXICON)

# Topic groups that extend an anchor plan whenever the question mentions them.
TOPIC_GROUPS: tuple[str, ...] = ("automotor", "iibb", "pyme", "iva", "ganancias", "monotributo")

# Jurisdiction code → lexicon group name.
JURISDICTION_GROUPS: Mapping[str, str] = MappingProxyType({
    "AR-BA": "pba",
    "AR-CABA": "caba",
    "AR-CBA": "cba",
    "AR-NACION": "nacion",
})

# Jurisdiction code → default path pattern for hinted searches.
JURISDICTION_PATH_PREFIXES: Mapping[str, str] = MappingProxyType({
    "AR-BA": "provincial/ar-ba-%",
    "AR-CABA": "provincial/ar-caba-%",
    "AR-CBA": "provincial/ar-cba-%",
})

STOPWORDS: frozenset[str] = frozenset({
    "a", "al", "ante", "con", "como", "cual", "cuales", "cuando", "de", "del", "desde",
    "donde", "el", "ella", "en", "entre", "es", "esta", "este", "esto", "hay", "la",
    "las", "le", "les", "lo", "los", "mas", "me", "mi", "mis", "necesito", "no", "o",
    "para", "pero", "por", "que", "quien", "se", "si", "sin", "sobre", "su", "sus",
    "tengo", "un", "una", "uno", "unos", "y", "ya",
})


def group(name: str) -> tuple[str, ...]:
    """Terms of a lexicon group (KeyError on unknown names)."""
    return LEXICON[name]


def mentions(text: str, group_name: str) -> bool:
    """True if the (raw) text mentions any term of the group."""
    return contains_any(normalize(text), LEXICON[group_name])


def content_words(text: str, min_length: int = 3) -> list[str]:
    """Distinct non-stopword tokens in order of appearance."""
    seen: dict[str, None] = {}
    for tok in tokenize(text, min_length=min_length):
        if tok not in STOPWORDS:
            seen.setdefault(tok, None)
    return list(seen)
