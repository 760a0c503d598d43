"""
Legal Metadata
===============

Front-matter extraction and normalization of the legal metadata
attached to each source document (jurisdiction, normative type, year,
tags). Lenient by design of the corpus: unknown or malformed values are
dropped rather than rejected.

Front matter is a YAML header between `---` fences:

    ---
    title: Ley Impositiva 2024
    jurisdiccion: caba
    tipo: ley
    anio: 2024
    tags: [iibb, alicuotas]
    ---
    Body text...
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional

import yaml

logger = logging.getLogger("taxrag.ingest.metadata")

JURISDICTION_ALIASES: dict[str, str] = {
    "caba": "AR-CABA",
    "ciudad de buenos aires": "AR-CABA",
    "pba": "AR-BA",
    "provincia de buenos aires": "AR-BA",
    "cordoba": "AR-CBA",
    "argentina": "AR-NACION",
    "nacional": "AR-NACION",
    "nacion": "AR-NACION",
}

TYPE_ALIASES: dict[str, str] = {
    "ley": "LEY",
    "decreto": "DECRETO",
    "ordenanza": "ORDENANZA",
    "resolucion": "RESOLUCION",
    "resolución": "RESOLUCION",
    "guia": "GUIA",
}

MIN_YEAR = 1900
MAX_YEAR = 2100


@dataclass
class LegalMetadata:
    jurisdiction: Optional[str] = None
    doc_type: Optional[str] = None
    year: Optional[int] = None
    tags: list[str] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict)


def extract_front_matter(raw: str) -> tuple[str, dict[str, Any]]:
    """
    Split a document into (body, metadata).

    The header between the `---` fences is parsed with `yaml.safe_load`.
    Text without a closed header is returned unchanged with empty
    metadata; a header that is not a YAML mapping yields empty metadata.
    """
    if not raw.startswith("---"):
        return raw, {}
    end = raw.find("\n---", 3)
    if end == -1:
        return raw, {}

    header = raw[3:end]
    body = raw[end + 4:].lstrip()
    try:
        metadata = yaml.safe_load(header) or {}
    except yaml.YAMLError as e:
        logger.warning(f"Unreadable front matter, ignoring it: {e}")
        return body, {}
    if not isinstance(metadata, dict):
        return body, {}
    return body, {str(k): v for k, v in metadata.items()}


def _first(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value
    if isinstance(value, list) and value:
        return str(value[0])
    return None


def normalize_jurisdiction(value: Optional[str]) -> Optional[str]:
    if not value or not value.strip():
        return None
    cleaned = value.strip().lower()
    return JURISDICTION_ALIASES.get(cleaned, value.strip().upper())


def normalize_doc_type(value: Optional[str]) -> Optional[str]:
    if not value or not value.strip():
        return None
    cleaned = value.strip().lower()
    return TYPE_ALIASES.get(cleaned, value.strip().upper())


def normalize_year(value: Any) -> Optional[int]:
    if isinstance(value, date):
        value = value.year
    if value is None or isinstance(value, bool):
        return None
    try:
        year = round(float(value))
    except (TypeError, ValueError):
        return None
    if year < MIN_YEAR or year > MAX_YEAR:
        return None
    return year


def normalize_legal_metadata(raw: dict[str, Any]) -> LegalMetadata:
    """
    Normalize Spanish or English metadata keys into LegalMetadata.

    Accepts `jurisdiccion`/`jurisdiction`, `tipo`/`type`, `anio`/`year`.
    """
    raw = raw if isinstance(raw, dict) else {}
    jurisdiction = normalize_jurisdiction(_first(raw.get("jurisdiccion", raw.get("jurisdiction"))))
    doc_type = normalize_doc_type(_first(raw.get("tipo", raw.get("type"))))
    year = normalize_year(raw.get("anio", raw.get("year")))
    tags_raw = raw.get("tags")
    tags = [str(t).strip() for t in tags_raw if str(t).strip()] if isinstance(tags_raw, list) else []
    return LegalMetadata(jurisdiction=jurisdiction, doc_type=doc_type, year=year, tags=tags, raw=raw)
