"""
Document & Passage Schema
==========================

Defines the read-only corpus the engine searches:
- Document: one regulatory text (law, decree, resolution, guide) with
  legal metadata (jurisdiction, type, year)
- Passage:  a contiguous slice of a Document's body, the unit that is
  retrieved, scored and cited

Design Decisions:
    - Passages use character offsets into the document body so a citation
      can be highlighted in the source
    - Passage indices within a document are unique and contiguous from 0
      (enforced when a Document is built with its passages)
    - Embeddings are optional; a passage without one scores 0 similarity

Data Flow:
    Ingestion (external) → Document + Passages → PassageStore → Engine
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class Document(BaseModel):
    """
    A source document, immutable per version.

    Schema:
        {
          "doc_id": "ar-ba-ley-15391",
          "path": "provincial/ar-ba-ley-15391.md",
          "title": "Ley Impositiva 2023",
          "jurisdiction": "AR-BA",
          "doc_type": "LEY",
          "year": 2023,
          "metadata": {"tags": ["iibb"]}
        }
    """
    doc_id: str = Field(description="Stable document identifier")
    path: str = Field(description="Corpus-relative path (used by path_like filters)")
    title: str = Field(default="", description="Document title (weighted higher in text rank)")
    jurisdiction: Optional[str] = Field(default=None, description="Jurisdiction code, e.g. 'AR-BA'")
    doc_type: Optional[str] = Field(default=None, description="Normative type: LEY, DECRETO, ...")
    year: Optional[int] = Field(default=None, ge=1900, le=2100, description="Publication year")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Free-form metadata")

    @field_validator("path")
    @classmethod
    def normalize_path(cls, v: str) -> str:
        """Windows separators become forward slashes."""
        return v.replace("\\", "/")

    @field_validator("jurisdiction", "doc_type")
    @classmethod
    def upper_code(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip().upper()
        return v or None


class Passage(BaseModel):
    """
    A chunk of a Document's body.

    Invariants:
        - start < end
        - belongs to exactly one Document (doc_id)
    """
    passage_id: str = Field(description="Unique passage id (format: '{doc_id}#{idx}')")
    doc_id: str = Field(description="Owning document")
    idx: int = Field(ge=0, description="Sequence index within the document")
    start: int = Field(ge=0, description="Start character offset in the document body")
    end: int = Field(gt=0, description="End character offset (exclusive)")
    href: str = Field(description="Reference back into the document, e.g. 'path#3'")
    content: str = Field(description="Passage text")
    embedding: Optional[list[float]] = Field(default=None, description="Embedding vector, if any")

    @model_validator(mode="after")
    def validate_offsets(self) -> "Passage":
        if self.start >= self.end:
            raise ValueError(f"Passage start ({self.start}) must be < end ({self.end})")
        return self

    @field_validator("href")
    @classmethod
    def normalize_href(cls, v: str) -> str:
        return (v or "#").replace("\\", "/")


def validate_passage_sequence(doc_id: str, passages: list[Passage]) -> None:
    """
    Check the ownership and contiguity invariants for one document.

    Raises:
        ValueError: if a passage belongs to another document or the
            indices are not exactly 0..n-1.
    """
    for p in passages:
        if p.doc_id != doc_id:
            raise ValueError(f"Passage {p.passage_id} belongs to {p.doc_id}, not {doc_id}")
    indices = sorted(p.idx for p in passages)
    if indices != list(range(len(passages))):
        raise ValueError(
            f"Passage indices for {doc_id} must be contiguous from 0, got {indices}"
        )
