"""
Document Chunker
=================

Splits document bodies into fixed-size, overlapping character windows
and turns each window into a Passage.

Algorithm:
    1. Collapse runs of blank lines, strip the body
    2. Cut a window of `chunk_size` characters starting at `start`
    3. Advance `start` by `chunk_size - overlap` until the body is consumed

Every passage records its character offsets into the cleaned body, a
sequence index contiguous from 0 and an href of the form `<path>#<idx>`.

Data Flow:
    Raw text (+ front matter) → DocumentChunker → Document + [Passage]
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Optional

from taxrag.ingest.metadata import extract_front_matter, normalize_legal_metadata
from taxrag.schemas.documents import Document, Passage, validate_passage_sequence

logger = logging.getLogger("taxrag.ingest.chunker")

DEFAULT_CHUNK_SIZE = 700
DEFAULT_OVERLAP = 120


def clean_body(text: str) -> str:
    text = text.replace("\r\n", "\n")
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def slugify(value: str) -> str:
    """Lower-case ascii slug used for document ids derived from paths."""
    stem = re.sub(r"\.[a-z0-9]+$", "", value.lower())
    return re.sub(r"[^a-z0-9]+", "-", stem).strip("-") or "doc"


class DocumentChunker:
    """
    Character-window chunker.

    Usage:
        chunker = DocumentChunker(chunk_size=700, overlap=120)
        passages = chunker.chunk_text(body, doc_id="ar-ba-ley", path="provincial/ar-ba-ley.md")

    Args:
        chunk_size: Window length in characters.
        overlap: Characters shared by consecutive windows.
    """

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE, overlap: int = DEFAULT_OVERLAP):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if overlap < 0 or overlap >= chunk_size:
            raise ValueError("overlap must be >= 0 and smaller than chunk_size")
        self.chunk_size = chunk_size
        self.overlap = overlap

    def chunk_text(self, body: str, doc_id: str, path: str) -> list[Passage]:
        """
        Split an already-cleaned body into passages.

        Windows that are only whitespace are skipped without consuming an
        index, so indices stay contiguous.
        """
        if not body.strip():
            return []

        href_base = path.replace("\\", "/")
        step = self.chunk_size - self.overlap
        passages: list[Passage] = []
        start = 0

        while start < len(body):
            end = min(start + self.chunk_size, len(body))
            content = body[start:end].strip()
            if content:
                idx = len(passages)
                passages.append(Passage(
                    passage_id=f"{doc_id}#{idx}",
                    doc_id=doc_id,
                    idx=idx,
                    start=start,
                    end=end,
                    href=f"{href_base}#{idx}",
                    content=content,
                ))
            if end >= len(body):
                break
            start += step

        return passages

    def chunk_document(
        self,
        raw_text: str,
        path: str,
        doc_id: Optional[str] = None,
        title: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> tuple[Document, list[Passage]]:
        """
        Build a Document and its passages from raw text with optional front matter.

        Front-matter keys win over `metadata`; `title` falls back to the
        front matter, then the first markdown heading, then the file name.
        """
        body, front = extract_front_matter(raw_text)
        merged = {**(metadata or {}), **front}
        legal = normalize_legal_metadata(merged)
        body = clean_body(body)

        path = path.replace("\\", "/")
        doc_id = doc_id or slugify(path)
        if not title:
            title = merged.get("title") if isinstance(merged.get("title"), str) else None
        if not title:
            heading = re.search(r"^#\s+(.+)$", body, flags=re.MULTILINE)
            title = heading.group(1).strip() if heading else Path(path).stem

        extra = {k: v for k, v in merged.items() if k not in {"title", "jurisdiccion", "jurisdiction",
                                                               "tipo", "type", "anio", "year"}}
        if legal.tags:
            extra["tags"] = legal.tags

        document = Document(
            doc_id=doc_id,
            path=path,
            title=title,
            jurisdiction=legal.jurisdiction,
            doc_type=legal.doc_type,
            year=legal.year,
            metadata=extra,
        )
        passages = self.chunk_text(body, doc_id=doc_id, path=path)
        validate_passage_sequence(doc_id, passages)

        logger.info(f"Chunked document '{doc_id}': {len(body)} chars → {len(passages)} passages")
        return document, passages

    def chunk_documents(
        self,
        documents: list[dict[str, Any]],
    ) -> list[tuple[Document, list[Passage]]]:
        """
        Chunk multiple documents.

        Args:
            documents: Dicts with keys 'text' and 'path', and optionally
                'doc_id', 'title' and 'metadata'.
        """
        results = []
        for doc in documents:
            results.append(self.chunk_document(
                raw_text=doc["text"],
                path=doc["path"],
                doc_id=doc.get("doc_id"),
                title=doc.get("title"),
                metadata=doc.get("metadata"),
            ))
        total = sum(len(p) for _, p in results)
        logger.info(f"Chunked {len(documents)} documents → {total} total passages")
        return results
