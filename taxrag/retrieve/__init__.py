"""
Retrieval Module
=================

Multi-phase hybrid search over a passage store.
"""

from taxrag.retrieve.engine import (
    DEFAULT_PHASES,
    PhaseSpec,
    QueryValidationError,
    RetrievalEngine,
    SearchCancelledError,
)

__all__ = [
    "DEFAULT_PHASES",
    "PhaseSpec",
    "QueryValidationError",
    "RetrievalEngine",
    "SearchCancelledError",
]
