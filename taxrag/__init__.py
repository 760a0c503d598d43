"""
TaxRAG: Hybrid Retrieval and Claim Checking for Tax Questions
================================================================

TaxRAG turns a free-text tax question into a ranked, deduplicated,
jurisdiction-aware set of regulatory passages, and checks whether text
generated from those passages is lexically backed by them.

Architecture Overview:
    Question → Intent → Anchors → Multi-phase search → Rerank → Evidence
    Generated text + Evidence → Claim check

Modules:
    - nlp:       Normalizer, lexicon, intent classifier, anchor planner
    - ingest:    Metadata, chunking, embedding, passage store
    - retrieve:  Access policy, hybrid scoring, reranking, engine
    - verify:    Sentence-level claim checker
    - generate:  Provider error classification and model fallback
    - pipeline:  End-to-end orchestrator
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
