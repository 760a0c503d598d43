"""
TaxRAG Evaluation Harness
==========================

Retrieval and grounding quality metrics computed over batches of
search results and claim checks.

Modules:
    metrics.py  - Hit rate, MRR, phase mix, claim support, latency
"""
