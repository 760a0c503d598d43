"""
TaxRAG CLI
===========

Command-line interface for building a passage store, searching it and
checking generated text against evidence.

Usage:
    python -m taxrag ingest --docs corpus/ --store data/store.json
    python -m taxrag search "¿Cómo adhiero al régimen simplificado?" --k 6
    python -m taxrag ask "¿Qué exenciones tiene una pyme en PBA?"
    python -m taxrag claim-check --text answer.txt --evidence passages.json
    python -m taxrag export-schemas --output-dir schemas
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from taxrag.config import RerankMode, get_config
from taxrag.utils import generate_run_id, setup_logging


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="taxrag",
        description="TaxRAG: hybrid retrieval and claim checking for tax questions",
    )
    parser.add_argument("--config", type=str, default=None, help="Path to config YAML")
    parser.add_argument("--store", type=str, default=None, help="Passage store JSON (overrides config)")
    parser.add_argument("--verbose", "-v", action="store_true")
    parser.add_argument("--json-logs", action="store_true", help="Structured JSON logs")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # ── ingest ──────────────────────────────────────────────────
    ingest_parser = subparsers.add_parser("ingest", help="Chunk and store documents")
    ingest_parser.add_argument("--docs", required=True, help="Directory of .md/.txt files or a JSONL file")
    ingest_parser.add_argument("--no-embed", action="store_true", help="Store passages without embeddings")

    # ── search ──────────────────────────────────────────────────
    search_parser = subparsers.add_parser("search", help="Search the passage store")
    search_parser.add_argument("question", help="Question text")
    search_parser.add_argument("--k", type=int, default=None)
    search_parser.add_argument("--per-doc", type=int, default=None)
    search_parser.add_argument("--min-similarity", type=float, default=None)
    search_parser.add_argument("--jurisdiction", action="append", default=None, help="Repeatable")
    search_parser.add_argument("--jurisdiction-hint", default=None)
    search_parser.add_argument("--rerank", choices=[m.value for m in RerankMode], default=None)
    search_parser.add_argument("--authenticated", action="store_true")
    search_parser.add_argument("--output", type=str, default=None, help="Output JSON path")

    # ── ask ─────────────────────────────────────────────────────
    ask_parser = subparsers.add_parser("ask", help="Search, generate an answer and claim-check it")
    ask_parser.add_argument("question", help="Question text")
    ask_parser.add_argument("--authenticated", action="store_true")

    # ── claim-check ─────────────────────────────────────────────
    cc_parser = subparsers.add_parser("claim-check", help="Check text against evidence passages")
    cc_parser.add_argument("--text", required=True, help="File with the generated text ('-' = stdin)")
    cc_parser.add_argument("--evidence", required=True, help="JSON list of passages (content + href)")

    # ── export-schemas ──────────────────────────────────────────
    schema_parser = subparsers.add_parser("export-schemas", help="Export JSON schemas")
    schema_parser.add_argument("--output-dir", default="schemas")

    args = parser.parse_args(argv)
    args.settings = get_config(args.config)

    setup_logging(
        level="DEBUG" if args.verbose else args.settings.log_level,
        format_style="json" if args.json_logs else args.settings.log_format,
        run_id=generate_run_id(),
    )

    commands = {
        "ingest": cmd_ingest,
        "search": cmd_search,
        "ask": cmd_ask,
        "claim-check": cmd_claim_check,
        "export-schemas": cmd_export_schemas,
    }
    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 1
    return handler(args)


def _store_path(args, config) -> Path:
    return Path(args.store) if args.store else config.store_path


def load_documents(docs_path: Path) -> list[dict]:
    """Read a JSONL file or every .md/.txt file under a directory."""
    documents = []
    if docs_path.is_file():
        with open(docs_path, encoding="utf-8") as f:
            for line in f:
                if line.strip():
                    documents.append(json.loads(line))
    elif docs_path.is_dir():
        for file in sorted(docs_path.rglob("*")):
            if file.suffix.lower() in (".md", ".txt") and file.is_file():
                documents.append({
                    "path": file.relative_to(docs_path).as_posix(),
                    "text": file.read_text(encoding="utf-8"),
                })
    else:
        raise FileNotFoundError(docs_path)
    return documents


def _pipeline(args, load_store: bool = True):
    from taxrag.ingest.indexer import PassageStore
    from taxrag.pipeline import TaxRAGPipeline

    config = args.settings
    store_path = _store_path(args, config)
    kwargs = dict(
        title_weight=config.scoring.title_weight,
        fallback_max_words=config.retrieval.fallback_max_words,
        fallback_min_word_length=config.retrieval.fallback_min_word_length,
    )
    if load_store and store_path.exists():
        store = PassageStore.load(store_path, **kwargs)
    else:
        store = PassageStore(**kwargs)
    return TaxRAGPipeline(config, store=store), store_path


def cmd_ingest(args) -> int:
    """Chunk documents and append them to the store file."""
    pipeline, store_path = _pipeline(args)
    try:
        documents = load_documents(Path(args.docs))
    except FileNotFoundError:
        print(f"Error: {args.docs} not found")
        return 1

    print(f"Ingesting {len(documents)} documents...")
    count = pipeline.ingest(documents, embed=not args.no_embed)
    pipeline.store.save(store_path)
    print(f"Ingestion complete: {count} passages → {store_path}")
    return 0


def cmd_search(args) -> int:
    from taxrag.schemas.retrieval import SearchOptions

    pipeline, store_path = _pipeline(args)
    if pipeline.store.size == 0:
        print(f"Error: store {store_path} is empty. Run 'taxrag ingest' first.")
        return 1

    options = SearchOptions(
        k=args.k,
        per_doc=args.per_doc,
        min_similarity=args.min_similarity,
        jurisdictions=args.jurisdiction,
        jurisdiction_hint=args.jurisdiction_hint,
        rerank_mode=RerankMode(args.rerank) if args.rerank else None,
        authenticated=args.authenticated,
    )
    result = pipeline.search(args.question, options=options)
    m = result.metrics

    print(f"\nQuestion: {result.query}")
    print(f"Intent: {m.intent}  Phase: {m.phase.value if m.phase else '-'}  "
          f"Weights: v={m.vector_weight:.2f} t={m.text_weight:.2f} ({m.weight_source.value})")
    if m.vector_fallback:
        print("  (embedding service unavailable: text-only search)")
    if m.restricted_count:
        print(f"  ({m.restricted_count} jurisdiction(s) hidden; authenticate to see them)")
    print()
    for i, p in enumerate(result.passages, 1):
        print(f"  [{i}] {p.title} ({p.href})  score={p.score:.3f} sim={p.similarity:.3f}")
        print(f"      {p.content[:160].replace(chr(10), ' ')}")

    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(result.model_dump_json(indent=2))
        print(f"\n  Results saved to {args.output}")
    return 0


def cmd_ask(args) -> int:
    from taxrag.generate.fallback import OpenAIChatGenerator
    from taxrag.schemas.retrieval import SearchOptions

    pipeline, _ = _pipeline(args)
    gen_cfg = pipeline.config.generation
    generator = OpenAIChatGenerator(
        api_key=gen_cfg.api_key,
        base_url=gen_cfg.base_url,
        temperature=gen_cfg.temperature,
        max_tokens=gen_cfg.max_tokens,
    )
    result = pipeline.answer(args.question, generator, options=SearchOptions(authenticated=args.authenticated))

    print(f"\n{result.answer}\n")
    for claim in result.claims:
        icon = "✅" if claim.is_supported else "⚠️"
        print(f"  {icon} {claim.sentence}")
    print(f"\n  Model: {result.model_id} (attempt {result.attempts})")
    print(f"  Support rate: {result.stats.support_rate:.0%}")
    return 0


def cmd_claim_check(args) -> int:
    from taxrag.schemas.retrieval import RetrievedPassage
    from taxrag.verify.claim_checker import claim_check, claim_stats

    config = args.settings
    text = sys.stdin.read() if args.text == "-" else Path(args.text).read_text(encoding="utf-8")
    with open(args.evidence, encoding="utf-8") as f:
        raw = json.load(f)
    if isinstance(raw, dict):
        raw = raw.get("passages", [])
    passages = [
        RetrievedPassage.model_validate({"passage_id": str(i), "doc_id": str(i), **item})
        for i, item in enumerate(raw)
    ]

    claims = claim_check(text, passages, config.claim_check)
    print(json.dumps([c.model_dump(mode="json") for c in claims], indent=2, ensure_ascii=False))
    stats = claim_stats(claims)
    print(f"\n{stats.supported}/{stats.total} sentences supported", file=sys.stderr)
    return 0


def export_all_schemas() -> dict[str, dict]:
    from taxrag.schemas import (
        Claim,
        Document,
        Passage,
        RetrievedPassage,
        SearchMetrics,
        SearchOptions,
        SearchResult,
    )

    models = {
        "document": Document,
        "passage": Passage,
        "retrieved_passage": RetrievedPassage,
        "search_options": SearchOptions,
        "search_metrics": SearchMetrics,
        "search_result": SearchResult,
        "claim": Claim,
    }
    return {name: model.model_json_schema() for name, model in models.items()}


def cmd_export_schemas(args) -> int:
    """Export JSON schemas for all data contracts."""
    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    schemas = export_all_schemas()
    for name, schema in schemas.items():
        path = output_dir / f"{name}.json"
        with open(path, "w", encoding="utf-8") as f:
            json.dump(schema, f, indent=2, ensure_ascii=False)
        print(f"Exported: {path}")

    print(f"\n{len(schemas)} schemas exported to {output_dir}/")
    return 0


if __name__ == "__main__":
    sys.exit(main())
