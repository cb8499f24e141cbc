"""CLI entry point for trust evaluation."""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from src.ragtrust.clients import AnthropicGenerator, SentenceTransformerEmbedder
from src.ragtrust.config import settings
from src.ragtrust.errors import RagTrustError, normalize_error_message
from src.ragtrust.evaluator import QueryEvaluator
from src.ragtrust.models import DatasetItem, QueryOptions
from src.ragtrust.vector_store import FaissVectorStore


def load_dataset(path: Path) -> list[DatasetItem]:
    """Load a dataset from a JSON array or a JSON-lines file."""
    text = path.read_text(encoding="utf-8")
    if path.suffix == ".jsonl":
        rows = [json.loads(line) for line in text.splitlines() if line.strip()]
    else:
        rows = json.loads(text)
    return [DatasetItem.model_validate(row) for row in rows]


def build_evaluator() -> QueryEvaluator:
    """Wire the configured generator, embedder and FAISS store."""
    return QueryEvaluator(
        generator=AnthropicGenerator(),
        embedder=SentenceTransformerEmbedder(),
        store=FaissVectorStore.load(settings.index_dir),
    )


def _build_batch_evaluator(evaluator: QueryEvaluator, dry_run: bool):
    from src.ragtrust.evals.batch import BatchEvaluator
    from src.ragtrust.evals.store import InMemoryBenchmarkStore, JsonlBenchmarkStore

    store = InMemoryBenchmarkStore() if dry_run else JsonlBenchmarkStore()
    return BatchEvaluator(evaluator, store=store)


async def _resolve_collection(evaluator: QueryEvaluator, name: Optional[str]) -> str:
    from src.ragtrust.clients import resolve_collection_id

    return await resolve_collection_id(name or settings.collection_name, evaluator.store, evaluator.cache)


def cmd_query(args: argparse.Namespace) -> int:
    """Evaluate a single query."""
    options = QueryOptions(
        top_k=args.k,
        year=args.year,
        document_type=args.document_type,
        generation_model=args.model,
        include_faithfulness=args.faithfulness,
        ground_truth=args.ground_truth,
    )

    print("=" * 60)
    print(f"Query: {args.query}")
    print(f"Collection: {args.collection or settings.collection_name}")
    print(f"Top-k: {args.k or settings.retrieval.default_top_k}")
    print("=" * 60)

    try:
        evaluator = build_evaluator()

        async def run():
            collection_id = await _resolve_collection(evaluator, args.collection)
            return await evaluator.evaluate(collection_id, args.query, options)

        result = asyncio.run(run())
    except ValueError as e:
        print(f"\nConfiguration Error: {e}", file=sys.stderr)
        return 1
    except RagTrustError as e:
        print(f"\nError: {normalize_error_message(e)}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(result.model_dump(mode="json"), indent=2, ensure_ascii=False))
        return 0

    print("\n--- Answer ---")
    print(result.answer)

    breakdown = result.trust_breakdown
    print(f"\nTrust score: {result.trust_score:.2f} ({breakdown.mode.value if breakdown else 'n/a'})")
    if breakdown and breakdown.capped_by_citation_policy:
        print(f"  Capped by citation policy at {breakdown.cap_value:.2f}")
    if breakdown and breakdown.semantic_compensation_applied:
        print("  Semantic compensation applied")
    print(f"Diagnosis: {result.diagnosis.value}")

    if result.citation_validation:
        cv = result.citation_validation
        print(f"Citations: {cv.unique_citations} coverage={cv.coverage:.2f} valid={cv.is_valid} retries={cv.retry_count}")

    if result.context_trace:
        print("\n--- Sources ---")
        for item in result.context_trace:
            print(f"[{item.citation_number}] {item.label} | Confidence {item.confidence:.2f}")

    perf = result.performance
    print(
        f"\nLatency: embed {perf.embedding_ms:.0f}ms, retrieve {perf.retrieval_ms:.0f}ms, "
        f"generate {perf.generation_ms:.0f}ms, evaluate {perf.evaluation_ms:.0f}ms, total {perf.total_ms:.0f}ms"
    )
    return 0


def cmd_batch(args: argparse.Namespace) -> int:
    """Evaluate a dataset and persist a benchmark record."""
    try:
        dataset = load_dataset(Path(args.dataset))
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        print(f"\nError loading dataset: {e}", file=sys.stderr)
        return 1

    print("=" * 60)
    print(f"Dataset: {args.dataset} ({len(dataset)} queries)")
    print(f"Generation model: {args.model or settings.anthropic_model}")
    print(f"Concurrency: {args.concurrency or settings.evals.max_concurrency}")
    print("=" * 60)

    try:
        evaluator = build_evaluator()
        batch_evaluator = _build_batch_evaluator(evaluator, args.dry_run)

        async def run():
            collection_id = await _resolve_collection(evaluator, args.collection)
            return await batch_evaluator.evaluate_batch(
                collection_id,
                dataset,
                generation_model=args.model,
                evaluation_model=args.evaluation_model,
                max_concurrency=args.concurrency,
            )

        batch = asyncio.run(run())
    except ValueError as e:
        print(f"\nConfiguration Error: {e}", file=sys.stderr)
        return 1
    except RagTrustError as e:
        print(f"\nError: {normalize_error_message(e)}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(batch.record.model_dump(by_alias=True, mode="json"), indent=2, ensure_ascii=False))
        return 0

    stats = batch.statistics
    print("\nBatch Summary:")
    print(f"  Benchmark ID: {batch.record.benchmark_id}")
    print(f"  Successful: {stats.successful_evaluations}/{stats.total_queries}")
    print(f"  Avg trust score: {stats.average_trust_score:.3f}")
    print(f"  Avg faithfulness: {stats.average_faithfulness:.3f}")
    print(f"  Avg precision@K: {stats.average_precision:.3f}")
    print(f"  p95 generation: {stats.p95_generation_ms:.0f}ms")
    print(f"  p95 evaluation: {stats.p95_evaluation_ms:.0f}ms")
    print(f"  Cold starts: {stats.cold_starts}")
    print(f"  Diagnoses: {stats.diagnosis_counts}")
    print(f"  Persisted: {batch.persisted}")

    for i, r in enumerate(batch.results, 1):
        status = r.error or f"{r.trust_score:.2f} {r.diagnosis.value}"
        print(f"  [{i}] {r.query[:50]} -> {status}")
    return 0


def cmd_leaderboard(args: argparse.Namespace) -> int:
    """Compare generation models on one dataset."""
    from src.ragtrust.evals.leaderboard import run_leaderboard

    try:
        dataset = load_dataset(Path(args.dataset))
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        print(f"\nError loading dataset: {e}", file=sys.stderr)
        return 1

    models = args.models.split(",") if args.models else list(settings.evals.default_models)

    print("=" * 60)
    print(f"Leaderboard over {len(dataset)} queries")
    print(f"Models: {', '.join(models)}")
    print("=" * 60)

    try:
        evaluator = build_evaluator()
        batch_evaluator = _build_batch_evaluator(evaluator, args.dry_run)

        async def run():
            collection_id = await _resolve_collection(evaluator, args.collection)
            return await run_leaderboard(
                batch_evaluator,
                collection_id,
                dataset,
                models=models,
                evaluation_model=args.evaluation_model,
                max_concurrency=args.concurrency,
            )

        result = asyncio.run(run())
    except ValueError as e:
        print(f"\nConfiguration Error: {e}", file=sys.stderr)
        return 1
    except RagTrustError as e:
        print(f"\nError: {normalize_error_message(e)}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps([e.model_dump(mode="json") for e in result.leaderboard], indent=2))
        return 0

    print(f"\nBenchmark ID: {result.benchmark_id}\n")
    for rank, entry in enumerate(result.leaderboard, 1):
        print(
            f"  {rank}. {entry.model}: adjusted {entry.adjusted_score:.4f} "
            f"(trust {entry.avg_trust_score:.3f}, gen {entry.avg_generation_latency:.0f}ms, "
            f"eval {entry.avg_evaluation_latency:.0f}ms)"
        )
    print(f"\nTotal: {result.total_batch_ms:.0f}ms")
    return 0


def cmd_history(args: argparse.Namespace) -> int:
    """Show persisted benchmark records."""
    from src.ragtrust.evals.store import JsonlBenchmarkStore

    store = JsonlBenchmarkStore(Path(args.file) if args.file else None)
    records = asyncio.run(store.read_history())
    if args.limit:
        records = records[-args.limit:]

    if args.json:
        print(json.dumps([r.model_dump(by_alias=True, mode="json") for r in records], indent=2, ensure_ascii=False))
        return 0

    print(f"{len(records)} benchmark record(s) in {store.path}\n")
    for r in records:
        print(
            f"  {r.timestamp}  {r.benchmark_id[:8]}  {r.generation_model:<32} "
            f"trust {r.statistics.average_trust_score:.3f}  n={r.statistics.dataset_size}  "
            f"hash {r.dataset_hash[:12]}"
        )
    return 0


def cmd_info(args: argparse.Namespace) -> int:
    """Show configuration and index status."""
    print("=" * 60)
    print("Trust Evaluation Information")
    print("=" * 60)

    print("\nConfiguration:")
    print(f"  Embedding model: {settings.embedding_model}")
    print(f"  Generation model: {settings.anthropic_model}")
    print(f"  Evaluation model: {settings.evaluation_model}")
    print(f"  Default top-k: {settings.retrieval.default_top_k}")
    print(f"  Max fetch-k: {settings.retrieval.max_fetch_k}")
    print(f"  Trust weights: faithfulness={settings.trust.faithfulness_weight}, "
          f"precision={settings.trust.precision_weight}, similarity={settings.trust.similarity_weight}")
    print(f"  Citation caps: lightweight={settings.trust.lightweight_cap}, full={settings.trust.full_cap}")
    print(f"  Max concurrency: {settings.evals.max_concurrency}")
    print(f"  Evaluation version: {settings.evals.evaluation_version}")

    print("\nPaths:")
    print(f"  Index directory: {settings.index_dir}")
    print(f"  Benchmark history: {settings.evals.benchmark_path}")

    print("\nIndex Status:")
    if settings.index_dir.exists():
        store = FaissVectorStore.load(settings.index_dir)
        names = sorted(p.name.removesuffix(".docstore.json") for p in settings.index_dir.glob("*.docstore.json"))
        if not names:
            print("  No collections found")
        for name in names:
            collection_id = asyncio.run(store.get_collection_id(name))
            print(f"  {name}: {store.count(collection_id)} chunks")
    else:
        print("  Index: Not created")

    return 0


def main() -> int:
    """Main entry point."""
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    parser = argparse.ArgumentParser(
        description="RAG Trust Evaluation CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Query command
    query_parser = subparsers.add_parser("query", help="Evaluate a single query")
    query_parser.add_argument("query", type=str, help="Question to ask")
    query_parser.add_argument("-k", type=int, help=f"Chunks to retrieve (default: {settings.retrieval.default_top_k})")
    query_parser.add_argument("--collection", type=str, help="Collection name")
    query_parser.add_argument("--year", type=int, help="Only use documents from this year")
    query_parser.add_argument("--document-type", type=str, help="Only use documents of this type")
    query_parser.add_argument("--model", type=str, help="Generation model")
    query_parser.add_argument("--ground-truth", type=str, help="Expected answer (enables full scoring)")
    query_parser.add_argument(
        "--faithfulness",
        action="store_true",
        help="Run the faithfulness judge (enables full scoring)",
    )
    query_parser.add_argument("--json", action="store_true", help="Output result as JSON")

    # Batch and leaderboard commands share dataset arguments
    for name, help_text in (
        ("batch", "Evaluate a dataset of queries"),
        ("leaderboard", "Rank generation models on a dataset"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("dataset", type=str, help="Dataset file (.json array or .jsonl)")
        sub.add_argument("--collection", type=str, help="Collection name")
        sub.add_argument("--evaluation-model", type=str, help="Faithfulness judge model")
        sub.add_argument("--concurrency", type=int, help="Max in-flight evaluations")
        sub.add_argument("--dry-run", action="store_true", help="Do not write benchmark history")
        sub.add_argument("--json", action="store_true", help="Output as JSON")
        if name == "batch":
            sub.add_argument("--model", type=str, help="Generation model")
        else:
            sub.add_argument("--models", type=str, help="Comma-separated generation models")

    # History command
    history_parser = subparsers.add_parser("history", help="Show benchmark history")
    history_parser.add_argument("--file", type=str, help="Benchmark history file")
    history_parser.add_argument("--limit", type=int, help="Show only the latest N records")
    history_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # Info command
    subparsers.add_parser("info", help="Show configuration and index status")

    args = parser.parse_args()

    if args.command == "query":
        return cmd_query(args)
    elif args.command == "batch":
        return cmd_batch(args)
    elif args.command == "leaderboard":
        return cmd_leaderboard(args)
    elif args.command == "history":
        return cmd_history(args)
    elif args.command == "info":
        return cmd_info(args)
    else:
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())
