"""Multi-model leaderboard.

Each candidate generation model runs the same dataset under one shared
benchmark id. Models are ranked by a latency-adjusted trust score:

    adjusted = avg_trust - (avg_generation_ms + avg_evaluation_ms) / divisor
"""

import logging
import time
import uuid
from typing import Optional

from src.ragtrust.evals.batch import BatchEvaluator
from src.ragtrust.models import BatchResult, DatasetItem, LeaderboardEntry, MultiModelResult

logger = logging.getLogger(__name__)


def build_leaderboard(
    model_results: dict[str, BatchResult],
    latency_penalty_divisor: float = 100000.0,
) -> list[LeaderboardEntry]:
    """Rank models by adjusted score, descending; ties keep run order."""
    entries = []
    for model, batch in model_results.items():
        stats = batch.statistics
        penalty = (stats.average_generation_latency + stats.average_evaluation_latency) / latency_penalty_divisor
        entries.append(
            LeaderboardEntry(
                model=model,
                avg_trust_score=stats.average_trust_score,
                avg_faithfulness=stats.average_faithfulness,
                avg_precision=stats.average_precision,
                avg_generation_latency=stats.average_generation_latency,
                avg_evaluation_latency=stats.average_evaluation_latency,
                p95_generation_ms=stats.p95_generation_ms,
                adjusted_score=stats.average_trust_score - penalty,
            )
        )
    # sorted() is stable
    return sorted(entries, key=lambda e: e.adjusted_score, reverse=True)


async def run_leaderboard(
    batch_evaluator: BatchEvaluator,
    collection_id: str,
    dataset: list[DatasetItem],
    models: Optional[list[str]] = None,
    evaluation_model: Optional[str] = None,
    max_concurrency: Optional[int] = None,
) -> MultiModelResult:
    """Run the dataset once per model and rank the models.

    Args:
        batch_evaluator: Evaluator used for every model run.
        collection_id: Vector collection to search.
        dataset: Queries to evaluate.
        models: Candidate generation models (configured defaults when omitted).
        evaluation_model: Judge model shared by all runs.
        max_concurrency: In-flight bound within each run.

    Returns:
        MultiModelResult with per-model batches and the ranked leaderboard.
    """
    evals_config = batch_evaluator.settings.evals
    models = models or list(evals_config.default_models)
    benchmark_id = str(uuid.uuid4())
    start = time.perf_counter()

    model_results: dict[str, BatchResult] = {}
    for model in models:
        logger.info("Leaderboard %s: evaluating %s", benchmark_id, model)
        model_results[model] = await batch_evaluator.evaluate_batch(
            collection_id,
            dataset,
            generation_model=model,
            evaluation_model=evaluation_model,
            max_concurrency=max_concurrency,
            benchmark_id=benchmark_id,
        )

    return MultiModelResult(
        benchmark_id=benchmark_id,
        model_results=model_results,
        leaderboard=build_leaderboard(model_results, evals_config.latency_penalty_divisor),
        total_batch_ms=(time.perf_counter() - start) * 1000,
    )
