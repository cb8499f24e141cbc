"""Batch evaluation over a dataset of queries.

Supports:
- Bounded concurrency with FIFO admission and submission-order results
- Per-item failure isolation (errored items score 0 with diagnosis "error")
- Aggregate statistics with nearest-rank p95 latencies
- Guarded persistence of one benchmark record per run
"""

import asyncio
import logging
import time
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, TypeVar

from src.ragtrust.audit import AuditLogger, AuditSeverity, BenchmarkEvent, generate_request_id, get_audit_logger
from src.ragtrust.config import Settings, settings
from src.ragtrust.errors import InputValidationError, normalize_error_message
from src.ragtrust.evals.metrics import dataset_hash, mean, percentile
from src.ragtrust.evals.store import BenchmarkStore
from src.ragtrust.evaluator import QueryEvaluator
from src.ragtrust.models import (
    BatchResult,
    BatchStatistics,
    BenchmarkRecord,
    DatasetItem,
    Diagnosis,
    EvaluationQueryResult,
    QueryOptions,
)
from src.ragtrust.trust import default_weights

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ConcurrencyLimiter:
    """Admits up to `limit` coroutines at once; the rest wait in FIFO order.

    A finishing task hands its slot directly to the oldest waiter, so a
    newly submitted task can never overtake a queued one.
    """

    def __init__(self, limit: int):
        if limit < 1:
            raise ValueError("Concurrency limit must be at least 1")
        self.limit = limit
        self.running = 0
        self.peak = 0
        self._waiters: deque[asyncio.Future] = deque()

    @property
    def queued(self) -> int:
        return len(self._waiters)

    async def _acquire(self) -> None:
        if self.running < self.limit and not self._waiters:
            self.running += 1
        else:
            waiter = asyncio.get_running_loop().create_future()
            self._waiters.append(waiter)
            # Slot is transferred by _release; running is not incremented here
            await waiter
        self.peak = max(self.peak, self.running)

    def _release(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        self.running -= 1

    async def run(self, fn: Callable[[], Awaitable[T]]) -> T:
        await self._acquire()
        try:
            return await fn()
        finally:
            self._release()


def error_result(
    item: DatasetItem,
    error: BaseException,
    generation_model: Optional[str],
    evaluation_model: Optional[str],
) -> EvaluationQueryResult:
    """Zero-score placeholder for an item whose evaluation failed."""
    return EvaluationQueryResult(
        query=item.query,
        ground_truth=item.ground_truth,
        trust_score=0.0,
        generation_model=generation_model or "default",
        evaluation_model=evaluation_model or "default",
        diagnosis=Diagnosis.ERROR,
        error=normalize_error_message(error),
    )


def compute_statistics(
    results: list[EvaluationQueryResult],
    dataset_size: int,
    batch_total_ms: float,
    concurrency: int,
    app_settings: Optional[Settings] = None,
) -> BatchStatistics:
    """Aggregate a run; means and percentiles cover non-errored items only."""
    app_settings = app_settings or settings
    ok = [r for r in results if not r.error]

    generation_latencies = [r.performance.generation_ms for r in ok]
    evaluation_latencies = [r.performance.evaluation_ms for r in ok]

    diagnosis_counts: dict[str, int] = {}
    for r in results:
        diagnosis_counts[r.diagnosis.value] = diagnosis_counts.get(r.diagnosis.value, 0) + 1

    return BatchStatistics(
        total_queries=len(results),
        successful_evaluations=len(ok),
        failed_evaluations=len(results) - len(ok),
        dataset_size=dataset_size,
        average_trust_score=mean([r.trust_score for r in ok]),
        average_faithfulness=mean([r.faithfulness_score for r in ok if r.faithfulness_score is not None]),
        average_precision=mean([r.retrieval.precision_at_k for r in ok]),
        average_recall=mean([r.retrieval.recall_at_k for r in ok]),
        average_generation_latency=mean(generation_latencies),
        average_evaluation_latency=mean(evaluation_latencies),
        average_similarity_latency=mean([r.performance.similarity_ms for r in ok]),
        p95_generation_ms=percentile(generation_latencies, 0.95),
        p95_evaluation_ms=percentile(evaluation_latencies, 0.95),
        batch_total_ms=batch_total_ms,
        cold_starts=sum(1 for r in ok if r.cold_start),
        diagnosis_counts=diagnosis_counts,
        concurrency=concurrency,
        trust_weights=default_weights(app_settings.trust),
        evaluation_version=app_settings.evals.evaluation_version,
    )


def validate_benchmark_record(record: BenchmarkRecord) -> Optional[str]:
    """Check a record before persistence.

    Returns:
        None if the record may be written, else the reason to skip it.
    """
    stats = record.statistics
    if not isinstance(record.generation_model, str) or not record.generation_model:
        return "invalid generation model"
    if not isinstance(record.evaluation_model, str) or not record.evaluation_model:
        return "invalid evaluation model"
    if stats.dataset_size <= 0:
        return "empty dataset"
    if stats.batch_total_ms <= 0:
        return "zero latency"
    if stats.average_trust_score == 0 and stats.successful_evaluations > 0:
        return "zero trust score"
    return None


class BatchEvaluator:
    """Runs a dataset through the query evaluator under a concurrency bound."""

    def __init__(
        self,
        evaluator: QueryEvaluator,
        store: Optional[BenchmarkStore] = None,
        app_settings: Optional[Settings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.evaluator = evaluator
        self.store = store
        self.settings = app_settings or evaluator.settings
        self._audit_logger = audit_logger

    @property
    def audit(self) -> AuditLogger:
        return self._audit_logger or get_audit_logger()

    async def evaluate_batch(
        self,
        collection_id: str,
        dataset: list[DatasetItem],
        generation_model: Optional[str] = None,
        evaluation_model: Optional[str] = None,
        max_concurrency: Optional[int] = None,
        benchmark_id: Optional[str] = None,
    ) -> BatchResult:
        """Evaluate every dataset item and persist the run summary.

        Args:
            collection_id: Vector collection to search.
            dataset: Queries with optional relevant ids and ground truth.
            generation_model: Model answering the queries.
            evaluation_model: Model judging faithfulness.
            max_concurrency: In-flight evaluation bound.
            benchmark_id: Shared id when run as part of a leaderboard.

        Returns:
            BatchResult with one result per item, in dataset order.

        Raises:
            InputValidationError: If the collection id or dataset is empty.
        """
        if not collection_id or not collection_id.strip():
            raise InputValidationError("Collection ID cannot be empty")
        if not dataset:
            raise InputValidationError("Dataset cannot be empty")

        concurrency = max_concurrency or self.settings.evals.max_concurrency
        limiter = ConcurrencyLimiter(concurrency)
        start = time.perf_counter()

        async def evaluate_item(item: DatasetItem) -> EvaluationQueryResult:
            options = QueryOptions(
                generation_model=generation_model,
                evaluation_model=evaluation_model,
                include_faithfulness=True,
                ground_truth=item.ground_truth,
                relevant_document_ids=item.relevant_document_ids,
            )
            try:
                return await self.evaluator.evaluate(collection_id, item.query, options)
            except Exception as e:
                logger.warning("Evaluation failed for query %r: %s", item.query[:60], e)
                return error_result(item, e, generation_model, evaluation_model)

        results = await asyncio.gather(
            *(limiter.run(lambda item=item: evaluate_item(item)) for item in dataset)
        )
        batch_total_ms = (time.perf_counter() - start) * 1000

        statistics = compute_statistics(
            list(results), len(dataset), batch_total_ms, concurrency, self.settings
        )
        record = BenchmarkRecord(
            benchmark_id=benchmark_id or str(uuid.uuid4()),
            timestamp=datetime.now(timezone.utc).isoformat(),
            dataset_hash=dataset_hash(dataset),
            generation_model=generation_model or "default",
            evaluation_model=evaluation_model or "default",
            statistics=statistics,
        )
        persisted = await self.persist(record)

        logger.info(
            "Batch %s: %d/%d succeeded, avg trust %.3f, %.0fms",
            record.benchmark_id,
            statistics.successful_evaluations,
            statistics.total_queries,
            statistics.average_trust_score,
            batch_total_ms,
        )
        return BatchResult(
            results=list(results), statistics=statistics, record=record, persisted=persisted
        )

    async def persist(self, record: BenchmarkRecord) -> bool:
        """Validate and append a record; failures are logged, never raised."""
        skip_reason = validate_benchmark_record(record)
        if skip_reason is None and self.store is None:
            skip_reason = "no benchmark store configured"

        persisted = False
        if skip_reason is None:
            try:
                await self.store.append_record(record)
                persisted = True
            except OSError as e:
                skip_reason = f"write failed: {e}"
                logger.warning("Failed to persist benchmark record %s: %s", record.benchmark_id, e)
        else:
            logger.warning("Skipping benchmark record %s: %s", record.benchmark_id, skip_reason)

        self.audit.log(
            BenchmarkEvent(
                request_id=generate_request_id(),
                severity=AuditSeverity.INFO if persisted else AuditSeverity.WARN,
                latency_ms=record.statistics.batch_total_ms,
                benchmark_id=record.benchmark_id,
                generation_model=record.generation_model,
                dataset_size=record.statistics.dataset_size,
                successful_evaluations=record.statistics.successful_evaluations,
                persisted=persisted,
                skip_reason=skip_reason,
            )
        )
        return persisted
