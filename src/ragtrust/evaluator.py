"""Single-query trust evaluation.

Pipeline flow:
    Embed → Retrieve → Generate → ValidateCitations → [Regenerate → ValidateCitations] → Score → Done

- Zero retrieved chunks short-circuit to a fixed refusal scored 0.
- Invalid citations trigger exactly one regeneration with a feedback prompt
  listing the violations; retry_count is 1 whether or not it succeeds.
- Faithfulness and ground-truth similarity run concurrently with each other
  after citation handling has finished.
- Trust mode is full when a ground truth or faithfulness was requested.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional

from .audit import (
    AuditLogger,
    CitationRetryEvent,
    EvaluationEvent,
    GenerationEvent,
    RetrievalEvent,
    generate_request_id,
    get_audit_logger,
    hash_query,
)
from .citations import describe_violations, validate_citations
from .clients import CollectionCache, Embedder, Generator, VectorStore, resolve_collection_id
from .config import Settings, TrustSettings, settings
from .errors import InputValidationError
from .evals.judges import answer_similarity, evaluate_faithfulness
from .evals.metrics import calculate_retrieval_metrics
from .models import (
    CitationValidationResult,
    Diagnosis,
    EvaluationQueryResult,
    PerformanceTimings,
    QueryOptions,
    RetrievalFilters,
    RetrievedChunk,
    TrustBreakdown,
    TrustMode,
)
from .prompts import (
    REFUSAL_ANSWER,
    build_citation_feedback_prompt,
    build_context,
    build_context_trace,
    build_generation_prompt,
)
from .ranking import RetrievalRanker, compute_fetch_k, expand_query
from .trust import full_trust_score, lightweight_trust_score

logger = logging.getLogger(__name__)


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


def diagnose(result: EvaluationQueryResult, config: Optional[TrustSettings] = None) -> Diagnosis:
    """Classify an evaluated query, first matching rule wins.

    Missing faithfulness skips the hallucination check; missing similarity
    is treated as the configured default.
    """
    if result.error:
        return Diagnosis.ERROR
    config = config or settings.trust

    if result.retrieval.precision_at_k < 0.5:
        return Diagnosis.RETRIEVAL_ISSUE
    if result.faithfulness_score is not None and result.faithfulness_score < 0.5:
        return Diagnosis.HALLUCINATION_ISSUE
    similarity = (
        config.default_similarity if result.answer_similarity is None else result.answer_similarity
    )
    if similarity < 0.5:
        return Diagnosis.ANSWER_QUALITY_ISSUE
    if result.citation_validation is not None and not result.citation_validation.is_valid:
        return Diagnosis.CITATION_ISSUE
    return Diagnosis.HEALTHY


@dataclass
class RetrievalOutcome:
    """Ranked chunks and stage timings for one query."""

    chunks: list[RetrievedChunk]
    embedding_ms: float
    retrieval_ms: float


@dataclass
class CitationOutcome:
    """Final answer of the generate/validate cycle."""

    answer: str
    validation: CitationValidationResult
    generation_ms: float
    retry_ms: float

    @property
    def invalid_after_retry(self) -> bool:
        return self.validation.retry_count > 0 and not self.validation.is_valid


class QueryEvaluator:
    """Evaluates one query end to end against a vector collection."""

    def __init__(
        self,
        generator: Generator,
        embedder: Embedder,
        store: VectorStore,
        cache: Optional[CollectionCache] = None,
        ranker: Optional[RetrievalRanker] = None,
        app_settings: Optional[Settings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.generator = generator
        self.embedder = embedder
        self.store = store
        self.cache = cache or CollectionCache()
        self.settings = app_settings or settings
        self.ranker = ranker or RetrievalRanker(self.settings.retrieval)
        self._audit_logger = audit_logger

    @property
    def audit(self) -> AuditLogger:
        return self._audit_logger or get_audit_logger()

    def resolve_options(self, options: Optional[QueryOptions]) -> QueryOptions:
        """Fill in defaults: top_k follows the relevant document count, else the default."""
        options = options or QueryOptions()
        if options.top_k is None:
            top_k = len(options.relevant_document_ids) or self.settings.retrieval.default_top_k
            options = options.model_copy(update={"top_k": top_k})
        return options

    async def evaluate_by_name(
        self, collection_name: str, query: str, options: Optional[QueryOptions] = None
    ) -> EvaluationQueryResult:
        """Resolve a collection name through the cache, then evaluate."""
        if not collection_name or not collection_name.strip():
            raise InputValidationError("Collection name cannot be empty")
        collection_id = await resolve_collection_id(collection_name, self.store, self.cache)
        return await self.evaluate(collection_id, query, options)

    async def evaluate(
        self, collection_id: str, query: str, options: Optional[QueryOptions] = None
    ) -> EvaluationQueryResult:
        """Run the full evaluation cycle for one query.

        Args:
            collection_id: Vector collection to search.
            query: User question.
            options: Retrieval filters, models and evaluation switches.

        Returns:
            EvaluationQueryResult with trust breakdown, diagnosis and timings.

        Raises:
            InputValidationError: If the query or collection id is empty.
            CollaboratorError: If an external service fails.
        """
        if not collection_id or not collection_id.strip():
            raise InputValidationError("Collection ID cannot be empty")
        if not query or not query.strip():
            raise InputValidationError("Query cannot be empty")

        options = self.resolve_options(options)
        request_id = generate_request_id()
        query_hash = hash_query(query)
        start = time.perf_counter()

        filters = RetrievalFilters(
            year=options.year, document_type=options.document_type, top_k=options.top_k
        )
        retrieval = await self.retrieve(collection_id, query, filters, request_id)
        chunks = retrieval.chunks

        metrics = calculate_retrieval_metrics(chunks, options.relevant_document_ids)
        result = EvaluationQueryResult(
            query=query,
            ground_truth=options.ground_truth,
            sources=chunks,
            context_trace=build_context_trace(chunks),
            retrieval=metrics,
            generation_model=options.generation_model or "default",
            evaluation_model=options.evaluation_model or "default",
        )
        performance = PerformanceTimings(
            embedding_ms=retrieval.embedding_ms, retrieval_ms=retrieval.retrieval_ms
        )

        if not chunks:
            result.answer = REFUSAL_ANSWER
            result.trust_breakdown = TrustBreakdown(
                mode=TrustMode.LIGHTWEIGHT,
                score=0.0,
                retrieval_quality=0.0,
                capped_by_citation_policy=True,
                cap_value=self.settings.trust.lightweight_cap,
            )
            result.trust_score = 0.0
            performance.total_ms = _elapsed_ms(start)
            result.performance = performance
            result.diagnosis = diagnose(result, self.settings.trust)
            self._log_evaluation(request_id, query_hash, result, refusal=True)
            return result

        outcome = await self.generate_with_citations(
            query, chunks, options.generation_model, request_id, query_hash
        )
        result.answer = outcome.answer
        result.citation_validation = outcome.validation
        performance.generation_ms = outcome.generation_ms
        performance.citation_retry_ms = outcome.retry_ms

        full_mode = options.include_faithfulness or bool(options.ground_truth)
        if full_mode:
            faithfulness, similarity, timings = await self._judge(
                chunks, outcome.answer, options
            )
            performance.evaluation_ms = timings["evaluation_ms"]
            performance.faithfulness_ms = timings["faithfulness_ms"]
            performance.similarity_ms = timings["similarity_ms"]
            result.faithfulness_score = faithfulness
            result.answer_similarity = similarity
            breakdown = full_trust_score(
                faithfulness=faithfulness,
                precision_at_k=metrics.precision_at_k,
                citation_coverage=outcome.validation.coverage,
                citation_validity=outcome.validation.citation_validity,
                answer_similarity=similarity,
                citation_invalid_after_retry=outcome.invalid_after_retry,
                config=self.settings.trust,
            )
        else:
            breakdown = lightweight_trust_score(
                retrieval_quality=metrics.average_similarity,
                citation_coverage=outcome.validation.coverage,
                citation_validity=outcome.validation.citation_validity,
                citation_invalid_after_retry=outcome.invalid_after_retry,
                config=self.settings.trust,
            )

        result.trust_breakdown = breakdown
        result.trust_score = breakdown.score
        result.cold_start = performance.evaluation_ms > self.settings.evals.cold_start_ms
        performance.total_ms = _elapsed_ms(start)
        result.performance = performance
        result.diagnosis = diagnose(result, self.settings.trust)

        self._log_evaluation(request_id, query_hash, result)
        return result

    async def retrieve(
        self,
        collection_id: str,
        query: str,
        filters: RetrievalFilters,
        request_id: Optional[str] = None,
    ) -> RetrievalOutcome:
        """Embed the (possibly expanded) query, over-fetch and rerank."""
        config = self.settings.retrieval
        search_text, expanded = expand_query(query, config)
        if expanded:
            logger.debug("Expanded cross-language query: %s", search_text)

        start = time.perf_counter()
        vector = await self.embedder.embed(search_text)
        embedding_ms = _elapsed_ms(start)

        fetch_k = compute_fetch_k(filters.top_k, filters, query, config)
        start = time.perf_counter()
        raw_hits = await self.store.search(collection_id, vector, fetch_k)
        report = self.ranker.rank_with_report(raw_hits, query, filters)
        retrieval_ms = _elapsed_ms(start)

        logger.info(
            "Retrieved %d/%d chunks (fetch_k=%d) in %.0fms",
            len(report.chunks),
            report.candidates,
            fetch_k,
            retrieval_ms,
        )
        self.audit.log(
            RetrievalEvent(
                request_id=request_id or generate_request_id(),
                latency_ms=embedding_ms + retrieval_ms,
                query_hash=hash_query(query),
                collection_id=collection_id,
                embedding_model=self.settings.embedding_model,
                k_requested=filters.top_k,
                fetch_k=fetch_k,
                results_before_filter=report.candidates,
                results_after_filter=report.after_filter,
                top_k_returned=len(report.chunks),
                filters_applied=report.filters_applied,
                inferred_intents=report.intents,
                query_expanded=expanded,
            )
        )
        return RetrievalOutcome(report.chunks, embedding_ms, retrieval_ms)

    async def generate_with_citations(
        self,
        query: str,
        chunks: list[RetrievedChunk],
        model: Optional[str],
        request_id: str,
        query_hash: str,
    ) -> CitationOutcome:
        """Generate, validate and regenerate at most once.

        States: Generated → Validated → [Retried → Validated]. There is no
        transition out of the second validation other than scoring.
        """
        source_count = len(chunks)
        model_name = model or self.settings.anthropic_model

        start = time.perf_counter()
        answer = await self.generator.generate(build_generation_prompt(query, chunks), model)
        generation_ms = _elapsed_ms(start)
        validation = validate_citations(answer, source_count, self.settings.trust)
        self._log_generation(request_id, query_hash, model_name, 1, source_count, validation, generation_ms)

        if validation.is_valid:
            return CitationOutcome(answer, validation, generation_ms, 0.0)

        first = validation
        prompt = build_citation_feedback_prompt(
            query, chunks, answer, describe_violations(first, source_count)
        )
        start = time.perf_counter()
        answer = await self.generator.generate(prompt, model)
        retry_ms = _elapsed_ms(start)
        validation = validate_citations(answer, source_count, self.settings.trust).model_copy(
            update={"retry_count": 1}
        )
        self._log_generation(request_id, query_hash, model_name, 2, source_count, validation, retry_ms)

        self.audit.log(
            CitationRetryEvent(
                request_id=request_id,
                latency_ms=retry_ms,
                query_hash=query_hash,
                issues_before=[i.value for i in first.issues],
                issues_after=[i.value for i in validation.issues],
                invalid_citations=first.invalid_citations,
                recovered=validation.is_valid,
            )
        )
        if not validation.is_valid:
            logger.warning("Citations still invalid after retry: %s", [i.value for i in validation.issues])

        return CitationOutcome(answer, validation, generation_ms, retry_ms)

    async def _judge(
        self, chunks: list[RetrievedChunk], answer: str, options: QueryOptions
    ) -> tuple[float, Optional[float], dict[str, float]]:
        """Faithfulness and similarity, concurrently."""
        timings = {"faithfulness_ms": 0.0, "similarity_ms": 0.0}
        context = build_context(chunks)

        async def faithfulness() -> float:
            start = time.perf_counter()
            score = await evaluate_faithfulness(
                self.generator,
                context,
                answer,
                options.evaluation_model or self.settings.evaluation_model,
            )
            timings["faithfulness_ms"] = _elapsed_ms(start)
            return score

        async def similarity() -> Optional[float]:
            if not options.ground_truth:
                return None
            start = time.perf_counter()
            value = await answer_similarity(self.embedder, answer, options.ground_truth)
            timings["similarity_ms"] = _elapsed_ms(start)
            return value

        start = time.perf_counter()
        faith, sim = await asyncio.gather(faithfulness(), similarity())
        timings["evaluation_ms"] = _elapsed_ms(start)
        return faith, sim, timings

    def _log_generation(
        self,
        request_id: str,
        query_hash: str,
        model: str,
        attempt: int,
        source_count: int,
        validation: CitationValidationResult,
        latency_ms: float,
    ) -> None:
        self.audit.log(
            GenerationEvent(
                request_id=request_id,
                latency_ms=latency_ms,
                query_hash=query_hash,
                model=model,
                attempt=attempt,
                context_chunks=source_count,
                citation_valid=validation.is_valid,
                citation_issues=[i.value for i in validation.issues],
            )
        )

    def _log_evaluation(
        self,
        request_id: str,
        query_hash: str,
        result: EvaluationQueryResult,
        refusal: bool = False,
    ) -> None:
        breakdown = result.trust_breakdown
        self.audit.log(
            EvaluationEvent(
                request_id=request_id,
                latency_ms=result.performance.total_ms,
                query_hash=query_hash,
                trust_mode=breakdown.mode.value if breakdown else TrustMode.LIGHTWEIGHT.value,
                trust_score=result.trust_score,
                diagnosis=result.diagnosis.value,
                capped_by_citation_policy=bool(breakdown and breakdown.capped_by_citation_policy),
                semantic_compensation_applied=bool(
                    breakdown and breakdown.semantic_compensation_applied
                ),
                cold_start=result.cold_start,
                refusal=refusal,
            )
        )
