"""Pydantic models for the trust evaluation engine."""

import math
import re
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

MetadataValue = Union[str, int, float, bool]

# Chunk ids are written as <documentId>_<year|na>_<subsection>
CHUNK_ID_PATTERN = re.compile(r"^(.*)_(\d{4}|na)_(.+)$")


def clamp01(value: Optional[float]) -> float:
    """Clamp a value to [0, 1]; non-finite or missing values become 0."""
    if value is None:
        return 0.0
    value = float(value)
    if not math.isfinite(value):
        return 0.0
    return max(0.0, min(1.0, value))


class TrustMode(str, Enum):
    """Trust scoring modes."""

    LIGHTWEIGHT = "lightweight"
    FULL = "full"


class CitationIssue(str, Enum):
    """Machine-readable citation policy violations."""

    MISSING_CITATIONS = "missing_citations"
    INVALID_REFERENCE_INDICES = "invalid_reference_indices"
    INSUFFICIENT_COVERAGE = "insufficient_citation_coverage"


class Diagnosis(str, Enum):
    """Per-query diagnosis, in priority order."""

    RETRIEVAL_ISSUE = "retrieval_issue"
    HALLUCINATION_ISSUE = "hallucination_issue"
    ANSWER_QUALITY_ISSUE = "answer_quality_issue"
    CITATION_ISSUE = "citation_issue"
    HEALTHY = "healthy"
    ERROR = "error"


# =============================================================================
# Retrieval Models
# =============================================================================


class SearchHit(BaseModel):
    """Raw nearest-neighbor result returned by the vector store."""

    id: str = Field(..., description="Chunk identifier")
    text: str = Field(default="", description="Chunk text")
    distance: float = Field(default=0.0, description="Cosine distance (lower is closer)")
    metadata: dict[str, MetadataValue] = Field(default_factory=dict)


class RetrievedChunk(BaseModel):
    """A candidate evidence passage after normalization."""

    id: str = Field(..., description="Chunk identifier")
    text: str = Field(..., description="Chunk text")
    distance: float = Field(..., ge=0.0, description="Raw vector distance")
    confidence: float = Field(..., ge=0.0, le=1.0, description="clamp(1 - distance, 0, 1)")
    document_id: str = Field(..., description="Source document identifier")
    document_year: Optional[int] = Field(default=None, description="Document edition year")
    document_type: Optional[str] = Field(default=None, description="documentType or category")
    section: Optional[str] = None
    subsection: Optional[str] = None
    title: Optional[str] = None
    metadata: dict[str, MetadataValue] = Field(default_factory=dict)
    rerank_score: Optional[float] = Field(
        default=None, description="Blended rerank score (set by the ranker)"
    )

    @classmethod
    def from_hit(cls, hit: SearchHit) -> "RetrievedChunk":
        """Normalize a raw search hit, recovering document id/year from the id if needed."""
        metadata = dict(hit.metadata or {})
        distance = max(0.0, float(hit.distance))

        parsed_doc, parsed_year = _parse_chunk_id(hit.id)

        document_id = metadata.get("documentId")
        if not isinstance(document_id, str) or not document_id.strip():
            document_id = parsed_doc
        document_year = _to_year(metadata.get("year"))
        if document_year is None:
            document_year = parsed_year

        document_type = metadata.get("documentType") or metadata.get("category")

        return cls(
            id=hit.id,
            text=hit.text,
            distance=distance,
            confidence=clamp01(1.0 - distance),
            document_id=str(document_id).strip(),
            document_year=document_year,
            document_type=str(document_type) if document_type else None,
            section=_optional_str(metadata.get("section")),
            subsection=_optional_str(metadata.get("subsection")),
            title=_optional_str(metadata.get("title")),
            metadata=metadata,
        )

    @property
    def category(self) -> Optional[str]:
        """Category label used for intent matching."""
        value = self.metadata.get("category") or self.document_type
        return str(value).strip().lower() if value else None


def _parse_chunk_id(chunk_id: str) -> tuple[str, Optional[int]]:
    match = CHUNK_ID_PATTERN.match(chunk_id.strip())
    if not match:
        return re.sub(r"\.txt$", "", chunk_id.strip(), flags=re.IGNORECASE), None
    base, year = match.group(1), match.group(2)
    return base, None if year == "na" else int(year)


def _to_year(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class RetrievalFilters(BaseModel):
    """Metadata filters applied by the ranker."""

    year: Optional[int] = Field(default=None, description="Exact document year")
    document_type: Optional[str] = Field(default=None, description="Case-insensitive type")
    top_k: int = Field(default=3, ge=1, description="Number of chunks to return")


class ContextTraceItem(BaseModel):
    """Maps a citation number back to its source chunk."""

    citation_number: int
    source_id: str
    document_id: str
    document_year: Optional[int] = None
    section: Optional[str] = None
    subsection: Optional[str] = None
    confidence: float
    label: str


class RetrievalMetrics(BaseModel):
    """Document-level retrieval quality for one query."""

    precision_at_k: float = 0.0
    recall_at_k: float = 0.0
    average_similarity: float = 0.0


# =============================================================================
# Citation & Trust Models
# =============================================================================


class CitationValidationResult(BaseModel):
    """Outcome of checking an answer's [n] citations against the source count."""

    citations: list[int] = Field(default_factory=list, description="Markers in order")
    unique_citations: list[int] = Field(default_factory=list, description="Sorted distinct")
    invalid_citations: list[int] = Field(default_factory=list, description="Outside 1..N")
    has_citations: bool = False
    factual_sentence_count: int = 0
    cited_sentence_count: int = 0
    missing_citation_sentence_count: int = 0
    coverage: float = Field(default=0.0, ge=0.0, le=1.0)
    citation_validity: int = Field(default=0, ge=0, le=1)
    is_valid: bool = False
    retry_count: int = Field(default=0, ge=0, le=1)
    issues: list[CitationIssue] = Field(default_factory=list)


class TrustWeights(BaseModel):
    """Full-mode base score weights."""

    faithfulness: float = 0.4
    precision: float = 0.3
    similarity: float = 0.3


class TrustBreakdown(BaseModel):
    """Explainable trust score with every sub-score used."""

    mode: TrustMode
    score: float = Field(..., ge=0.0, le=1.0)
    retrieval_quality: Optional[float] = None
    citation_coverage: float = 0.0
    citation_validity: float = 0.0
    faithfulness_score: Optional[float] = None
    precision_at_k: Optional[float] = None
    answer_similarity: Optional[float] = None
    base_score: Optional[float] = None
    citation_score: Optional[float] = None
    semantic_compensation_applied: bool = False
    capped_by_citation_policy: bool = False
    cap_value: Optional[float] = None


# =============================================================================
# Evaluation Models
# =============================================================================


class QueryOptions(BaseModel):
    """Options for a single query evaluation (defaults resolved at the boundary)."""

    top_k: Optional[int] = Field(default=None, ge=1, description="Chunks to retrieve")
    year: Optional[int] = None
    document_type: Optional[str] = None
    generation_model: Optional[str] = None
    evaluation_model: Optional[str] = None
    include_faithfulness: bool = False
    ground_truth: Optional[str] = None
    relevant_document_ids: list[str] = Field(default_factory=list)


class PerformanceTimings(BaseModel):
    """Per-stage latency in milliseconds."""

    embedding_ms: float = 0.0
    retrieval_ms: float = 0.0
    generation_ms: float = 0.0
    citation_retry_ms: float = 0.0
    evaluation_ms: float = 0.0
    faithfulness_ms: float = 0.0
    similarity_ms: float = 0.0
    total_ms: float = 0.0


class EvaluationQueryResult(BaseModel):
    """One evaluated query."""

    query: str
    answer: Optional[str] = None
    ground_truth: Optional[str] = None
    sources: list[RetrievedChunk] = Field(default_factory=list)
    context_trace: list[ContextTraceItem] = Field(default_factory=list)
    retrieval: RetrievalMetrics = Field(default_factory=RetrievalMetrics)
    citation_validation: Optional[CitationValidationResult] = None
    faithfulness_score: Optional[float] = None
    answer_similarity: Optional[float] = None
    trust_score: float = 0.0
    trust_breakdown: Optional[TrustBreakdown] = None
    generation_model: str = "default"
    evaluation_model: str = "default"
    diagnosis: Diagnosis = Diagnosis.HEALTHY
    cold_start: bool = False
    error: Optional[str] = None
    performance: PerformanceTimings = Field(default_factory=PerformanceTimings)


class DatasetItem(BaseModel):
    """One query of an evaluation dataset."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    query: str
    relevant_document_ids: list[str] = Field(default_factory=list)
    ground_truth: Optional[str] = None


class BatchStatistics(BaseModel):
    """Aggregate over a dataset run (errored items excluded from means)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total_queries: int
    successful_evaluations: int
    failed_evaluations: int
    dataset_size: int
    average_trust_score: float
    average_faithfulness: float
    average_precision: float
    average_recall: float
    average_generation_latency: float
    average_evaluation_latency: float
    average_similarity_latency: float
    p95_generation_ms: float
    p95_evaluation_ms: float
    batch_total_ms: float
    cold_starts: int
    diagnosis_counts: dict[str, int] = Field(default_factory=dict)
    concurrency: int
    trust_weights: TrustWeights
    evaluation_version: str


class BenchmarkRecord(BaseModel):
    """Persisted run summary (additive-only schema)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    benchmark_id: str
    timestamp: str
    dataset_hash: str
    generation_model: str
    evaluation_model: str
    statistics: BatchStatistics


class BatchResult(BaseModel):
    """Results of one dataset run, in submission order."""

    results: list[EvaluationQueryResult]
    statistics: BatchStatistics
    record: BenchmarkRecord
    persisted: bool = False


class LeaderboardEntry(BaseModel):
    """One ranked generation model."""

    model: str
    avg_trust_score: float
    avg_faithfulness: float
    avg_precision: float
    avg_generation_latency: float
    avg_evaluation_latency: float
    p95_generation_ms: float
    adjusted_score: float


class MultiModelResult(BaseModel):
    """Results of a multi-model benchmark."""

    benchmark_id: str
    model_results: dict[str, BatchResult]
    leaderboard: list[LeaderboardEntry]
    total_batch_ms: float
