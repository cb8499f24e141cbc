"""Trust evaluation and retrieval ranking for RAG answers."""

from .citations import validate_citations
from .config import settings
from .evaluator import QueryEvaluator
from .models import CitationValidationResult, EvaluationQueryResult, RetrievedChunk, TrustBreakdown
from .ranking import RetrievalRanker
from .trust import full_trust_score, lightweight_trust_score

__all__ = [
    "settings",
    "QueryEvaluator",
    "RetrievalRanker",
    "validate_citations",
    "full_trust_score",
    "lightweight_trust_score",
    "CitationValidationResult",
    "EvaluationQueryResult",
    "RetrievedChunk",
    "TrustBreakdown",
]
