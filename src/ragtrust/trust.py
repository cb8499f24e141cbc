"""Two-mode trust scoring.

Lightweight (no judge, no ground truth):
    0.6 * retrieval_quality + 0.25 * citation_coverage + 0.15 * citation_validity

Full:
    base     = wF * faithfulness + wP * precision@K + wS * similarity
    citation = 0.7 * coverage + 0.3 * validity
    combined = 0.8 * base + 0.2 * citation

Both modes cap the score when citations remained invalid after the
regeneration retry. Every sub-score used is returned in the breakdown.
"""

import math
from typing import Optional

from .config import TrustSettings, settings
from .models import TrustBreakdown, TrustMode, TrustWeights, clamp01


def default_weights(config: Optional[TrustSettings] = None) -> TrustWeights:
    config = config or settings.trust
    return TrustWeights(
        faithfulness=config.faithfulness_weight,
        precision=config.precision_weight,
        similarity=config.similarity_weight,
    )


def lightweight_trust_score(
    retrieval_quality: float,
    citation_coverage: float,
    citation_validity: float,
    citation_invalid_after_retry: bool = False,
    config: Optional[TrustSettings] = None,
) -> TrustBreakdown:
    """Trust score from retrieval confidence and citation discipline only."""
    config = config or settings.trust
    quality = clamp01(retrieval_quality)
    coverage = clamp01(citation_coverage)
    validity = clamp01(citation_validity)

    score = clamp01(0.6 * quality + 0.25 * coverage + 0.15 * validity)
    if citation_invalid_after_retry:
        score = min(score, config.lightweight_cap)

    return TrustBreakdown(
        mode=TrustMode.LIGHTWEIGHT,
        score=score,
        retrieval_quality=quality,
        citation_coverage=coverage,
        citation_validity=validity,
        capped_by_citation_policy=citation_invalid_after_retry,
        cap_value=config.lightweight_cap if citation_invalid_after_retry else None,
    )


def full_trust_score(
    faithfulness: float,
    precision_at_k: float,
    citation_coverage: float,
    citation_validity: float,
    answer_similarity: Optional[float] = None,
    citation_invalid_after_retry: bool = False,
    weights: Optional[TrustWeights] = None,
    config: Optional[TrustSettings] = None,
) -> TrustBreakdown:
    """Trust score from judged faithfulness, precision@K and similarity.

    Args:
        faithfulness: Judge score in [0, 1].
        precision_at_k: Document-level precision of the retrieved set.
        citation_coverage: Fraction of factual sentences carrying a citation.
        citation_validity: 1 if all citations reference existing sources.
        answer_similarity: Similarity to the ground truth; defaults when absent.
        citation_invalid_after_retry: Apply the citation policy cap.
        weights: Base score weights; configured defaults when omitted.
        config: Trust settings.

    Returns:
        TrustBreakdown in full mode.
    """
    config = config or settings.trust
    weights = weights or default_weights(config)

    similarity = config.default_similarity if answer_similarity is None else answer_similarity
    if not math.isfinite(similarity):
        similarity = config.default_similarity

    faith = clamp01(faithfulness)
    precision = clamp01(precision_at_k)
    coverage = clamp01(citation_coverage)
    validity = clamp01(citation_validity)

    base = (
        weights.faithfulness * faith
        + weights.precision * precision
        + weights.similarity * clamp01(similarity)
    )
    citation_score = 0.7 * coverage + 0.3 * validity
    combined = 0.8 * base + 0.2 * citation_score

    compensated = (
        faithfulness >= config.semantic_faithfulness_threshold
        and similarity > config.semantic_similarity_threshold
    )
    if compensated:
        combined = max(combined, config.semantic_floor)

    score = clamp01(combined)
    if citation_invalid_after_retry:
        score = min(score, config.full_cap)

    return TrustBreakdown(
        mode=TrustMode.FULL,
        score=score,
        citation_coverage=coverage,
        citation_validity=validity,
        faithfulness_score=faith,
        precision_at_k=precision,
        answer_similarity=clamp01(similarity),
        base_score=clamp01(base),
        citation_score=clamp01(citation_score),
        semantic_compensation_applied=compensated,
        capped_by_citation_policy=citation_invalid_after_retry,
        cap_value=config.full_cap if citation_invalid_after_retry else None,
    )
