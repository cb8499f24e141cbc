"""Citation extraction and validation.

Answers cite retrieved sources with numeric markers such as ``[1]``. A
valid answer cites only existing sources and carries a marker in at least
80% of its factual sentences.
"""

import re
from typing import Optional

from .config import TrustSettings, settings
from .models import CitationIssue, CitationValidationResult

CITATION_PATTERN = re.compile(r"\[(\d+)\]")
SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+|\n+")


def split_sentences(answer: str) -> list[str]:
    """Split on terminal punctuation followed by whitespace, or on newlines."""
    return [s.strip() for s in SENTENCE_BOUNDARY.split(answer) if s.strip()]


def is_factual_sentence(sentence: str, min_length: int = 20) -> bool:
    """Long enough and containing at least one letter or digit."""
    return len(sentence) >= min_length and any(ch.isalnum() for ch in sentence)


def validate_citations(
    answer: str,
    source_count: int,
    config: Optional[TrustSettings] = None,
) -> CitationValidationResult:
    """Validate an answer's citation markers against the number of sources.

    Args:
        answer: Generated answer text.
        source_count: Number of sources the markers may reference (1..N).
        config: Trust settings (coverage threshold, factual sentence length).

    Returns:
        CitationValidationResult with retry_count 0. Identical inputs
        always yield identical results.
    """
    config = config or settings.trust

    citations = [int(m) for m in CITATION_PATTERN.findall(answer)]
    unique_citations = sorted(set(citations))
    invalid_citations = [c for c in unique_citations if c < 1 or c > source_count]
    has_citations = bool(unique_citations)

    factual = [
        s for s in split_sentences(answer)
        if is_factual_sentence(s, config.min_factual_sentence_length)
    ]
    cited = sum(1 for s in factual if CITATION_PATTERN.search(s))
    coverage = cited / len(factual) if factual else 0.0

    issues = []
    if not has_citations:
        issues.append(CitationIssue.MISSING_CITATIONS)
    if invalid_citations:
        issues.append(CitationIssue.INVALID_REFERENCE_INDICES)
    if coverage < config.coverage_threshold:
        issues.append(CitationIssue.INSUFFICIENT_COVERAGE)

    citation_validity = 1 if has_citations and not invalid_citations else 0

    return CitationValidationResult(
        citations=citations,
        unique_citations=unique_citations,
        invalid_citations=invalid_citations,
        has_citations=has_citations,
        factual_sentence_count=len(factual),
        cited_sentence_count=cited,
        missing_citation_sentence_count=max(len(factual) - cited, 0),
        coverage=coverage,
        citation_validity=citation_validity,
        is_valid=bool(citation_validity) and coverage >= config.coverage_threshold,
        retry_count=0,
        issues=issues,
    )


def describe_violations(result: CitationValidationResult, source_count: int) -> list[str]:
    """Human-readable violations used in the regeneration feedback prompt."""
    violations = []
    if CitationIssue.MISSING_CITATIONS in result.issues:
        violations.append("The answer contains no citation markers.")
    if result.invalid_citations:
        cited = ", ".join(f"[{c}]" for c in result.invalid_citations)
        violations.append(
            f"Citations {cited} do not exist. Only [1] to [{source_count}] are valid."
        )
    if CitationIssue.INSUFFICIENT_COVERAGE in result.issues and result.factual_sentence_count:
        violations.append(
            f"{result.missing_citation_sentence_count} of {result.factual_sentence_count} "
            "factual sentences have no citation."
        )
    return violations
