"""Metric calculation utilities for evaluation.

This module provides functions for computing:
- Retrieval: Precision@K, Recall@K, average similarity over document ids
- Answer quality: cosine similarity of embeddings
- Batch: mean and nearest-rank percentiles
- Dataset identity: content hash
"""

import hashlib
import json
import math
import re
from typing import Optional, Sequence

import numpy as np

from src.ragtrust.models import CHUNK_ID_PATTERN, DatasetItem, RetrievalMetrics, RetrievedChunk


# =============================================================================
# Document Id Normalization
# =============================================================================


def normalize_relevant_document_id(document_id: str) -> str:
    """Lower-cased basename without a ``.txt`` suffix.

    Args:
        document_id: File name or path as listed in a dataset.

    Returns:
        Normalized document id (e.g. "rules/Admission_2024.txt" -> "admission_2024")
    """
    base_name = document_id.replace("\\", "/").split("/")[-1]
    return re.sub(r"\.txt$", "", base_name, flags=re.IGNORECASE).strip().lower()


def normalize_retrieved_document_id(chunk: RetrievedChunk) -> str:
    """``documentId_year`` from metadata, else parsed from ``<doc>_<yyyy|na>_<sub>``."""
    metadata_doc_id = chunk.metadata.get("documentId")
    if isinstance(metadata_doc_id, str) and metadata_doc_id.strip():
        base = metadata_doc_id.strip().lower()
        year = chunk.metadata.get("year")
        year_text = str(year).strip() if year is not None else ""
        return f"{base}_{year_text}" if year_text else base

    fallback_id = chunk.id.strip().lower()
    match = CHUNK_ID_PATTERN.match(fallback_id)
    if not match:
        return re.sub(r"\.txt$", "", fallback_id)
    base, year = match.group(1), match.group(2)
    return base if year == "na" else f"{base}_{year}"


# =============================================================================
# Retrieval Metrics
# =============================================================================


def calculate_retrieval_metrics(
    chunks: list[RetrievedChunk],
    relevant_document_ids: list[str],
) -> RetrievalMetrics:
    """Calculate document-level retrieval quality for one query.

    Args:
        chunks: Retrieved chunks (K = len(chunks))
        relevant_document_ids: Relevant document file names

    Returns:
        RetrievalMetrics; all zeros for an empty retrieved set
    """
    k = len(chunks)
    if k == 0:
        return RetrievalMetrics()

    relevant = list(dict.fromkeys(normalize_relevant_document_id(d) for d in relevant_document_ids))
    retrieved = [normalize_retrieved_document_id(c) for c in chunks]

    hits = [doc_id for doc_id in retrieved if doc_id in relevant]
    precision = len(hits) / k
    # Several chunks of one document count once for recall
    recall = len(set(hits)) / len(relevant) if relevant else 0.0

    average_similarity = sum(1.0 - c.distance for c in chunks) / k

    return RetrievalMetrics(
        precision_at_k=precision,
        recall_at_k=min(recall, 1.0),
        average_similarity=average_similarity,
    )


# =============================================================================
# Similarity
# =============================================================================


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> Optional[float]:
    """Cosine similarity of two vectors.

    Returns:
        Similarity, or None when either vector has zero norm, the
        dimensions differ, or the result is not finite
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape or va.size == 0:
        return None

    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return None
    value = float(np.dot(va, vb) / norm)
    return value if math.isfinite(value) else None


# =============================================================================
# Aggregation
# =============================================================================


def mean(values: Sequence[float]) -> float:
    """Arithmetic mean; 0.0 for an empty sequence."""
    if not values:
        return 0.0
    return float(sum(values) / len(values))


def percentile(values: Sequence[float], p: float) -> float:
    """Nearest-rank percentile: ``sorted[floor(p * (n - 1))]``.

    Args:
        values: Sample values
        p: Percentile as a fraction (0.95 for p95)

    Returns:
        Percentile value; 0.0 for an empty sequence
    """
    if not values:
        return 0.0
    ordered = sorted(values)
    index = math.floor(p * (len(ordered) - 1))
    return float(ordered[max(0, min(index, len(ordered) - 1))])


# =============================================================================
# Dataset Identity
# =============================================================================


def dataset_hash(dataset: list[DatasetItem]) -> str:
    """SHA-256 hex digest of the canonical JSON form of a dataset."""
    payload = [item.model_dump(by_alias=True, mode="json") for item in dataset]
    canonical = json.dumps(payload, ensure_ascii=False, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
