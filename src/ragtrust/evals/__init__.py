"""Evaluation framework for trust scoring.

This module provides batch and comparative evaluation:
- Metrics: Precision@K, Recall@K, cosine similarity, nearest-rank percentiles
- Judges: LLM faithfulness judge, ground-truth similarity
- Batch: bounded-concurrency dataset runs with aggregate statistics
- Leaderboard: latency-adjusted ranking of generation models
- Store: append-only benchmark history
"""

from src.ragtrust.evals.metrics import (
    calculate_retrieval_metrics,
    cosine_similarity,
    dataset_hash,
    mean,
    percentile,
)
from src.ragtrust.evals.store import BenchmarkStore, InMemoryBenchmarkStore, JsonlBenchmarkStore

__all__ = [
    # Metrics
    "calculate_retrieval_metrics",
    "cosine_similarity",
    "dataset_hash",
    "mean",
    "percentile",
    # Persistence
    "BenchmarkStore",
    "InMemoryBenchmarkStore",
    "JsonlBenchmarkStore",
]
