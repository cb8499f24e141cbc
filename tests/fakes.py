"""In-memory collaborators for tests."""

import asyncio
import zlib
from typing import Optional

from src.ragtrust.errors import CollectionNotFound
from src.ragtrust.models import BatchStatistics, BenchmarkRecord, SearchHit, TrustWeights


def make_statistics(**overrides) -> BatchStatistics:
    values = dict(
        total_queries=2,
        successful_evaluations=2,
        failed_evaluations=0,
        dataset_size=2,
        average_trust_score=0.7,
        average_faithfulness=0.9,
        average_precision=1.0,
        average_recall=1.0,
        average_generation_latency=100.0,
        average_evaluation_latency=50.0,
        average_similarity_latency=0.0,
        p95_generation_ms=120.0,
        p95_evaluation_ms=60.0,
        batch_total_ms=300.0,
        cold_starts=0,
        concurrency=3,
        trust_weights=TrustWeights(),
        evaluation_version="test",
    )
    values.update(overrides)
    return BatchStatistics(**values)


def make_record(**overrides) -> BenchmarkRecord:
    values = dict(
        benchmark_id="bench-1",
        timestamp="2025-01-01T00:00:00+00:00",
        dataset_hash="abc",
        generation_model="model-a",
        evaluation_model="judge",
        statistics=make_statistics(),
    )
    values.update(overrides)
    return BenchmarkRecord(**values)


def make_hit(
    chunk_id: str,
    text: str,
    distance: float = 0.2,
    **metadata,
) -> SearchHit:
    """Build a raw search hit with metadata keyword arguments."""
    return SearchHit(id=chunk_id, text=text, distance=distance, metadata=metadata)


class FakeGenerator:
    """Scripted generator.

    Answer prompts pop from `answers` (the last answer repeats); judge
    prompts return `judge_response`.
    """

    def __init__(
        self,
        answers: Optional[list[str]] = None,
        judge_response: str = "0.95",
        delay: float = 0.0,
        error: Optional[Exception] = None,
    ):
        self.answers = list(answers or ["Applicants submit the form online before July [1]."])
        self.judge_response = judge_response
        self.delay = delay
        self.error = error
        self.prompts: list[str] = []
        self.models: list[Optional[str]] = []

    async def generate(self, prompt: str, model: Optional[str] = None) -> str:
        self.prompts.append(prompt)
        self.models.append(model)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if prompt.startswith("You are an AI evaluator"):
            return self.judge_response
        if len(self.answers) > 1:
            return self.answers.pop(0)
        return self.answers[0]

    @property
    def answer_prompts(self) -> list[str]:
        return [p for p in self.prompts if not p.startswith("You are an AI evaluator")]


class FakeEmbedder:
    """Deterministic bag-of-words embedder."""

    def __init__(self, dim: int = 32):
        self.dim = dim
        self.texts: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.texts.append(text)
        vector = [0.0] * self.dim
        for token in text.lower().split():
            vector[zlib.crc32(token.encode()) % self.dim] += 1.0
        return vector


class FakeVectorStore:
    """Returns preset hits and records every search."""

    def __init__(self, hits: Optional[list[SearchHit]] = None, collections: Optional[dict[str, str]] = None):
        self.hits = hits or []
        self.collections = collections or {"university-corpus": "col-1"}
        self.searches: list[tuple[str, int]] = []
        self.lookups = 0

    async def search(self, collection_id: str, vector: list[float], top_k: int) -> list[SearchHit]:
        self.searches.append((collection_id, top_k))
        return self.hits[:top_k]

    async def get_collection_id(self, name: str) -> str:
        self.lookups += 1
        if name not in self.collections:
            raise CollectionNotFound(name)
        return self.collections[name]

