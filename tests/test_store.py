"""Tests for benchmark history persistence."""

import asyncio
import json

from src.ragtrust.evals.store import InMemoryBenchmarkStore, JsonlBenchmarkStore
from tests.fakes import make_record


class TestJsonlBenchmarkStore:
    """Tests for the JSON-lines store."""

    def test_append_and_read(self, tmp_path):
        store = JsonlBenchmarkStore(tmp_path / "data" / "benchmarks.jsonl")
        first, second = make_record(benchmark_id="b1"), make_record(benchmark_id="b2")

        asyncio.run(store.append_record(first))
        asyncio.run(store.append_record(second))

        assert asyncio.run(store.read_history()) == [first, second]

    def test_camel_case_lines(self, tmp_path):
        path = tmp_path / "benchmarks.jsonl"
        asyncio.run(JsonlBenchmarkStore(path).append_record(make_record()))

        line = json.loads(path.read_text(encoding="utf-8").splitlines()[0])

        assert line["benchmarkId"] == "bench-1"
        assert line["datasetHash"] == "abc"
        assert line["statistics"]["averageTrustScore"] == 0.7
        assert "p95GenerationMs" in line["statistics"]

    def test_concurrent_appends(self, tmp_path):
        store = JsonlBenchmarkStore(tmp_path / "benchmarks.jsonl")

        async def append_many():
            await asyncio.gather(*(store.append_record(make_record(benchmark_id=f"b{i}")) for i in range(10)))

        asyncio.run(append_many())

        records = asyncio.run(store.read_history())
        assert sorted(r.benchmark_id for r in records) == sorted(f"b{i}" for i in range(10))

    def test_corrupt_lines_skipped(self, tmp_path):
        path = tmp_path / "benchmarks.jsonl"
        store = JsonlBenchmarkStore(path)
        asyncio.run(store.append_record(make_record(benchmark_id="good")))
        with open(path, "a", encoding="utf-8") as f:
            f.write("{not json\n")
            f.write('{"benchmarkId": "partial"}\n')
            f.write("\n")

        records = asyncio.run(store.read_history())

        assert [r.benchmark_id for r in records] == ["good"]

    def test_missing_file(self, tmp_path):
        assert asyncio.run(JsonlBenchmarkStore(tmp_path / "none.jsonl").read_history()) == []

    def test_default_path_from_settings(self):
        from src.ragtrust.config import settings

        assert JsonlBenchmarkStore().path == settings.evals.benchmark_path


def test_in_memory_store():
    store = InMemoryBenchmarkStore()
    record = make_record()

    asyncio.run(store.append_record(record))

    assert asyncio.run(store.read_history()) == [record]
    assert store.records == [record]
