"""Benchmark record persistence.

Records are appended to a JSON-lines file, one record per line, and never
rewritten. Appends are serialized within one process; concurrent writers in
separate processes are not coordinated.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional, Protocol

from pydantic import ValidationError

from src.ragtrust.config import settings
from src.ragtrust.models import BenchmarkRecord

logger = logging.getLogger(__name__)


class BenchmarkStore(Protocol):
    """Append-only benchmark record sink."""

    async def append_record(self, record: BenchmarkRecord) -> None: ...

    async def read_history(self) -> list[BenchmarkRecord]: ...


class JsonlBenchmarkStore:
    """Benchmark history in a JSON-lines file."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path is not None else settings.evals.benchmark_path
        self._lock = asyncio.Lock()

    def _append_line(self, line: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(line + "\n")

    async def append_record(self, record: BenchmarkRecord) -> None:
        """Append one record (camelCase keys, as persisted)."""
        line = json.dumps(record.model_dump(by_alias=True, mode="json"), ensure_ascii=False)
        async with self._lock:
            await asyncio.to_thread(self._append_line, line)
        logger.info("Benchmark record persisted (ID: %s)", record.benchmark_id)

    def _read_lines(self) -> list[str]:
        if not self.path.exists():
            return []
        return self.path.read_text(encoding="utf-8").splitlines()

    async def read_history(self) -> list[BenchmarkRecord]:
        """All readable records, oldest first; corrupt lines are skipped."""
        records = []
        for line_num, line in enumerate(await asyncio.to_thread(self._read_lines), 1):
            line = line.strip()
            if not line:
                continue
            try:
                records.append(BenchmarkRecord.model_validate(json.loads(line)))
            except (json.JSONDecodeError, ValidationError) as e:
                logger.warning("Skipping corrupt benchmark line %d in %s: %s", line_num, self.path, e)
        return records


class InMemoryBenchmarkStore:
    """Benchmark store held in memory (CLI dry runs and tests)."""

    def __init__(self) -> None:
        self.records: list[BenchmarkRecord] = []
        self._lock = asyncio.Lock()

    async def append_record(self, record: BenchmarkRecord) -> None:
        async with self._lock:
            self.records.append(record)

    async def read_history(self) -> list[BenchmarkRecord]:
        return list(self.records)
