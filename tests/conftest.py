"""Pytest fixtures for trust evaluation tests."""

import pytest

from src.ragtrust.audit import AuditLogger
from src.ragtrust.config import AuditSettings, Settings
from src.ragtrust.evals.store import InMemoryBenchmarkStore
from src.ragtrust.evaluator import QueryEvaluator
from tests.fakes import FakeEmbedder, FakeGenerator, FakeVectorStore, make_hit


@pytest.fixture(autouse=True)
def memory_audit():
    """Route audit events to memory for every test."""
    AuditLogger.reset_instance()
    audit_logger = AuditLogger.get_instance(
        AuditSettings(enabled=True, handler_type="memory", mask_sensitive_data=True)
    )
    yield audit_logger
    AuditLogger.reset_instance()


@pytest.fixture
def test_settings(tmp_path):
    """Settings isolated from the environment and project directories."""
    app_settings = Settings(anthropic_api_key="test-key", index_dir=tmp_path / "indexes")
    app_settings.evals.benchmark_dir = tmp_path / "data"
    return app_settings


@pytest.fixture
def sample_hits():
    """Three admission chunks from two editions plus one undated chunk."""
    return [
        make_hit(
            "admission_rules_2024_s1",
            "Applicants submit the application form and the diploma to the admission office.",
            0.15,
            documentId="admission_rules",
            year=2024,
            category="admission",
            section="Documents",
        ),
        make_hit(
            "admission_rules_2024_s2",
            "Enrollment results are published on the university website within five days.",
            0.25,
            documentId="admission_rules",
            year=2024,
            category="admission",
            section="Results",
        ),
        make_hit(
            "admission_rules_2023_s1",
            "Applicants submitted paper forms to the admission office in the previous year.",
            0.10,
            documentId="admission_rules",
            year=2023,
            category="admission",
        ),
        make_hit(
            "campus_guide_na_s1",
            "The main library is open every weekday from eight in the morning.",
            0.30,
            category="infrastructure",
        ),
    ]


@pytest.fixture
def fake_store(sample_hits):
    return FakeVectorStore(sample_hits)


@pytest.fixture
def make_evaluator(test_settings, memory_audit):
    """Factory for a QueryEvaluator over fakes."""

    def _make(generator=None, embedder=None, store=None) -> QueryEvaluator:
        return QueryEvaluator(
            generator=generator or FakeGenerator(),
            embedder=embedder or FakeEmbedder(),
            store=store or FakeVectorStore(),
            app_settings=test_settings,
            audit_logger=memory_audit,
        )

    return _make


@pytest.fixture
def memory_store():
    return InMemoryBenchmarkStore()
