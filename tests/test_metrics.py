"""Tests for evaluation metrics and judges."""

import asyncio
import math

import pytest

from src.ragtrust.evals import calculate_retrieval_metrics, cosine_similarity, dataset_hash, mean, percentile
from src.ragtrust.evals.judges import answer_similarity, evaluate_faithfulness, parse_faithfulness
from src.ragtrust.evals.metrics import normalize_relevant_document_id, normalize_retrieved_document_id
from src.ragtrust.models import DatasetItem, RetrievedChunk
from tests.fakes import FakeEmbedder, FakeGenerator, make_hit


def chunk(chunk_id, distance=0.2, **metadata):
    return RetrievedChunk.from_hit(make_hit(chunk_id, "text", distance, **metadata))


class TestDocumentIdNormalization:
    """Tests for document id normalization."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("Admission_2024.txt", "admission_2024"),
            ("rules/exam_rules_2023.TXT", "exam_rules_2023"),
            ("C:\\corpus\\Guide.txt", "guide"),
            ("  campus_guide  ", "campus_guide"),
        ],
    )
    def test_relevant_ids(self, raw, expected):
        assert normalize_relevant_document_id(raw) == expected

    def test_retrieved_id_from_metadata(self):
        assert normalize_retrieved_document_id(chunk("x_na_1", documentId="Exam_Rules", year=2024)) == "exam_rules_2024"

    def test_retrieved_id_from_metadata_without_year(self):
        assert normalize_retrieved_document_id(chunk("x_na_1", documentId="guide")) == "guide"

    def test_retrieved_id_parsed(self):
        assert normalize_retrieved_document_id(chunk("Exam_Rules_2023_part_1")) == "exam_rules_2023"
        assert normalize_retrieved_document_id(chunk("campus_guide_na_s1")) == "campus_guide"

    def test_retrieved_id_unparseable(self):
        assert normalize_retrieved_document_id(chunk("notes.txt")) == "notes"


class TestRetrievalMetrics:
    """Tests for calculate_retrieval_metrics."""

    def test_all_relevant(self):
        chunks = [chunk("admission_rules_2024_s1", 0.1), chunk("admission_rules_2024_s2", 0.3)]

        metrics = calculate_retrieval_metrics(chunks, ["admission_rules_2024.txt"])

        assert metrics.precision_at_k == 1.0
        assert metrics.recall_at_k == 1.0
        assert metrics.average_similarity == pytest.approx(0.8)

    def test_partial_hits(self):
        chunks = [chunk("admission_rules_2024_s1"), chunk("campus_guide_na_s1")]

        metrics = calculate_retrieval_metrics(chunks, ["admission_rules_2024.txt", "exam_rules_2023.txt"])

        assert metrics.precision_at_k == pytest.approx(0.5)
        assert metrics.recall_at_k == pytest.approx(0.5)

    def test_no_relevant_ids(self):
        metrics = calculate_retrieval_metrics([chunk("a_na_1")], [])
        assert metrics.precision_at_k == 0.0
        assert metrics.recall_at_k == 0.0

    def test_empty_retrieval(self):
        metrics = calculate_retrieval_metrics([], ["admission_rules_2024.txt"])
        assert metrics.model_dump() == {"precision_at_k": 0.0, "recall_at_k": 0.0, "average_similarity": 0.0}


class TestCosineSimilarity:
    """Tests for cosine_similarity."""

    def test_identical(self):
        assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)

    def test_orthogonal(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_opposite(self):
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)

    def test_undefined(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) is None
        assert cosine_similarity([1.0], [1.0, 0.0]) is None
        assert cosine_similarity([], []) is None
        assert cosine_similarity([math.inf, 1.0], [1.0, 1.0]) is None


class TestAggregation:
    """Tests for mean and percentile."""

    def test_mean(self):
        assert mean([1.0, 2.0, 6.0]) == pytest.approx(3.0)
        assert mean([]) == 0.0

    def test_percentile_nearest_rank(self):
        values = [float(v) for v in range(1, 21)]
        assert percentile(values, 0.95) == 19.0
        assert percentile(values, 0.0) == 1.0
        assert percentile(values, 1.0) == 20.0

    def test_percentile_unsorted_input(self):
        assert percentile([300.0, 100.0, 200.0], 0.95) == 200.0

    def test_percentile_empty(self):
        assert percentile([], 0.95) == 0.0


class TestDatasetHash:
    """Tests for dataset_hash."""

    def test_deterministic(self):
        first = [DatasetItem(query="q1", relevant_document_ids=["a.txt"], ground_truth="g")]
        second = [DatasetItem.model_validate({"query": "q1", "relevantDocumentIds": ["a.txt"], "groundTruth": "g"})]
        assert dataset_hash(first) == dataset_hash(second)
        assert len(dataset_hash(first)) == 64

    def test_content_sensitive(self):
        assert dataset_hash([DatasetItem(query="q1")]) != dataset_hash([DatasetItem(query="q2")])

    def test_order_sensitive(self):
        items = [DatasetItem(query="q1"), DatasetItem(query="q2")]
        assert dataset_hash(items) != dataset_hash(items[::-1])


class TestFaithfulnessJudge:
    """Tests for the faithfulness judge."""

    @pytest.mark.parametrize(
        "response,expected",
        [
            ("0.85", 0.85),
            ("Score: 0.7", 0.7),
            ("1", 1.0),
            ("7", 1.0),
            (".5 because the answer is mostly grounded", 0.5),
            ("The answer is grounded.", 0.0),
            ("", 0.0),
        ],
    )
    def test_parse(self, response, expected):
        assert parse_faithfulness(response) == pytest.approx(expected)

    def test_judge_prompt(self):
        generator = FakeGenerator(judge_response="0.9")

        score = asyncio.run(evaluate_faithfulness(generator, "[1] context", "answer [1]", "judge"))

        assert score == pytest.approx(0.9)
        assert generator.models == ["judge"]
        assert generator.prompts[0].startswith("You are an AI evaluator")
        assert "[1] context" in generator.prompts[0]
        assert "answer [1]" in generator.prompts[0]


class TestAnswerSimilarity:
    """Tests for ground-truth similarity."""

    def test_same_text(self):
        embedder = FakeEmbedder()
        value = asyncio.run(answer_similarity(embedder, "submit the form", "submit the form"))
        assert value == pytest.approx(1.0)
        assert len(embedder.texts) == 2

    def test_blank_text_is_undefined(self):
        assert asyncio.run(answer_similarity(FakeEmbedder(), "", "submit the form")) is None
