"""Tests for trust scoring."""

import itertools
import math

import pytest

from src.ragtrust.config import TrustSettings
from src.ragtrust.models import TrustMode, TrustWeights
from src.ragtrust.trust import default_weights, full_trust_score, lightweight_trust_score

CONFIG = TrustSettings()


class TestLightweightScore:
    """Tests for lightweight mode."""

    def test_perfect_inputs(self):
        breakdown = lightweight_trust_score(1.0, 1.0, 1.0, config=CONFIG)

        assert breakdown.mode == TrustMode.LIGHTWEIGHT
        assert breakdown.score == pytest.approx(1.0)
        assert breakdown.capped_by_citation_policy is False
        assert breakdown.cap_value is None

    def test_capped_after_failed_retry(self):
        breakdown = lightweight_trust_score(1.0, 1.0, 1.0, citation_invalid_after_retry=True, config=CONFIG)

        assert breakdown.score == pytest.approx(0.35)
        assert breakdown.capped_by_citation_policy is True
        assert breakdown.cap_value == 0.35

    def test_weighted_sum(self):
        breakdown = lightweight_trust_score(0.5, 0.4, 0.0, config=CONFIG)
        assert breakdown.score == pytest.approx(0.6 * 0.5 + 0.25 * 0.4)

    def test_cap_does_not_raise_low_scores(self):
        breakdown = lightweight_trust_score(0.1, 0.0, 0.0, citation_invalid_after_retry=True, config=CONFIG)
        assert breakdown.score == pytest.approx(0.06)

    def test_inputs_clamped(self):
        breakdown = lightweight_trust_score(3.0, -1.0, float("nan"), config=CONFIG)

        assert breakdown.retrieval_quality == 1.0
        assert breakdown.citation_coverage == 0.0
        assert breakdown.citation_validity == 0.0
        assert breakdown.score == pytest.approx(0.6)


class TestFullScore:
    """Tests for full mode."""

    def test_perfect_inputs(self):
        breakdown = full_trust_score(1.0, 1.0, 1.0, 1.0, answer_similarity=1.0, config=CONFIG)

        assert breakdown.mode == TrustMode.FULL
        assert breakdown.score == pytest.approx(1.0)
        assert breakdown.base_score == pytest.approx(1.0)
        assert breakdown.citation_score == pytest.approx(1.0)

    def test_capped_after_failed_retry(self):
        breakdown = full_trust_score(
            1.0, 1.0, 1.0, 1.0, answer_similarity=1.0, citation_invalid_after_retry=True, config=CONFIG
        )

        assert breakdown.score == pytest.approx(0.60)
        assert breakdown.capped_by_citation_policy is True
        assert breakdown.cap_value == 0.60

    def test_default_similarity_without_ground_truth(self):
        breakdown = full_trust_score(1.0, 1.0, 1.0, 1.0, config=CONFIG)

        assert breakdown.answer_similarity == 0.5
        assert breakdown.base_score == pytest.approx(0.85)
        assert breakdown.score == pytest.approx(0.8 * 0.85 + 0.2)
        assert breakdown.semantic_compensation_applied is False

    def test_non_finite_similarity_uses_default(self):
        breakdown = full_trust_score(1.0, 1.0, 1.0, 1.0, answer_similarity=float("nan"), config=CONFIG)
        assert breakdown.answer_similarity == 0.5

    def test_semantic_compensation(self):
        breakdown = full_trust_score(0.95, 0.0, 0.0, 0.0, answer_similarity=0.8, config=CONFIG)

        assert breakdown.base_score == pytest.approx(0.4 * 0.95 + 0.3 * 0.8)
        assert breakdown.score == pytest.approx(0.75)
        assert breakdown.semantic_compensation_applied is True

    def test_no_compensation_at_similarity_threshold(self):
        breakdown = full_trust_score(0.95, 0.0, 0.0, 0.0, answer_similarity=0.75, config=CONFIG)

        assert breakdown.semantic_compensation_applied is False
        assert breakdown.score < 0.75

    def test_compensation_is_still_capped(self):
        breakdown = full_trust_score(
            0.95, 0.0, 0.0, 0.0, answer_similarity=0.8, citation_invalid_after_retry=True, config=CONFIG
        )

        assert breakdown.semantic_compensation_applied is True
        assert breakdown.score == pytest.approx(0.60)

    def test_custom_weights(self):
        weights = TrustWeights(faithfulness=1.0, precision=0.0, similarity=0.0)
        breakdown = full_trust_score(0.5, 1.0, 0.0, 0.0, answer_similarity=0.0, weights=weights, config=CONFIG)
        assert breakdown.score == pytest.approx(0.8 * 0.5)

    def test_configured_thresholds(self):
        config = TrustSettings(semantic_floor=0.9, full_cap=0.5)
        breakdown = full_trust_score(1.0, 0.0, 0.0, 0.0, answer_similarity=0.8, config=config)
        assert breakdown.score == pytest.approx(0.9)

    def test_inputs_clamped(self):
        breakdown = full_trust_score(1.5, -1.0, 2.0, 1.0, answer_similarity=1.0, config=CONFIG)

        assert breakdown.faithfulness_score == 1.0
        assert breakdown.precision_at_k == 0.0
        assert breakdown.citation_coverage == 1.0


class TestScoreBounds:
    """Scores stay in [0, 1] for any input."""

    VALUES = [-1.0, 0.0, 0.3, 1.0, 2.5, float("nan"), float("inf")]

    def test_lightweight_bounds(self):
        for quality, coverage, validity in itertools.product(self.VALUES, repeat=3):
            for capped in (False, True):
                score = lightweight_trust_score(quality, coverage, validity, capped, CONFIG).score
                assert 0.0 <= score <= 1.0

    def test_full_bounds(self):
        for faith, precision, similarity in itertools.product(self.VALUES, repeat=3):
            breakdown = full_trust_score(
                faith, precision, 0.5, 1.0, answer_similarity=similarity, config=CONFIG
            )
            assert 0.0 <= breakdown.score <= 1.0
            assert not math.isnan(breakdown.score)


def test_default_weights_follow_settings():
    weights = default_weights(TrustSettings(faithfulness_weight=0.5, precision_weight=0.25, similarity_weight=0.25))
    assert weights == TrustWeights(faithfulness=0.5, precision=0.25, similarity=0.25)
