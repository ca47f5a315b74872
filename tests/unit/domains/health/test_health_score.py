"""Tests for the daily composite health score."""

from __future__ import annotations

import pytest

from biosignal.domains.health.domain_logic.health_score import (
    DEFAULT_WEIGHTS,
    NEUTRAL_SCORE,
    ScoreWeights,
    component_scores,
    compose_health_score,
    normalize_activity,
    normalize_hrv,
    normalize_recovery,
    normalize_sleep,
)
from conftest import make_sample


class TestNormalizers:
    @pytest.mark.parametrize(
        "hrv, expected",
        [(35, 40), (17.5, 20), (75, 70), (55, 55), (112.5, 100), (400, 100), (None, NEUTRAL_SCORE)],
    )
    def test_hrv_under_thirty(self, hrv, expected):
        assert normalize_hrv(hrv, 25) == pytest.approx(expected)

    def test_hrv_band_shifts_with_age(self):
        assert normalize_hrv(30, 25) < normalize_hrv(30, 65)

    @pytest.mark.parametrize(
        "deep, sleep_score, expected",
        [(100, None, 70), (60, None, 40), (30, None, 20), (None, 82, 82), (None, None, NEUTRAL_SCORE)],
    )
    def test_sleep(self, deep, sleep_score, expected):
        assert normalize_sleep(deep, sleep_score, 30) == pytest.approx(expected)

    def test_sleep_target_relaxes_with_age(self):
        assert normalize_sleep(70, None, 65) == pytest.approx(70)
        assert normalize_sleep(70, None, 30) < 70

    @pytest.mark.parametrize(
        "steps, rhr, expected",
        [(10000, None, 85), (12000, 55, 97), (4000, 85, 30), (7500, 65, 75), (None, None, NEUTRAL_SCORE), (40000, 50, 100)],
    )
    def test_activity(self, steps, rhr, expected):
        assert normalize_activity(steps, rhr) == pytest.approx(expected)

    def test_recovery_clamped(self):
        assert normalize_recovery(130) == 100
        assert normalize_recovery(None) == NEUTRAL_SCORE

    def test_component_scores_from_sample(self):
        sample = make_sample("2026-03-01", hrv=75, deep_sleep_minutes=100, recovery_score=64, steps=10000)
        assert component_scores(sample, 25) == pytest.approx(
            {"hrv": 70, "sleep": 70, "recovery": 64, "activity": 85}
        )


class TestWeights:
    def test_defaults_sum_to_one(self):
        assert sum(DEFAULT_WEIGHTS.as_dict().values()) == pytest.approx(1.0)

    def test_normalized(self):
        weights = ScoreWeights(2, 2, 1, 1, reasoning="custom").normalized()
        assert weights.hrv == pytest.approx(1 / 3)
        assert weights.activity == pytest.approx(1 / 6)
        assert weights.reasoning == "custom"

    def test_negative_weight(self):
        with pytest.raises(ValueError, match="non-negative"):
            ScoreWeights(1, -1, 1, 1).normalized()

    def test_zero_total(self):
        with pytest.raises(ValueError, match="all be zero"):
            ScoreWeights(0, 0, 0, 0).normalized()


class TestCompose:
    SCORES = {"hrv": 80, "sleep": 60, "recovery": 70, "activity": 50}

    def test_default_weights(self):
        score = compose_health_score("2026-03-01", self.SCORES)
        assert score.overall_score == 66
        assert score.hrv.weight == pytest.approx(0.30)
        assert score.reasoning == DEFAULT_WEIGHTS.reasoning

    def test_custom_weights_normalized(self):
        score = compose_health_score("2026-03-01", self.SCORES, ScoreWeights(1, 1, 1, 1))
        assert score.overall_score == 65
        assert sum(c.weight for c in score.components().values()) == pytest.approx(1.0)

    def test_integer_in_range(self):
        score = compose_health_score("2026-03-01", {"hrv": 66.6, "sleep": 66.6, "recovery": 66.6, "activity": 66.6})
        assert score.overall_score == 67
        assert isinstance(score.overall_score, int)

    @pytest.mark.parametrize("value, expected", [(72.5, 73), (71.5, 72), (72.49, 72)])
    def test_halves_round_up(self, value, expected):
        scores = {"hrv": value, "sleep": 0, "recovery": 0, "activity": 0}
        assert compose_health_score("2026-03-01", scores, ScoreWeights(1, 0, 0, 0)).overall_score == expected

    def test_components_clamped(self):
        score = compose_health_score("2026-03-01", {"hrv": 150, "sleep": -20, "recovery": 100, "activity": 100})
        assert score.hrv.score == 100
        assert score.sleep.score == 0
        assert 0 <= score.overall_score <= 100

    def test_missing_component(self):
        with pytest.raises(ValueError, match="Missing component"):
            compose_health_score("2026-03-01", {"hrv": 50, "sleep": 50, "recovery": 50})

    def test_to_dict(self):
        data = compose_health_score("2026-03-01", self.SCORES).to_dict()
        assert data["date"] == "2026-03-01"
        assert data["components"]["sleep"] == {"score": 60, "weight": 0.3}
