"""Tests for the HealthSignalEngine orchestration."""

from __future__ import annotations

import sqlite3
from datetime import timedelta

import pytest

from biosignal.domains.health.domain_logic.baseline import BaselineEstimator
from biosignal.domains.health.domain_logic.engine import HealthSignalEngine
from biosignal.domains.health.domain_logic.health_score import DEFAULT_WEIGHTS, ScoreWeights
from biosignal.domains.health.domain_logic.signal_models import (
    CONDITION_KEYS,
    MissingIntakeDataError,
)
from conftest import NOW, TODAY, daily_series, make_sample

FULL_DAY = {
    "deep_sleep_minutes": 70,
    "resting_heart_rate": 58,
    "steps": 8000,
    "recovery_score": 75,
}


class TestIngest:
    def test_baselines_appear_once_window_fills(self, signal_engine):
        # The window ends the day before each sample, so the eighth day is the first with seven prior rows.
        series = daily_series(8, hrv=45, **FULL_DAY)
        for sample in series[:7]:
            assert signal_engine.ingest_sample(sample, now=NOW).baselines_recalculated == []

        result = signal_engine.ingest_sample(series[7], now=NOW)
        assert {b.metric_type for b in result.baselines_recalculated} == {
            "hrv",
            "deep_sleep",
            "resting_hr",
            "steps",
            "recovery",
        }
        assert all(b.sample_count == 7 for b in result.baselines_recalculated)
        assert result.alerts == []

    def test_outlier_with_metric_type_never_reported(self, signal_engine, health_repository):
        partial_day = {"resting_heart_rate": 58, "steps": 8000}
        for offset in range(10, 0, -1):
            hrv = 40 if offset % 2 else 50
            signal_engine.ingest_sample(
                make_sample(TODAY - timedelta(days=offset), hrv=hrv, **partial_day),
                now=NOW - timedelta(days=offset),
            )
        stored = health_repository.get_baselines("user-1")
        assert set(stored) == {"hrv", "resting_hr", "steps"}

        result = signal_engine.ingest_sample(make_sample(TODAY, hrv=20), now=NOW)

        assert result.baselines_recalculated == []
        after = health_repository.get_baselines("user-1")
        assert after["hrv"] == stored["hrv"]
        assert after["hrv"].calculated_at == (NOW - timedelta(days=3)).isoformat()
        [alert] = result.alerts
        assert alert.severity == "critical"
        assert alert.baseline_value == pytest.approx(stored["hrv"].mean)

    def test_sample_is_not_part_of_its_own_baseline(self, signal_engine, health_repository):
        for sample in daily_series(10, end=TODAY - timedelta(days=1), hrv=45, **FULL_DAY):
            health_repository.save_sample(sample)

        result = signal_engine.ingest_sample(make_sample(TODAY, hrv=45.5, **FULL_DAY), now=NOW)

        hrv = next(b for b in result.baselines_recalculated if b.metric_type == "hrv")
        assert hrv.sample_count == 10
        assert hrv.mean == 45
    def test_outlier_against_stored_baseline(self, signal_engine, health_repository):
        for offset in range(1, 11):
            hrv = 40 if offset % 2 else 50
            health_repository.save_sample(make_sample(TODAY - timedelta(days=offset), hrv=hrv, **FULL_DAY))
        signal_engine.recalculate_baselines("user-1", as_of=TODAY - timedelta(days=1), now=NOW)

        result = signal_engine.ingest_sample(make_sample(TODAY, hrv=20), now=NOW)

        assert result.baselines_recalculated == []
        [alert] = result.alerts
        assert alert.metric_type == "hrv"
        assert alert.severity == "critical"
        assert alert.deviation_amount == pytest.approx(-5.0)
        assert alert.id
        assert [a.id for a in health_repository.get_alerts("user-1")] == [alert.id]

    def test_first_sample_sets_records(self, signal_engine):
        result = signal_engine.ingest_sample(make_sample(TODAY, hrv=45, steps=9000), now=NOW)
        assert {r.metric_type for r in result.new_records} == {"highest_hrv", "highest_steps"}

    def test_reupload_replaces_sample(self, signal_engine, health_repository):
        first = signal_engine.ingest_sample(make_sample(TODAY, hrv=45), now=NOW)
        second = signal_engine.ingest_sample(make_sample(TODAY, hrv=47), now=NOW)
        assert first.sample_id == second.sample_id
        assert health_repository.count_samples("user-1") == 1

    def test_baseline_failure_does_not_block_ingest(self, signal_engine, health_repository, monkeypatch, caplog):
        def broken(self, *args, **kwargs):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(BaselineEstimator, "recalculate", broken)
        result = signal_engine.ingest_sample(make_sample(TODAY, hrv=45), now=NOW)

        assert result.baselines_recalculated == []
        assert health_repository.count_samples("user-1") == 1
        assert [r.metric_type for r in result.new_records] == ["highest_hrv"]
        assert "Baseline recalculation failed" in caplog.text


class TestClassifyAndProject:
    def test_intake_required(self, signal_engine):
        with pytest.raises(MissingIntakeDataError):
            signal_engine.classify("user-1", as_of=TODAY)
        with pytest.raises(MissingIntakeDataError):
            signal_engine.project_risk("user-1", as_of=TODAY)

    def test_insufficient_data(self, signal_engine, health_repository, intake):
        signal_engine.save_intake_profile("user-1", intake)
        assert signal_engine.classify("user-1", as_of=TODAY) is None
        for sample in daily_series(5, hrv=40):
            health_repository.save_sample(sample)
        assert signal_engine.project_risk("user-1", as_of=TODAY) is None

    def test_window_outside_range_is_ignored(self, signal_engine, health_repository, intake):
        signal_engine.save_intake_profile("user-1", intake)
        for sample in daily_series(5, end=TODAY - timedelta(days=40), hrv=40, deep_sleep_minutes=70):
            health_repository.save_sample(sample)
        assert signal_engine.classify("user-1", window_days=30, as_of=TODAY) is None

    def test_classify_averages_window(self, signal_engine, health_repository, intake):
        signal_engine.save_intake_profile("user-1", intake)
        for sample in daily_series(4, hrv=36, deep_sleep_minutes=70):
            health_repository.save_sample(sample)
        for sample in daily_series(4, end=TODAY - timedelta(days=4), hrv=44, deep_sleep_minutes=50):
            health_repository.save_sample(sample)

        classification = signal_engine.classify("user-1", as_of=TODAY)
        assert classification.hrv.value == pytest.approx(40)
        assert classification.hrv.classification == "favorable"
        assert classification.deep_sleep.value == pytest.approx(60)
        assert classification.deep_sleep.classification == "adequate"

    def test_project_risk(self, signal_engine, health_repository, intake):
        signal_engine.save_intake_profile("user-1", intake)
        for sample in daily_series(10, hrv=25, deep_sleep_minutes=40):
            health_repository.save_sample(sample)

        analysis = signal_engine.project_risk("user-1", as_of=TODAY)
        assert tuple(analysis.trajectories) == CONDITION_KEYS
        assert len(analysis.highest_risks) == 2
        assert analysis.window.sample_count == 10
        assert analysis.classification.hrv.classification == "low"

        data = analysis.to_dict()
        assert data["window"]["until"] == TODAY.isoformat()
        assert set(data["trajectories"]["dementia"]) >= {"current", "tenYears", "riskLevel", "trend"}

    def test_narrative_request(self, signal_engine, health_repository, intake):
        signal_engine.save_intake_profile("user-1", intake)
        for sample in daily_series(10, hrv=25, deep_sleep_minutes=40):
            health_repository.save_sample(sample)

        request = signal_engine.narrative_request("user-1", as_of=TODAY, reference_template="Keep it short.")
        assert request.avg_hrv == pytest.approx(25)
        assert request.intake == intake
        assert len(request.highest_risks) == 2
        assert request.to_dict()["referenceTemplate"] == "Keep it short."


class _HrvOnlyAdvisor:
    def __init__(self):
        self.calls = 0

    def weights_for(self, samples, intake):
        self.calls += 1
        return ScoreWeights(1, 0, 0, 0, reasoning="HRV only")


class TestHealthScore:
    def test_intake_required(self, signal_engine):
        with pytest.raises(MissingIntakeDataError):
            signal_engine.compose_health_score("user-1", TODAY)

    def test_no_samples(self, signal_engine, intake):
        signal_engine.save_intake_profile("user-1", intake)
        assert signal_engine.compose_health_score("user-1", TODAY) is None

    def test_falls_back_to_latest_sample(self, signal_engine, health_repository, intake):
        signal_engine.save_intake_profile("user-1", intake)
        health_repository.save_sample(make_sample(TODAY - timedelta(days=5), recovery_score=10))
        health_repository.save_sample(make_sample(TODAY - timedelta(days=2), recovery_score=90))

        score = signal_engine.compose_health_score("user-1", TODAY)
        assert score.date == TODAY.isoformat()
        assert score.recovery.score == 90
        assert score.reasoning == DEFAULT_WEIGHTS.reasoning
        [stored] = health_repository.get_health_scores("user-1")
        assert stored.overall_score == score.overall_score

    def test_same_day_sample_preferred(self, signal_engine, health_repository, intake):
        signal_engine.save_intake_profile("user-1", intake)
        health_repository.save_sample(make_sample(TODAY - timedelta(days=1), recovery_score=90))
        health_repository.save_sample(make_sample(TODAY, recovery_score=30))
        health_repository.save_sample(make_sample(TODAY + timedelta(days=1), recovery_score=70))
        assert signal_engine.compose_health_score("user-1", TODAY).recovery.score == 30

    def test_rescoring_replaces(self, signal_engine, health_repository, intake):
        signal_engine.save_intake_profile("user-1", intake)
        health_repository.save_sample(make_sample(TODAY, recovery_score=30))
        signal_engine.compose_health_score("user-1", TODAY)
        signal_engine.compose_health_score("user-1", TODAY, ScoreWeights(0, 0, 1, 0))
        [stored] = health_repository.get_health_scores("user-1")
        assert stored.overall_score == 30

    def test_weight_advisor(self, health_repository, settings, intake):
        advisor = _HrvOnlyAdvisor()
        engine = HealthSignalEngine(health_repository, settings, weight_advisor=advisor)
        engine.save_intake_profile("user-1", intake)
        health_repository.save_sample(make_sample(TODAY, hrv=38))

        score = engine.compose_health_score("user-1", TODAY)
        assert advisor.calls == 1
        assert score.reasoning == "HRV only"
        assert score.overall_score == round(score.hrv.score)

    def test_explicit_weights_bypass_advisor(self, health_repository, settings, intake):
        advisor = _HrvOnlyAdvisor()
        engine = HealthSignalEngine(health_repository, settings, weight_advisor=advisor)
        engine.save_intake_profile("user-1", intake)
        health_repository.save_sample(make_sample(TODAY, hrv=38))
        engine.compose_health_score("user-1", TODAY, DEFAULT_WEIGHTS)
        assert advisor.calls == 0


class TestRecalculationCadence:
    def test_recalculates_only_when_schedule_expires(self, signal_engine, health_repository):
        recalculated_on = []
        calculated_at = set()
        for i in range(40):
            day = TODAY - timedelta(days=39 - i)
            now = NOW - timedelta(days=39 - i)
            result = signal_engine.ingest_sample(
                make_sample(day, hrv=40 if i % 2 else 50, steps=8000), now=now
            )
            if result.baselines_recalculated:
                recalculated_on.append(i)
            baselines = health_repository.get_baselines("user-1")
            if baselines:
                calculated_at.add(baselines["hrv"].calculated_at)

        # First full window on day 7; next_recalc_at is 30 days later.
        assert recalculated_on == [7, 37]
        assert calculated_at == {
            (NOW - timedelta(days=32)).isoformat(),
            (NOW - timedelta(days=2)).isoformat(),
        }

    def test_stable_within_interval(self, signal_engine, health_repository):
        for sample in daily_series(8, end=TODAY - timedelta(days=5), hrv=45, **FULL_DAY):
            signal_engine.ingest_sample(sample, now=NOW - timedelta(days=5))
        before = health_repository.get_baselines("user-1")

        for offset in range(4, -1, -1):
            result = signal_engine.ingest_sample(
                make_sample(TODAY - timedelta(days=offset), hrv=60, **FULL_DAY),
                now=NOW - timedelta(days=offset),
            )
            assert result.baselines_recalculated == []

        assert health_repository.get_baselines("user-1") == before
