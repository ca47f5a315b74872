"""Tests for the age-adjusted physiological classifier."""

from __future__ import annotations

import pytest

from biosignal.core.storage.models import IntakeProfile
from biosignal.domains.health.domain_logic.classification import (
    classify,
    classify_deep_sleep,
    classify_hrv,
    describe_classification,
    hrv_percentile,
    hrv_reference_info,
)
from biosignal.domains.health.domain_logic.reference_targets import (
    deep_sleep_target,
    hrv_reference_range,
    hrv_target,
    target_for,
)
from biosignal.domains.health.domain_logic.signal_models import (
    DEEP_SLEEP_TIERS,
    HRV_TIERS,
    MissingIntakeDataError,
)


class TestReferenceTargets:
    @pytest.mark.parametrize(
        "age, expected",
        [(25, 60), (29, 60), (30, 48), (45, 38), (55, 30), (60, 24), (85, 24)],
    )
    def test_hrv_target_bands(self, age, expected):
        assert hrv_target(age) == expected

    @pytest.mark.parametrize(
        "age, expected",
        [(20, 90), (30, 75), (44, 75), (45, 60), (59, 60), (60, 50)],
    )
    def test_deep_sleep_target_bands(self, age, expected):
        assert deep_sleep_target(age) == expected

    def test_target_for_dispatch(self):
        assert target_for("hrv", 45) == hrv_target(45)
        assert target_for("deep_sleep", 45) == deep_sleep_target(45)
        with pytest.raises(ValueError):
            target_for("steps", 45)

    def test_other_sex_uses_female_reference(self):
        assert hrv_reference_range(35, "other") == hrv_reference_range(35, "female")


class TestHRVClassification:
    @pytest.mark.parametrize("hrv, expected", [(20, "low"), (30, "moderate"), (38, "favorable"), (55, "favorable")])
    def test_tiers_around_target(self, hrv, expected):
        # Age 45: target 38ms, low below 28.5ms.
        assert classify_hrv(hrv, IntakeProfile(age=45, sex="male")).classification == expected

    def test_comorbidity_lowers_effective_value(self):
        healthy = IntakeProfile(age=45, sex="male")
        heart_failure = IntakeProfile(age=45, sex="male", has_heart_failure=True)
        assert classify_hrv(40, healthy).classification == "favorable"
        result = classify_hrv(40, heart_failure)
        assert result.classification == "moderate"
        # Reported value is the measured one.
        assert result.value == 40

    def test_missing_intake_raises(self):
        with pytest.raises(MissingIntakeDataError):
            classify_hrv(40, None)

    def test_percentile_bounds(self):
        ref = hrv_reference_range(45, "male")
        assert hrv_percentile(0.5, ref) == 1
        assert hrv_percentile(ref.p50, ref) == 50
        assert hrv_percentile(10_000, ref) == 99

    @pytest.mark.parametrize("age", [22, 35, 45, 55, 65, 80])
    @pytest.mark.parametrize("sex", ["male", "female", "other"])
    def test_monotonic_in_value(self, age, sex):
        intake = IntakeProfile(age=age, sex=sex)
        previous_tier, previous_pct = -1, -1
        for tenths in range(5, 2000, 5):
            result = classify_hrv(tenths / 10, intake)
            tier = HRV_TIERS.index(result.classification)
            assert tier >= previous_tier
            assert result.percentile >= previous_pct
            assert 1 <= result.percentile <= 99
            previous_tier, previous_pct = tier, result.percentile


class TestDeepSleepClassification:
    @pytest.mark.parametrize("minutes, expected", [(40, "inadequate"), (50, "borderline"), (60, "adequate")])
    def test_tiers_around_target(self, minutes, expected):
        # Age 50: target 60min, inadequate below 45min.
        assert classify_deep_sleep(minutes, IntakeProfile(age=50, sex="female")).classification == expected

    def test_older_adult_adjustment(self):
        # Age 65: target 50, floor 37.5; 35min counts as 38.5 after adjustment.
        assert classify_deep_sleep(35, IntakeProfile(age=65, sex="male")).classification == "borderline"
        assert classify_deep_sleep(35, IntakeProfile(age=59, sex="male")).classification == "inadequate"

    def test_percentile_anchors(self):
        intake = IntakeProfile(age=50, sex="female")
        assert classify_deep_sleep(45, intake).percentile == 20
        assert classify_deep_sleep(60, intake).percentile == 60
        assert classify_deep_sleep(500, intake).percentile == 99

    @pytest.mark.parametrize("age", [25, 40, 55, 70])
    def test_monotonic_in_value(self, age):
        intake = IntakeProfile(age=age, sex="female")
        previous_tier, previous_pct = -1, -1
        for minutes in range(0, 240):
            result = classify_deep_sleep(minutes, intake)
            tier = DEEP_SLEEP_TIERS.index(result.classification)
            assert tier >= previous_tier
            assert result.percentile >= previous_pct
            previous_tier, previous_pct = tier, result.percentile


class TestSummaries:
    def test_classify_bundle_wire_format(self):
        data = classify(20, 40, IntakeProfile(age=50, sex="male")).to_dict()
        assert data["hrv"]["classification"] == "low"
        assert data["deepSleep"]["classification"] == "inadequate"
        assert data["hrv"]["ageAdjusted"] is True

    def test_describe_classification(self):
        intake = IntakeProfile(age=50, sex="male")
        text = describe_classification(classify(20, 40, intake), intake)
        assert set(text) == {"hrv", "deepSleep"}
        assert "low range" in text["hrv"]
        assert "inadequate" in text["deepSleep"]

    def test_hrv_reference_info(self):
        info = hrv_reference_info(IntakeProfile(age=33, sex="female"))
        assert info["target_ms"] == 48
        assert info["range"]["p50"] == 46.5
        assert "women aged 30-40" in info["description"]
