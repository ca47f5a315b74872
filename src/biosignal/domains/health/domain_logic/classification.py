"""Age-adjusted physiological classification of HRV and deep sleep.

Tiers are cut against the shared age-band targets in ``reference_targets``:
below 75% of target is the worst tier, below target the middle tier, at or
above target the best tier. Percentiles are estimated separately and are,
like the tiers, non-decreasing in the measured value.
"""

from __future__ import annotations

from typing import Any

from biosignal.core.storage.models import IntakeProfile
from biosignal.domains.health.domain_logic.reference_targets import (
    WORST_TIER_RATIO,
    HRVReferenceRange,
    age_band_label,
    deep_sleep_target,
    hrv_reference_range,
    hrv_target,
)
from biosignal.domains.health.domain_logic.signal_models import (
    DEEP_SLEEP_TIERS,
    HRV_TIERS,
    MetricClassification,
    MissingIntakeDataError,
    PhysiologicalClassification,
)

# Comorbidities that depress HRV independent of fitness; the measured value
# is scaled down before comparison so tiers are not flattered by them.
HRV_COMORBIDITY_FACTORS = {
    "has_heart_failure": 0.85,
    "has_diabetes": 0.92,
    "has_chronic_kidney_disease": 0.88,
}
DEEP_SLEEP_OLDER_ADULT_AGE = 60
DEEP_SLEEP_OLDER_ADULT_FACTOR = 1.1


def _require_intake(intake: IntakeProfile | None) -> IntakeProfile:
    if intake is None:
        raise MissingIntakeDataError(
            "An intake profile (age, sex, conditions) is required for age-adjusted classification"
        )
    return intake


def _tier(value: float, target: float, tiers: tuple[str, str, str]) -> str:
    if value < target * WORST_TIER_RATIO:
        return tiers[0]
    if value < target:
        return tiers[1]
    return tiers[2]


# ---------------------------------------------------------------------------
# HRV
# ---------------------------------------------------------------------------

def adjusted_hrv(hrv_ms: float, intake: IntakeProfile) -> float:
    adjusted = hrv_ms
    for flag, factor in HRV_COMORBIDITY_FACTORS.items():
        if getattr(intake, flag):
            adjusted *= factor
    return adjusted


def hrv_percentile(value: float, ref: HRVReferenceRange) -> int:
    """Piecewise-linear percentile against the p5..p95 reference points."""
    if value <= ref.p5:
        return max(1, round(value / ref.p5 * 5))
    segments = (
        (ref.p5, ref.p25, 5, 20),
        (ref.p25, ref.p50, 25, 25),
        (ref.p50, ref.p75, 50, 25),
        (ref.p75, ref.p95, 75, 20),
    )
    for lo, hi, base, span in segments:
        if value <= hi:
            return base + round((value - lo) / (hi - lo) * span)
    extra = min(4, round((value - ref.p95) / ref.p95 * 10))
    return min(99, 95 + extra)


def classify_hrv(hrv_ms: float, intake: IntakeProfile | None) -> MetricClassification:
    """Classify an average HRV as low / moderate / favorable for the user's age."""
    intake = _require_intake(intake)
    adjusted = adjusted_hrv(hrv_ms, intake)
    return MetricClassification(
        value=hrv_ms,
        classification=_tier(adjusted, hrv_target(intake.age), HRV_TIERS),
        percentile=hrv_percentile(adjusted, hrv_reference_range(intake.age, intake.sex)),
    )


# ---------------------------------------------------------------------------
# Deep sleep
# ---------------------------------------------------------------------------

def classify_deep_sleep(minutes: float, intake: IntakeProfile | None) -> MetricClassification:
    """Classify average deep sleep as inadequate / borderline / adequate for the user's age."""
    intake = _require_intake(intake)
    adjusted = minutes
    if intake.age > DEEP_SLEEP_OLDER_ADULT_AGE:
        adjusted *= DEEP_SLEEP_OLDER_ADULT_FACTOR

    target = deep_sleep_target(intake.age)
    floor = target * WORST_TIER_RATIO
    classification = _tier(adjusted, target, DEEP_SLEEP_TIERS)

    if classification == "inadequate":
        percentile = max(0, min(20, round(adjusted / floor * 20)))
    elif classification == "borderline":
        percentile = 20 + round((adjusted - floor) / (target - floor) * 40)
    else:
        percentile = min(99, 60 + round((adjusted - target) / 60 * 39))

    return MetricClassification(
        value=minutes,
        classification=classification,
        percentile=percentile,
    )


def classify(
    avg_hrv: float,
    avg_deep_sleep: float,
    intake: IntakeProfile | None,
) -> PhysiologicalClassification:
    """Classify both window averages."""
    return PhysiologicalClassification(
        hrv=classify_hrv(avg_hrv, intake),
        deep_sleep=classify_deep_sleep(avg_deep_sleep, intake),
    )


# ---------------------------------------------------------------------------
# Plain-language summaries
# ---------------------------------------------------------------------------

def _ordinal(n: int) -> str:
    if n % 10 == 1 and n % 100 != 11:
        return f"{n}st"
    if n % 10 == 2 and n % 100 != 12:
        return f"{n}nd"
    if n % 10 == 3 and n % 100 != 13:
        return f"{n}rd"
    return f"{n}th"


def _age_group(age: int) -> str:
    if age < 30:
        return "young adult"
    if age < 45:
        return "adult"
    if age < 60:
        return "middle-aged"
    return "older adult"


def describe_classification(
    classification: PhysiologicalClassification,
    intake: IntakeProfile | None,
) -> dict[str, str]:
    """One-paragraph description of each tier, for display next to the badge."""
    intake = _require_intake(intake)
    hrv = classification.hrv
    sleep = classification.deep_sleep
    median = hrv_reference_range(intake.age, intake.sex).p50
    who = f"a {_age_group(intake.age)} {intake.sex}"
    hrv_pct = f"{_ordinal(hrv.percentile)} percentile"
    sleep_pct = f"{_ordinal(sleep.percentile)} percentile"

    hrv_text = {
        "low": (
            f"Your HRV of {hrv.value:.0f}ms falls in the low range ({hrv_pct}) for {who}, "
            f"well below the reference median of {median:.0f}ms. This points to reduced "
            "autonomic flexibility and weaker stress adaptation."
        ),
        "moderate": (
            f"Your HRV of {hrv.value:.0f}ms is in the moderate range ({hrv_pct}) for {who}. "
            f"There is room to improve toward the reference median of {median:.0f}ms."
        ),
        "favorable": (
            f"Your HRV of {hrv.value:.0f}ms is favorable ({hrv_pct}) for {who}, indicating "
            "healthy autonomic function and good stress resilience."
        ),
    }[hrv.classification]

    sleep_text = {
        "inadequate": (
            f"Your average deep sleep of {sleep.value:.0f} minutes is inadequate ({sleep_pct}). "
            "Deep sleep drives physical repair and memory consolidation."
        ),
        "borderline": (
            f"Your average deep sleep of {sleep.value:.0f} minutes is borderline ({sleep_pct}). "
            "You get some restorative sleep but fall short of the target for your age."
        ),
        "adequate": (
            f"Your average deep sleep of {sleep.value:.0f} minutes is adequate ({sleep_pct}) "
            "for your age."
        ),
    }[sleep.classification]

    return {"hrv": hrv_text, "deepSleep": sleep_text}


def hrv_reference_info(intake: IntakeProfile | None) -> dict[str, Any]:
    """Reference RMSSD range for the user's demographic."""
    intake = _require_intake(intake)
    ref = hrv_reference_range(intake.age, intake.sex)
    population = {"male": "men", "female": "women"}.get(intake.sex, "adults")
    return {
        "range": {"p5": ref.p5, "p25": ref.p25, "p50": ref.p50, "p75": ref.p75, "p95": ref.p95},
        "target_ms": hrv_target(intake.age),
        "description": (
            f"For {population} aged {age_band_label(intake.age)}, the median RMSSD HRV is "
            f"{ref.p50:.0f}ms (5th-95th percentile: {ref.p5:g}-{ref.p95:g}ms). "
            "HRV declines naturally with age."
        ),
    }
