"""Age-banded physiological reference values.

The single source of the HRV and deep-sleep targets. Both the classifier and
the risk trajectory engine read targets from here; neither keeps a copy.
"""

from __future__ import annotations

from dataclasses import dataclass

# (upper age bound exclusive, target). Last entry catches everything older.
_HRV_TARGET_BANDS = ((30, 60.0), (40, 48.0), (50, 38.0), (60, 30.0), (None, 24.0))
_DEEP_SLEEP_TARGET_BANDS = ((30, 90.0), (45, 75.0), (60, 60.0), (None, 50.0))

# Below this share of target a metric falls into its worst tier.
WORST_TIER_RATIO = 0.75


def _band_lookup(age: int, bands: tuple) -> float:
    for upper, target in bands:
        if upper is None or age < upper:
            return target
    raise AssertionError("unreachable: last band is open-ended")


def hrv_target(age: int) -> float:
    """Reference HRV (RMSSD, ms) for an age. Never zero."""
    return _band_lookup(age, _HRV_TARGET_BANDS)


def deep_sleep_target(age: int) -> float:
    """Reference nightly deep sleep (minutes) for an age. Never zero."""
    return _band_lookup(age, _DEEP_SLEEP_TARGET_BANDS)


def target_for(metric: str, age: int) -> float:
    """Dispatch by metric name: ``hrv`` or ``deep_sleep``."""
    if metric == "hrv":
        return hrv_target(age)
    if metric == "deep_sleep":
        return deep_sleep_target(age)
    raise ValueError(f"No reference target for metric {metric!r}")


# ---------------------------------------------------------------------------
# HRV population reference (RMSSD percentiles by age band and sex)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class HRVReferenceRange:
    p5: float
    p25: float
    p50: float
    p75: float
    p95: float


# age upper bound -> (male, female)
_HRV_REFERENCE = (
    (30, HRVReferenceRange(39, 55, 67.5, 80, 96), HRVReferenceRange(37, 52, 66, 78, 95)),
    (40, HRVReferenceRange(29, 40, 51, 62, 73), HRVReferenceRange(27, 37, 46.5, 56, 66)),
    (50, HRVReferenceRange(22, 30, 39.5, 48, 57), HRVReferenceRange(20, 28, 36, 44, 52)),
    (60, HRVReferenceRange(17, 24, 32.5, 40, 48), HRVReferenceRange(15, 22, 29, 36, 43)),
    (70, HRVReferenceRange(14, 20, 28, 36, 44), HRVReferenceRange(12, 18, 25, 32, 39)),
    (None, HRVReferenceRange(12, 17, 24, 31, 38), HRVReferenceRange(10, 15, 21, 27, 33)),
)


def hrv_reference_range(age: int, sex: str) -> HRVReferenceRange:
    """Population RMSSD percentiles for an age band; ``other`` uses the female column."""
    for upper, male, female in _HRV_REFERENCE:
        if upper is None or age < upper:
            return male if sex == "male" else female
    raise AssertionError("unreachable: last band is open-ended")


def age_band_label(age: int) -> str:
    if age < 30:
        return "20-30"
    if age < 40:
        return "30-40"
    if age < 50:
        return "40-50"
    if age < 60:
        return "50-60"
    if age < 70:
        return "60-70"
    return "70+"
