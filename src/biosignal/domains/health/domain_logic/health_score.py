"""Daily composite health score.

Four component scores (0-100) are derived from a day's sample and combined
with weights. Choosing the weights is delegated to a ``WeightAdvisor``; when
none is configured the fixed defaults apply.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Protocol

from biosignal.core.storage.models import ComponentScore, HealthScore, IntakeProfile, MetricSample

COMPONENTS = ("hrv", "sleep", "recovery", "activity")
NEUTRAL_SCORE = 50.0

# (upper age bound exclusive, low, high)
_HRV_SCORE_BANDS = (
    (30, 35.0, 75.0),
    (40, 30.0, 65.0),
    (50, 25.0, 55.0),
    (60, 20.0, 45.0),
    (70, 15.0, 35.0),
    (None, 10.0, 30.0),
)


@dataclass(frozen=True)
class ScoreWeights:
    hrv: float
    sleep: float
    recovery: float
    activity: float
    reasoning: str = ""

    def as_dict(self) -> dict[str, float]:
        return {"hrv": self.hrv, "sleep": self.sleep, "recovery": self.recovery, "activity": self.activity}

    def normalized(self) -> ScoreWeights:
        """Scale weights to sum to 1.

        Raises:
            ValueError: On a negative weight or a zero total.
        """
        values = self.as_dict()
        negative = [name for name, w in values.items() if w < 0]
        if negative:
            raise ValueError(f"Component weights must be non-negative: {negative}")
        total = sum(values.values())
        if total <= 0:
            raise ValueError("Component weights must not all be zero")
        return ScoreWeights(
            hrv=self.hrv / total,
            sleep=self.sleep / total,
            recovery=self.recovery / total,
            activity=self.activity / total,
            reasoning=self.reasoning,
        )


DEFAULT_WEIGHTS = ScoreWeights(
    hrv=0.30,
    sleep=0.30,
    recovery=0.20,
    activity=0.20,
    reasoning="Default weights (weight advisor not configured)",
)


class WeightAdvisor(Protocol):
    """Chooses component weights from recent history and the intake profile."""

    def weights_for(self, samples: list[MetricSample], intake: IntakeProfile) -> ScoreWeights: ...


# ---------------------------------------------------------------------------
# Component normalizers
# ---------------------------------------------------------------------------

def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def normalize_hrv(hrv: float | None, age: int) -> float:
    if hrv is None:
        return NEUTRAL_SCORE
    for upper, low, high in _HRV_SCORE_BANDS:
        if upper is None or age < upper:
            break
    if hrv <= low:
        return _clamp(hrv / low * 40)
    if hrv >= high:
        return _clamp(70 + (hrv - high) / (high * 0.5) * 30)
    return 40 + (hrv - low) / (high - low) * 30


def deep_sleep_score_target(age: int) -> float:
    if age < 40:
        return 100.0
    if age < 60:
        return 85.0
    return 70.0


def normalize_sleep(deep_sleep: float | None, sleep_score: float | None, age: int) -> float:
    """Deep-sleep score; falls back to the device sleep score, then neutral."""
    if deep_sleep is None:
        return _clamp(sleep_score) if sleep_score is not None else NEUTRAL_SCORE
    target = deep_sleep_score_target(age)
    if deep_sleep >= target:
        return _clamp(70 + (deep_sleep - target) / (target * 0.5) * 30)
    if deep_sleep >= target * 0.6:
        return 40 + (deep_sleep - target * 0.6) / (target * 0.4) * 30
    return _clamp(deep_sleep / (target * 0.6) * 40)


def normalize_recovery(recovery: float | None) -> float:
    return _clamp(recovery) if recovery is not None else NEUTRAL_SCORE


def normalize_activity(steps: float | None, resting_hr: float | None) -> float:
    score = NEUTRAL_SCORE
    if steps is not None:
        if steps >= 10000:
            score = 85 + min(15.0, (steps - 10000) / 1000)
        elif steps >= 7500:
            score = 70 + (steps - 7500) / 2500 * 15
        elif steps >= 5000:
            score = 50 + (steps - 5000) / 2500 * 20
        else:
            score = steps / 5000 * 50
    if resting_hr is not None:
        if resting_hr < 60:
            score += 10
        elif resting_hr < 70:
            score += 5
        elif resting_hr > 80:
            score -= 10
    return _clamp(score)


def component_scores(sample: MetricSample, age: int) -> dict[str, float]:
    return {
        "hrv": normalize_hrv(sample.get("hrv"), age),
        "sleep": normalize_sleep(sample.get("deep_sleep_minutes"), sample.get("sleep_score"), age),
        "recovery": normalize_recovery(sample.get("recovery_score")),
        "activity": normalize_activity(sample.get("steps"), sample.get("resting_heart_rate")),
    }


# ---------------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------------

def compose_health_score(
    date: str,
    scores: dict[str, float],
    weights: ScoreWeights | None = None,
) -> HealthScore:
    """Weighted composite of the four component scores.

    Component scores are clamped to 0-100 and weights normalized to sum to 1,
    so the overall score is always an integer in 0-100.
    """
    missing = [name for name in COMPONENTS if name not in scores]
    if missing:
        raise ValueError(f"Missing component scores: {missing}")

    weights = (weights or DEFAULT_WEIGHTS).normalized()
    w = weights.as_dict()
    components = {name: ComponentScore(score=_clamp(scores[name]), weight=w[name]) for name in COMPONENTS}
    # Halves round up.
    overall = math.floor(sum(c.score * c.weight for c in components.values()) + 0.5)

    return HealthScore(
        date=date,
        overall_score=int(_clamp(overall)),
        hrv=components["hrv"],
        sleep=components["sleep"],
        recovery=components["recovery"],
        activity=components["activity"],
        reasoning=weights.reasoning,
    )
