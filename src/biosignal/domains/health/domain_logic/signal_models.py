"""Health signal domain constants and derived result types."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from biosignal.core.storage.models import IntakeProfile


class MissingIntakeDataError(Exception):
    """Raised when an age-adjusted computation is requested without an intake profile."""


# ---------------------------------------------------------------------------
# Baseline metric types -> sample field
# ---------------------------------------------------------------------------

BASELINE_METRICS = {
    "hrv": "hrv",
    "deep_sleep": "deep_sleep_minutes",
    "resting_hr": "resting_heart_rate",
    "steps": "steps",
    "recovery": "recovery_score",
}

# ---------------------------------------------------------------------------
# Personal record metric types: (sample field, higher_is_better)
# ---------------------------------------------------------------------------

RECORD_METRICS = {
    "highest_hrv": ("hrv", True),
    "best_deep_sleep": ("deep_sleep_minutes", True),
    "best_sleep_efficiency": ("sleep_efficiency", True),
    "best_recovery": ("recovery_score", True),
    "highest_steps": ("steps", True),
    "lowest_resting_hr": ("resting_heart_rate", False),
}

# ---------------------------------------------------------------------------
# Classification tiers (worst -> best)
# ---------------------------------------------------------------------------

HRV_TIERS = ("low", "moderate", "favorable")
DEEP_SLEEP_TIERS = ("inadequate", "borderline", "adequate")

RISK_LEVELS = ("low", "moderate", "elevated", "high", "critical")

# Bundle keys, in output order.
CONDITION_KEYS = (
    "dementia",
    "cardiovascular",
    "heartFailure",
    "cognitiveDecline",
    "metabolic",
)


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MetricClassification:
    """Tier and relative standing of one averaged metric."""

    value: float
    classification: str
    percentile: int
    age_adjusted: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "value": round(self.value, 2),
            "classification": self.classification,
            "percentile": self.percentile,
            "ageAdjusted": self.age_adjusted,
        }


@dataclass(frozen=True)
class PhysiologicalClassification:
    """HRV and deep-sleep tiers for a data window."""

    hrv: MetricClassification
    deep_sleep: MetricClassification

    def to_dict(self) -> dict[str, Any]:
        return {"hrv": self.hrv.to_dict(), "deepSleep": self.deep_sleep.to_dict()}


@dataclass
class RiskTrajectory:
    """Current and projected risk (0-100) for one condition."""

    current: float
    six_months: float
    one_year: float
    five_years: float
    ten_years: float
    risk_level: str
    trend: str
    primary_drivers: list[str] = field(default_factory=list)

    def horizons(self) -> list[float]:
        """Values in horizon order, current first."""
        return [self.current, self.six_months, self.one_year, self.five_years, self.ten_years]

    def to_dict(self) -> dict[str, Any]:
        return {
            "current": round(self.current, 2),
            "sixMonths": round(self.six_months, 2),
            "oneYear": round(self.one_year, 2),
            "fiveYears": round(self.five_years, 2),
            "tenYears": round(self.ten_years, 2),
            "riskLevel": self.risk_level,
            "primaryDrivers": list(self.primary_drivers),
            "trend": self.trend,
        }


@dataclass(frozen=True)
class RiskProjectionInput:
    """Everything the risk model reads: window averages, their tiers, and intake."""

    avg_hrv: float
    avg_deep_sleep: float
    hrv_classification: str
    deep_sleep_classification: str
    intake: IntakeProfile | None = None

    @classmethod
    def from_classification(
        cls, classification: PhysiologicalClassification, intake: IntakeProfile | None
    ) -> RiskProjectionInput:
        return cls(
            avg_hrv=classification.hrv.value,
            avg_deep_sleep=classification.deep_sleep.value,
            hrv_classification=classification.hrv.classification,
            deep_sleep_classification=classification.deep_sleep.classification,
            intake=intake,
        )

    def value_of(self, metric: str) -> float:
        if metric == "hrv":
            return self.avg_hrv
        if metric == "deep_sleep":
            return self.avg_deep_sleep
        raise ValueError(f"Unknown risk input metric {metric!r}")

    def classification_of(self, metric: str) -> str:
        if metric == "hrv":
            return self.hrv_classification
        if metric == "deep_sleep":
            return self.deep_sleep_classification
        raise ValueError(f"Unknown risk input metric {metric!r}")
