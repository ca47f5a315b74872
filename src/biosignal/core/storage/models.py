"""Data models for the health persistence layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# Sample fields accepted from the ingestion layer (all optional numerics).
SAMPLE_FIELDS = (
    "hrv",
    "resting_heart_rate",
    "deep_sleep_minutes",
    "sleep_efficiency",
    "recovery_score",
    "steps",
    "sleep_score",
)

VALID_SEXES = ("male", "female", "other")


@dataclass(frozen=True)
class MetricSample:
    """One user's metric values for one day from one source.

    Raw values are stored encrypted. A later write for the same
    (user_id, date, source) key replaces the earlier one.
    """

    user_id: str
    date: str  # ISO 8601 date
    source: str  # 'oura', 'whoop', 'fitbit', 'upload', ...
    values: dict[str, float] = field(default_factory=dict)

    def get(self, name: str) -> float | None:
        """Return a metric value, or None when absent."""
        value = self.values.get(name)
        return float(value) if value is not None else None

    @classmethod
    def from_dict(cls, user_id: str, data: dict[str, Any]) -> MetricSample:
        """Build a sample from an ingestion-layer record.

        Unknown keys are ignored; non-numeric values are dropped.

        Raises:
            ValueError: If ``date`` is missing.
        """
        date = data.get("date")
        if not date:
            raise ValueError("Sample requires a 'date' (ISO 8601)")
        values: dict[str, float] = {}
        for name in SAMPLE_FIELDS:
            raw = data.get(name)
            if raw is None:
                continue
            try:
                values[name] = float(raw)
            except (TypeError, ValueError):
                continue
        return cls(
            user_id=user_id,
            date=str(date)[:10],
            source=data.get("source") or "upload",
            values=values,
        )


@dataclass(frozen=True)
class IntakeProfile:
    """Onboarding health profile. Required for any age-adjusted output."""

    age: int
    sex: str  # 'male' | 'female' | 'other'
    has_heart_failure: bool = False
    has_diabetes: bool = False
    has_chronic_kidney_disease: bool = False

    def __post_init__(self) -> None:
        if isinstance(self.age, bool) or not isinstance(self.age, int) or self.age <= 0:
            raise ValueError(f"age must be a positive integer, got {self.age!r}")
        if self.sex not in VALID_SEXES:
            raise ValueError(f"sex must be one of: {' | '.join(VALID_SEXES)}")

    @property
    def conditions(self) -> list[str]:
        """Human-readable list of reported comorbidities."""
        conditions = []
        if self.has_heart_failure:
            conditions.append("heart failure")
        if self.has_diabetes:
            conditions.append("diabetes")
        if self.has_chronic_kidney_disease:
            conditions.append("chronic kidney disease")
        return conditions

    def to_dict(self) -> dict[str, Any]:
        return {
            "age": self.age,
            "sex": self.sex,
            "hasHeartFailure": self.has_heart_failure,
            "hasDiabetes": self.has_diabetes,
            "hasChronicKidneyDisease": self.has_chronic_kidney_disease,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IntakeProfile:
        """Parse an intake record with camelCase or snake_case keys."""

        def _flag(camel: str, snake: str) -> bool:
            return bool(data.get(camel, data.get(snake, False)))

        age = data.get("age")
        if isinstance(age, float) and age.is_integer():
            age = int(age)
        return cls(
            age=age,  # type: ignore[arg-type]
            sex=str(data.get("sex", "")).lower(),
            has_heart_failure=_flag("hasHeartFailure", "has_heart_failure"),
            has_diabetes=_flag("hasDiabetes", "has_diabetes"),
            has_chronic_kidney_disease=_flag(
                "hasChronicKidneyDisease", "has_chronic_kidney_disease"
            ),
        )


@dataclass
class UserBaseline:
    """Rolling personal baseline for one metric type."""

    metric_type: str
    mean: float
    std_deviation: float
    sample_count: int
    calculated_at: str = ""
    next_recalc_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric_type": self.metric_type,
            "mean": round(self.mean, 4),
            "std_deviation": round(self.std_deviation, 4),
            "sample_count": self.sample_count,
            "calculated_at": self.calculated_at,
            "next_recalc_at": self.next_recalc_at,
        }


@dataclass
class AnomalyAlert:
    """A sample that deviated from the personal baseline."""

    metric_type: str
    detected_value: float
    baseline_value: float
    deviation_amount: float  # signed z-score
    severity: str  # 'warning' | 'critical'
    detected_at: str
    seen: bool = False
    id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "metric_type": self.metric_type,
            "detected_value": self.detected_value,
            "baseline_value": round(self.baseline_value, 4),
            "deviation_amount": round(self.deviation_amount, 4),
            "severity": self.severity,
            "seen": self.seen,
            "detected_at": self.detected_at,
        }


@dataclass
class PersonalRecord:
    """Current best value for a metric within a scope."""

    metric_type: str
    record_value: float
    achieved_date: str
    previous_record: float | None = None
    record_scope: str = "all_time"  # 'all_time' | 'monthly'

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric_type": self.metric_type,
            "record_value": self.record_value,
            "previous_record": self.previous_record,
            "achieved_date": self.achieved_date,
            "record_scope": self.record_scope,
        }


@dataclass
class ComponentScore:
    """A single weighted component of the daily health score."""

    score: float
    weight: float


@dataclass
class HealthScore:
    """Composite daily health score with its weighted components."""

    date: str
    overall_score: int
    hrv: ComponentScore
    sleep: ComponentScore
    recovery: ComponentScore
    activity: ComponentScore
    reasoning: str = ""

    def components(self) -> dict[str, ComponentScore]:
        return {
            "hrv": self.hrv,
            "sleep": self.sleep,
            "recovery": self.recovery,
            "activity": self.activity,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date,
            "overall_score": self.overall_score,
            "components": {
                name: {"score": round(c.score), "weight": round(c.weight, 3)}
                for name, c in self.components().items()
            },
            "reasoning": self.reasoning,
        }
