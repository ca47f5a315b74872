"""Anomaly detection against personal baselines.

A reading is anomalous when its z-score against the user's own baseline
reaches the warning threshold; at the critical threshold it is critical.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from biosignal.core.config.settings import Settings
from biosignal.core.storage.models import AnomalyAlert, MetricSample, UserBaseline
from biosignal.domains.health.domain_logic.signal_models import BASELINE_METRICS


@dataclass(frozen=True)
class AnomalyThresholds:
    warning_z: float = 2.0
    critical_z: float = 3.0

    def __post_init__(self) -> None:
        if self.warning_z <= 0:
            raise ValueError(f"warning_z must be positive, got {self.warning_z}")
        if self.warning_z >= self.critical_z:
            raise ValueError(
                f"warning_z ({self.warning_z}) must be below critical_z ({self.critical_z})"
            )

    @classmethod
    def from_settings(cls, settings: Settings) -> AnomalyThresholds:
        return cls(warning_z=settings.anomaly_warning_z, critical_z=settings.anomaly_critical_z)


def compute_z(value: float, baseline: UserBaseline) -> float | None:
    """Signed z-score, or None when the baseline has no spread."""
    if baseline.std_deviation == 0:
        return None
    return (value - baseline.mean) / baseline.std_deviation


def classify_severity(z: float, thresholds: AnomalyThresholds | None = None) -> str | None:
    """Map |z| to 'critical', 'warning' or None."""
    thresholds = thresholds or AnomalyThresholds()
    magnitude = abs(z)
    if magnitude >= thresholds.critical_z:
        return "critical"
    if magnitude >= thresholds.warning_z:
        return "warning"
    return None


def detect_anomaly(
    metric_type: str,
    value: float | None,
    baseline: UserBaseline | None,
    now: datetime | None = None,
    thresholds: AnomalyThresholds | None = None,
) -> AnomalyAlert | None:
    if value is None or baseline is None:
        return None
    z = compute_z(value, baseline)
    if z is None:
        return None
    severity = classify_severity(z, thresholds)
    if severity is None:
        return None
    now = now or datetime.now(timezone.utc)
    return AnomalyAlert(
        metric_type=metric_type,
        detected_value=value,
        baseline_value=baseline.mean,
        deviation_amount=z,
        severity=severity,
        detected_at=now.isoformat(),
    )


def detect_for_sample(
    sample: MetricSample,
    baselines: dict[str, UserBaseline],
    now: datetime | None = None,
    thresholds: AnomalyThresholds | None = None,
) -> list[AnomalyAlert]:
    """Alerts for every baseline metric in ``sample`` that deviates enough."""
    alerts = []
    for metric_type, field_name in BASELINE_METRICS.items():
        alert = detect_anomaly(
            metric_type,
            sample.get(field_name),
            baselines.get(metric_type),
            now=now,
            thresholds=thresholds,
        )
        if alert is not None:
            alerts.append(alert)
    return alerts
