"""Health signal engine: wires the derivation components to the repository.

Usage::

    engine = HealthSignalEngine(repo, settings)
    engine.save_intake_profile("user-1", IntakeProfile(age=45, sex="female"))
    result = engine.ingest_sample(MetricSample.from_dict("user-1", {...}))
    analysis = engine.project_risk("user-1")
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any

from biosignal.core.config.settings import Settings, get_settings
from biosignal.core.storage.database import DatabaseError
from biosignal.core.storage.models import (
    AnomalyAlert,
    HealthScore,
    IntakeProfile,
    MetricSample,
    PersonalRecord,
    UserBaseline,
)
from biosignal.core.storage.repository import HealthRepository, RepositoryError
from biosignal.domains.health.domain_logic import classification as classifier
from biosignal.domains.health.domain_logic.anomaly import AnomalyThresholds, detect_for_sample
from biosignal.domains.health.domain_logic.baseline import (
    BaselineEstimator,
    BaselinePolicy,
    is_recalculation_due,
)
from biosignal.domains.health.domain_logic.health_score import (
    DEFAULT_WEIGHTS,
    ScoreWeights,
    WeightAdvisor,
    component_scores,
)
from biosignal.domains.health.domain_logic.health_score import (
    compose_health_score as compose_score,
)
from biosignal.domains.health.domain_logic.narrative import (
    NarrativeRequest,
    build_narrative_request,
)
from biosignal.domains.health.domain_logic.records import PersonalRecordTracker
from biosignal.domains.health.domain_logic.risk_conditions import (
    ConditionTable,
    default_condition_table,
)
from biosignal.domains.health.domain_logic.risk_trajectory import (
    generate_all_risk_projections,
    worst_trajectories,
)
from biosignal.domains.health.domain_logic.signal_models import (
    MissingIntakeDataError,
    PhysiologicalClassification,
    RiskProjectionInput,
    RiskTrajectory,
)

logger = logging.getLogger(__name__)

SCORE_LOOKBACK_DAYS = 30


@dataclass
class IngestResult:
    sample_id: str
    baselines_recalculated: list[UserBaseline] = field(default_factory=list)
    alerts: list[AnomalyAlert] = field(default_factory=list)
    new_records: list[PersonalRecord] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "sample_id": self.sample_id,
            "baselines_recalculated": [b.metric_type for b in self.baselines_recalculated],
            "alerts": [a.to_dict() for a in self.alerts],
            "new_records": [r.to_dict() for r in self.new_records],
        }


@dataclass
class WindowAverages:
    avg_hrv: float
    avg_deep_sleep: float
    sample_count: int
    since: str
    until: str


@dataclass
class RiskAnalysis:
    """Classification and trajectories for one data window."""

    window: WindowAverages
    classification: PhysiologicalClassification
    trajectories: dict[str, RiskTrajectory]
    highest_risks: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "window": {
                "since": self.window.since,
                "until": self.window.until,
                "sample_count": self.window.sample_count,
            },
            "classification": self.classification.to_dict(),
            "trajectories": {k: t.to_dict() for k, t in self.trajectories.items()},
            "highest_risks": list(self.highest_risks),
        }


def _mean(values: list[float]) -> float | None:
    return sum(values) / len(values) if values else None


class HealthSignalEngine:
    """Orchestrates ingestion and derivation for any number of users.

    Holds no per-user state; every call reads what it needs from the
    repository.
    """

    def __init__(
        self,
        repository: HealthRepository,
        settings: Settings | None = None,
        *,
        weight_advisor: WeightAdvisor | None = None,
        condition_table: ConditionTable | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._repo = repository
        self._settings = settings
        self._policy = BaselinePolicy.from_settings(settings)
        self._thresholds = AnomalyThresholds.from_settings(settings)
        self._baselines = BaselineEstimator(repository, self._policy)
        self._records = PersonalRecordTracker(repository)
        self._weight_advisor = weight_advisor
        self._conditions = condition_table or default_condition_table()

    @property
    def repository(self) -> HealthRepository:
        return self._repo

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    def save_intake_profile(self, user_id: str, profile: IntakeProfile) -> None:
        self._repo.save_intake_profile(user_id, profile)

    def _require_intake(self, user_id: str) -> IntakeProfile:
        intake = self._repo.get_intake_profile(user_id)
        if intake is None:
            raise MissingIntakeDataError(f"No intake profile on file for user {user_id!r}")
        return intake

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def ingest_sample(self, sample: MetricSample, now: datetime | None = None) -> IngestResult:
        """Store a day's sample and run every derivation it triggers.

        Baselines are refreshed first (when due) so anomaly detection sees
        them. The refresh window ends the day before the sample, so a reading
        is never judged against a baseline that contains it. A failed
        baseline refresh is logged and detection proceeds against whatever
        baselines are stored.
        """
        now = now or datetime.now(timezone.utc)
        result = IngestResult(sample_id=self._repo.save_sample(sample))

        baselines = self._repo.get_baselines(sample.user_id)
        if is_recalculation_due(baselines, now):
            window_end = date.fromisoformat(sample.date) - timedelta(days=1)
            try:
                result.baselines_recalculated = self._baselines.recalculate(
                    sample.user_id, as_of=window_end, now=now
                )
            except (sqlite3.Error, DatabaseError, RepositoryError):
                logger.exception("Baseline recalculation failed for %s; will retry", sample.user_id)
            else:
                if result.baselines_recalculated:
                    baselines = self._repo.get_baselines(sample.user_id)

        for alert in detect_for_sample(sample, baselines, now=now, thresholds=self._thresholds):
            alert.id = self._repo.save_alert(sample.user_id, alert)
            result.alerts.append(alert)
            logger.info(
                "%s anomaly for %s: %s=%.1f (z=%.2f)",
                alert.severity.capitalize(),
                sample.user_id,
                alert.metric_type,
                alert.detected_value,
                alert.deviation_amount,
            )

        result.new_records = self._records.check_and_update(sample)
        return result

    def recalculate_baselines(
        self,
        user_id: str,
        as_of: date | None = None,
        now: datetime | None = None,
    ) -> list[UserBaseline]:
        return self._baselines.recalculate(user_id, as_of=as_of, now=now)

    # ------------------------------------------------------------------
    # Classification and risk
    # ------------------------------------------------------------------

    def window_averages(
        self,
        user_id: str,
        window_days: int | None = None,
        as_of: date | None = None,
    ) -> WindowAverages | None:
        """Average HRV and deep sleep over the trailing window, or None if either is absent."""
        window_days = window_days or self._settings.risk_window_days
        as_of = as_of or datetime.now(timezone.utc).date()
        since = (as_of - timedelta(days=window_days)).isoformat()
        until = as_of.isoformat()
        samples = self._repo.get_samples(user_id, since=since, until=until)

        avg_hrv = _mean([v for v in (s.get("hrv") for s in samples) if v is not None])
        avg_deep = _mean([v for v in (s.get("deep_sleep_minutes") for s in samples) if v is not None])
        if avg_hrv is None or avg_deep is None:
            logger.info(
                "Insufficient data for %s between %s and %s (%d samples)",
                user_id,
                since,
                until,
                len(samples),
            )
            return None
        return WindowAverages(avg_hrv, avg_deep, len(samples), since, until)

    def classify(
        self,
        user_id: str,
        window_days: int | None = None,
        as_of: date | None = None,
    ) -> PhysiologicalClassification | None:
        intake = self._require_intake(user_id)
        window = self.window_averages(user_id, window_days, as_of)
        if window is None:
            return None
        return classifier.classify(window.avg_hrv, window.avg_deep_sleep, intake)

    def project_risk(
        self,
        user_id: str,
        window_days: int | None = None,
        as_of: date | None = None,
    ) -> RiskAnalysis | None:
        """Classify the window and project all condition trajectories."""
        intake = self._require_intake(user_id)
        window = self.window_averages(user_id, window_days, as_of)
        if window is None:
            return None
        classification = classifier.classify(window.avg_hrv, window.avg_deep_sleep, intake)
        trajectories = generate_all_risk_projections(
            RiskProjectionInput.from_classification(classification, intake),
            self._conditions,
        )
        return RiskAnalysis(
            window=window,
            classification=classification,
            trajectories=trajectories,
            highest_risks=worst_trajectories(trajectories, table=self._conditions),
        )

    def narrative_request(
        self,
        user_id: str,
        window_days: int | None = None,
        as_of: date | None = None,
        reference_template: str | None = None,
    ) -> NarrativeRequest | None:
        analysis = self.project_risk(user_id, window_days, as_of)
        if analysis is None:
            return None
        return build_narrative_request(
            analysis.classification,
            self._require_intake(user_id),
            analysis.trajectories,
            reference_template=reference_template,
        )

    # ------------------------------------------------------------------
    # Health score
    # ------------------------------------------------------------------

    def compose_health_score(
        self,
        user_id: str,
        score_date: date,
        weights: ScoreWeights | None = None,
    ) -> HealthScore | None:
        """Score ``score_date`` from that day's sample (or the latest before it) and persist it."""
        intake = self._require_intake(user_id)
        samples = self._repo.get_samples(
            user_id,
            since=(score_date - timedelta(days=SCORE_LOOKBACK_DAYS)).isoformat(),
            until=score_date.isoformat(),
        )
        if not samples:
            logger.info("No samples for %s within %d days of %s", user_id, SCORE_LOOKBACK_DAYS, score_date)
            return None

        day = score_date.isoformat()
        sample = next((s for s in reversed(samples) if s.date == day), samples[-1])

        if weights is None:
            if self._weight_advisor is not None:
                weights = self._weight_advisor.weights_for(samples, intake)
            else:
                weights = DEFAULT_WEIGHTS

        score = compose_score(day, component_scores(sample, intake.age), weights)
        self._repo.upsert_health_score(user_id, score)
        logger.info("Health score for %s on %s: %d", user_id, day, score.overall_score)
        return score
