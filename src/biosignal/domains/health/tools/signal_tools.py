"""MCP tools over the health signal engine.

Every tool returns a JSON string. Failures the caller can fix (bad input,
missing intake profile) come back as ``{"status": "error", ...}``; windows
without enough data come back as ``{"status": "insufficient_data", ...}``.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

from biosignal.core.storage.models import IntakeProfile, MetricSample
from biosignal.domains.health.domain_logic.classification import (
    describe_classification,
    hrv_reference_info,
)
from biosignal.domains.health.domain_logic.health_score import ScoreWeights
from biosignal.domains.health.domain_logic.signal_models import MissingIntakeDataError

if TYPE_CHECKING:
    from biosignal.domains.health.domain_logic.engine import HealthSignalEngine

logger = logging.getLogger(__name__)


def _error(message: str, **extra: Any) -> str:
    return json.dumps({"status": "error", "message": message, **extra})


def _parse_date(value: str) -> date:
    """ISO date, defaulting to today (UTC) when empty."""
    if not value:
        return datetime.now(timezone.utc).date()
    return date.fromisoformat(value[:10])


def register_signal_tools(mcp: FastMCP, engine: HealthSignalEngine) -> None:
    """Register the health signal tools on the MCP server."""
    repository = engine.repository

    @mcp.tool
    async def save_intake_profile(
        ctx: Context,
        user_id: str,
        age: int,
        sex: str,
        has_heart_failure: bool = False,
        has_diabetes: bool = False,
        has_chronic_kidney_disease: bool = False,
    ) -> str:
        """Save or replace the onboarding profile used for age-adjusted analysis.

        Args:
            user_id: Account identifier.
            age: Age in years (positive integer).
            sex: 'male', 'female' or 'other'.
            has_heart_failure: Diagnosed heart failure.
            has_diabetes: Diagnosed diabetes.
            has_chronic_kidney_disease: Diagnosed chronic kidney disease.
        """
        try:
            profile = IntakeProfile.from_dict({
                "age": age,
                "sex": sex,
                "has_heart_failure": has_heart_failure,
                "has_diabetes": has_diabetes,
                "has_chronic_kidney_disease": has_chronic_kidney_disease,
            })
        except ValueError as exc:
            return _error(str(exc))

        engine.save_intake_profile(user_id, profile)
        logger.info("Intake profile saved for %s", user_id)
        return json.dumps({"status": "saved", "user_id": user_id, "profile": profile.to_dict()})

    @mcp.tool
    async def record_daily_sample(
        ctx: Context,
        user_id: str,
        sample_date: str = "",
        source: str = "upload",
        hrv: float | None = None,
        resting_heart_rate: float | None = None,
        deep_sleep_minutes: float | None = None,
        sleep_efficiency: float | None = None,
        recovery_score: float | None = None,
        steps: float | None = None,
        sleep_score: float | None = None,
    ) -> str:
        """Store one day's wearable metrics and run baseline, anomaly and record checks.

        A second upload for the same date and source replaces the first.

        Args:
            user_id: Account identifier.
            sample_date: Date of the readings (ISO 8601). Defaults to today.
            source: Device or upload channel (e.g., 'oura', 'whoop', 'upload').
            hrv: Overnight HRV (RMSSD) in milliseconds.
            resting_heart_rate: Resting heart rate in BPM.
            deep_sleep_minutes: Minutes of deep (slow-wave) sleep.
            sleep_efficiency: Sleep efficiency percentage.
            recovery_score: Device recovery/readiness score (0-100).
            steps: Daily step count.
            sleep_score: Device sleep score (0-100).
        """
        start_time = time.monotonic()
        try:
            day = _parse_date(sample_date)
        except ValueError:
            return _error(f"Invalid sample_date: {sample_date!r}")

        sample = MetricSample.from_dict(user_id, {
            "date": day.isoformat(),
            "source": source,
            "hrv": hrv,
            "resting_heart_rate": resting_heart_rate,
            "deep_sleep_minutes": deep_sleep_minutes,
            "sleep_efficiency": sleep_efficiency,
            "recovery_score": recovery_score,
            "steps": steps,
            "sleep_score": sleep_score,
        })
        if not sample.values:
            return _error("No metric values provided")

        result = engine.ingest_sample(sample)
        elapsed_ms = (time.monotonic() - start_time) * 1000
        return json.dumps({
            "status": "saved",
            **result.to_dict(),
            "duration_ms": round(elapsed_ms, 1),
        })

    @mcp.tool
    async def recalculate_baselines(ctx: Context, user_id: str, as_of: str = "") -> str:
        """Recompute personal baselines from the trailing 14-day window.

        Args:
            user_id: Account identifier.
            as_of: Last day of the window (ISO 8601). Defaults to today.
        """
        try:
            as_of_date = _parse_date(as_of)
        except ValueError:
            return _error(f"Invalid as_of date: {as_of!r}")

        baselines = engine.recalculate_baselines(user_id, as_of=as_of_date)
        if not baselines:
            return json.dumps({
                "status": "insufficient_data",
                "message": "At least 7 samples in the last 14 days are needed to compute baselines.",
            })
        return json.dumps({"status": "ok", "baselines": [b.to_dict() for b in baselines]})

    @mcp.tool
    async def list_baselines(ctx: Context, user_id: str) -> str:
        """List the user's current personal baselines."""
        baselines = repository.get_baselines(user_id)
        return json.dumps({
            "status": "ok",
            "baselines": [b.to_dict() for b in baselines.values()],
        })

    @mcp.tool
    async def list_anomaly_alerts(
        ctx: Context,
        user_id: str,
        include_seen: bool = False,
        limit: int = 50,
    ) -> str:
        """List anomaly alerts, newest first.

        Args:
            user_id: Account identifier.
            include_seen: Also return alerts already marked seen.
            limit: Maximum number of alerts.
        """
        alerts = repository.get_alerts(user_id, unseen_only=not include_seen, limit=limit)
        return json.dumps({
            "status": "ok",
            "count": len(alerts),
            "alerts": [a.to_dict() for a in alerts],
        })

    @mcp.tool
    async def mark_alerts_seen(ctx: Context, user_id: str, alert_id: str = "") -> str:
        """Mark one alert (by ID) or all of the user's alerts as seen.

        Args:
            user_id: Account identifier.
            alert_id: Alert to mark. Empty marks every unseen alert.
        """
        if alert_id:
            if not repository.mark_alert_seen(user_id, alert_id):
                return json.dumps({
                    "status": "not_found",
                    "alert_id": alert_id,
                    "message": "No alert found with that ID.",
                })
            return json.dumps({"status": "ok", "marked": 1})
        return json.dumps({"status": "ok", "marked": repository.mark_all_alerts_seen(user_id)})

    @mcp.tool
    async def list_personal_records(ctx: Context, user_id: str) -> str:
        """List the user's all-time personal records."""
        records = repository.get_records(user_id, scope="all_time")
        return json.dumps({"status": "ok", "records": [r.to_dict() for r in records]})

    @mcp.tool
    async def physiological_classification(
        ctx: Context,
        user_id: str,
        window_days: int = 30,
        as_of: str = "",
    ) -> str:
        """Classify average HRV and deep sleep against age-adjusted targets.

        Args:
            user_id: Account identifier.
            window_days: Days of history to average (default: 30).
            as_of: Last day of the window (ISO 8601). Defaults to today.
        """
        try:
            as_of_date = _parse_date(as_of)
        except ValueError:
            return _error(f"Invalid as_of date: {as_of!r}")
        try:
            classification = engine.classify(user_id, window_days, as_of_date)
        except MissingIntakeDataError as exc:
            return _error(str(exc), missing="intake_profile")

        if classification is None:
            return json.dumps({
                "status": "insufficient_data",
                "message": f"Both HRV and deep sleep readings are needed in the last {window_days} days.",
            })

        intake = repository.get_intake_profile(user_id)
        return json.dumps({
            "status": "ok",
            "classification": classification.to_dict(),
            "descriptions": describe_classification(classification, intake),
            "hrv_reference": hrv_reference_info(intake),
        })

    @mcp.tool
    async def risk_trajectories(
        ctx: Context,
        user_id: str,
        window_days: int = 30,
        as_of: str = "",
    ) -> str:
        """Project current and future risk for five conditions.

        Covers dementia, cardiovascular disease, heart failure, cognitive
        decline and metabolic dysfunction at six months, one, five and ten
        years, with risk level, trend and the main drivers.

        Args:
            user_id: Account identifier.
            window_days: Days of history to average (default: 30).
            as_of: Last day of the window (ISO 8601). Defaults to today.
        """
        start_time = time.monotonic()
        try:
            as_of_date = _parse_date(as_of)
        except ValueError:
            return _error(f"Invalid as_of date: {as_of!r}")
        try:
            analysis = engine.project_risk(user_id, window_days, as_of_date)
        except MissingIntakeDataError as exc:
            return _error(str(exc), missing="intake_profile")

        if analysis is None:
            return json.dumps({
                "status": "insufficient_data",
                "message": f"Both HRV and deep sleep readings are needed in the last {window_days} days.",
            })

        elapsed_ms = (time.monotonic() - start_time) * 1000
        return json.dumps({
            "status": "ok",
            **analysis.to_dict(),
            "duration_ms": round(elapsed_ms, 1),
        })

    @mcp.tool
    async def compose_health_score(
        ctx: Context,
        user_id: str,
        score_date: str = "",
        hrv_weight: float | None = None,
        sleep_weight: float | None = None,
        recovery_weight: float | None = None,
        activity_weight: float | None = None,
        reasoning: str = "",
    ) -> str:
        """Compute and store the daily composite health score.

        Uses that day's sample, or the latest one in the preceding 30 days.
        Pass all four weights to override the defaults; they are normalized
        to sum to 1.

        Args:
            user_id: Account identifier.
            score_date: Day to score (ISO 8601). Defaults to today.
            hrv_weight: Weight of the HRV component.
            sleep_weight: Weight of the sleep component.
            recovery_weight: Weight of the recovery component.
            activity_weight: Weight of the activity component.
            reasoning: Explanation stored with custom weights.
        """
        given = [hrv_weight, sleep_weight, recovery_weight, activity_weight]
        weights = None
        if any(w is not None for w in given):
            if any(w is None for w in given):
                return _error("Provide all four weights or none")
            weights = ScoreWeights(
                hrv=hrv_weight,
                sleep=sleep_weight,
                recovery=recovery_weight,
                activity=activity_weight,
                reasoning=reasoning or "Caller-supplied weights",
            )

        try:
            day = _parse_date(score_date)
            score = engine.compose_health_score(user_id, day, weights)
        except MissingIntakeDataError as exc:
            return _error(str(exc), missing="intake_profile")
        except ValueError as exc:
            return _error(str(exc))

        if score is None:
            return json.dumps({
                "status": "insufficient_data",
                "message": "No samples found in the 30 days before this date.",
            })
        return json.dumps({"status": "ok", "score": score.to_dict()})
