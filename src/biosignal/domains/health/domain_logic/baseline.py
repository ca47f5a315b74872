"""Personal baseline estimation.

A baseline is the mean and population standard deviation of one metric over
a trailing window of the user's own samples. Baselines are recomputed
wholesale on a fixed interval; nothing is merged incrementally.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

from biosignal.core.config.settings import Settings
from biosignal.core.storage.models import MetricSample, UserBaseline
from biosignal.core.storage.repository import HealthRepository
from biosignal.domains.health.domain_logic.signal_models import BASELINE_METRICS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BaselinePolicy:
    """Window and minimum-count rules for baseline computation."""

    window_days: int = 14
    min_window_samples: int = 7
    min_metric_samples: int = 5
    recalc_days: int = 30

    @classmethod
    def from_settings(cls, settings: Settings) -> BaselinePolicy:
        return cls(
            window_days=settings.baseline_window_days,
            min_window_samples=settings.baseline_min_window_samples,
            min_metric_samples=settings.baseline_min_metric_samples,
            recalc_days=settings.baseline_recalc_days,
        )


def compute_stats(values: list[float]) -> tuple[float, float]:
    """Return (mean, population standard deviation). ``values`` must be non-empty."""
    n = len(values)
    mean = math.fsum(values) / n
    variance = math.fsum((v - mean) ** 2 for v in values) / n
    return mean, math.sqrt(variance)


def window_start(as_of: date, policy: BaselinePolicy) -> date:
    return as_of - timedelta(days=policy.window_days)


def compute_baselines(
    samples: list[MetricSample],
    now: datetime,
    policy: BaselinePolicy | None = None,
) -> list[UserBaseline]:
    """Compute baselines from samples already restricted to the window.

    Returns an empty list when the window is too thin to trust. Metric types
    with fewer than ``min_metric_samples`` non-null values are left out.
    """
    policy = policy or BaselinePolicy()
    if len(samples) < policy.min_window_samples:
        logger.debug(
            "Baseline window holds %d samples (< %d); skipping",
            len(samples),
            policy.min_window_samples,
        )
        return []

    calculated_at = now.isoformat()
    next_recalc_at = (now + timedelta(days=policy.recalc_days)).isoformat()

    baselines = []
    for metric_type, field_name in BASELINE_METRICS.items():
        values = [v for v in (s.get(field_name) for s in samples) if v is not None]
        if len(values) < policy.min_metric_samples:
            continue
        mean, std = compute_stats(values)
        baselines.append(
            UserBaseline(
                metric_type=metric_type,
                mean=mean,
                std_deviation=std,
                sample_count=len(values),
                calculated_at=calculated_at,
                next_recalc_at=next_recalc_at,
            )
        )
    return baselines


def _parse_timestamp(value: str) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_recalculation_due(baselines: dict[str, UserBaseline], now: datetime) -> bool:
    """True when nothing is stored yet or any stored baseline is past its recalc time.

    Metric types without a row (too few values at the last recalculation) do
    not make a recalculation due on their own.
    """
    if not baselines:
        return True
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    for baseline in baselines.values():
        due = _parse_timestamp(baseline.next_recalc_at)
        if due is None or due <= now:
            return True
    return False


class BaselineEstimator:
    """Reads the trailing window from the repository and upserts baselines."""

    def __init__(self, repository: HealthRepository, policy: BaselinePolicy | None = None) -> None:
        self._repo = repository
        self._policy = policy or BaselinePolicy()

    def recalculate(
        self,
        user_id: str,
        as_of: date | None = None,
        now: datetime | None = None,
    ) -> list[UserBaseline]:
        """Recompute and persist every baseline the window supports.

        Returns the baselines written (empty when the window is too thin).
        """
        now = now or datetime.now(timezone.utc)
        as_of = as_of or now.date()
        samples = self._repo.get_samples(
            user_id,
            since=window_start(as_of, self._policy).isoformat(),
            until=as_of.isoformat(),
        )
        baselines = compute_baselines(samples, now, self._policy)
        for baseline in baselines:
            self._repo.upsert_baseline(user_id, baseline)
        if baselines:
            logger.info(
                "Recalculated %d baselines for %s from %d samples",
                len(baselines),
                user_id,
                len(samples),
            )
        return baselines
