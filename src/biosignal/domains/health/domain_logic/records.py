"""Personal record tracking."""

from __future__ import annotations

import logging

from biosignal.core.storage.models import MetricSample, PersonalRecord
from biosignal.core.storage.repository import HealthRepository
from biosignal.domains.health.domain_logic.signal_models import RECORD_METRICS

logger = logging.getLogger(__name__)


def is_new_record(value: float, existing: float | None, higher_is_better: bool) -> bool:
    """Strictly better than ``existing`` in the metric's direction; any value beats no record."""
    if existing is None:
        return True
    return value > existing if higher_is_better else value < existing


class PersonalRecordTracker:
    """Updates all-time bests from incoming samples.

    The comparison is delegated to the repository's conditional upsert so the
    stored best can only improve, even with concurrent writers.
    """

    def __init__(self, repository: HealthRepository) -> None:
        self._repo = repository

    def check_and_update(self, sample: MetricSample) -> list[PersonalRecord]:
        """Return the records this sample set."""
        new_records = []
        for metric_type, (field_name, higher_is_better) in RECORD_METRICS.items():
            value = sample.get(field_name)
            if value is None:
                continue
            existing = self._repo.get_record(sample.user_id, metric_type)
            if not is_new_record(value, existing.record_value if existing else None, higher_is_better):
                continue
            # A concurrent writer may have stored a better value since the read.
            record = self._repo.compare_and_set_record(
                sample.user_id,
                metric_type,
                value,
                sample.date,
                higher_is_better=higher_is_better,
            )
            if record is not None:
                new_records.append(record)
        if new_records:
            logger.info(
                "New personal records for %s on %s: %s",
                sample.user_id,
                sample.date,
                ", ".join(r.metric_type for r in new_records),
            )
        return new_records
