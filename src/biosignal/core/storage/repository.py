"""Health data repository: keyed upserts over the encrypted data bank.

The repository mediates between domain rows (samples, baselines, alerts,
records, scores) and SQLite, using FieldEncryptor for raw values and the
intake profile. Every write is keyed so repeating it is idempotent.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from biosignal.core.storage.database import HealthDatabase
from biosignal.core.storage.encryption import FieldEncryptor
from biosignal.core.storage.models import (
    AnomalyAlert,
    ComponentScore,
    HealthScore,
    IntakeProfile,
    MetricSample,
    PersonalRecord,
    UserBaseline,
)

logger = logging.getLogger(__name__)

_RECORD_SCOPES = ("all_time", "monthly")


class RepositoryError(Exception):
    """Raised when repository operations fail."""


class HealthRepository:
    """Keyed persistence for one or many users' health signal state.

    Usage::

        db = HealthDatabase(":memory:")
        db.initialize()
        repo = HealthRepository(db, FieldEncryptor(key="..."))

        repo.save_sample(sample)
        window = repo.get_samples("user-1", since="2026-01-01")
    """

    def __init__(self, database: HealthDatabase, encryptor: FieldEncryptor) -> None:
        self._db = database
        self._enc = encryptor

    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())

    @staticmethod
    def _now_iso() -> str:
        return datetime.now(timezone.utc).isoformat()

    # ------------------------------------------------------------------
    # Intake profiles
    # ------------------------------------------------------------------

    def save_intake_profile(self, user_id: str, profile: IntakeProfile) -> None:
        """Create or replace a user's intake profile."""
        conn = self._db.connection
        now = self._now_iso()
        conn.execute(
            """INSERT INTO intake_profiles (user_id, profile_enc, created_at, updated_at)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(user_id) DO UPDATE SET
                   profile_enc = excluded.profile_enc,
                   updated_at = excluded.updated_at""",
            (user_id, self._enc.encrypt(profile.to_dict()), now, now),
        )
        conn.commit()
        logger.info("Saved intake profile for user %s", user_id)

    def get_intake_profile(self, user_id: str) -> IntakeProfile | None:
        """Return the decrypted intake profile, or None if never supplied."""
        row = self._db.connection.execute(
            "SELECT profile_enc FROM intake_profiles WHERE user_id = ?", (user_id,)
        ).fetchone()
        if row is None:
            return None
        return IntakeProfile.from_dict(self._enc.decrypt(row["profile_enc"]))

    # ------------------------------------------------------------------
    # Metric samples
    # ------------------------------------------------------------------

    def save_sample(self, sample: MetricSample) -> str:
        """Upsert a daily sample keyed by (user, date, source).

        Returns:
            The row ID (stable across overwrites of the same key).
        """
        conn = self._db.connection
        conn.execute(
            """INSERT INTO metric_samples (id, user_id, sample_date, source, values_enc, created_at)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(user_id, sample_date, source) DO UPDATE SET
                   values_enc = excluded.values_enc,
                   created_at = excluded.created_at""",
            (
                self._new_id(),
                sample.user_id,
                sample.date,
                sample.source,
                self._enc.encrypt(sample.values),
                self._now_iso(),
            ),
        )
        conn.commit()
        row = conn.execute(
            "SELECT id FROM metric_samples WHERE user_id = ? AND sample_date = ? AND source = ?",
            (sample.user_id, sample.date, sample.source),
        ).fetchone()
        logger.debug("Saved sample %s for %s (%s)", row["id"], sample.date, sample.source)
        return row["id"]

    def get_samples(
        self,
        user_id: str,
        *,
        since: str | None = None,
        until: str | None = None,
    ) -> list[MetricSample]:
        """Return a user's samples in a date range (inclusive), oldest first."""
        conditions = ["user_id = ?"]
        params: list[Any] = [user_id]
        if since:
            conditions.append("sample_date >= ?")
            params.append(since)
        if until:
            conditions.append("sample_date <= ?")
            params.append(until)

        query = (
            "SELECT sample_date, source, values_enc FROM metric_samples WHERE "
            + " AND ".join(conditions)
            + " ORDER BY sample_date ASC, source ASC"
        )
        rows = self._db.connection.execute(query, params).fetchall()
        return [
            MetricSample(
                user_id=user_id,
                date=row["sample_date"],
                source=row["source"],
                values=self._enc.decrypt(row["values_enc"]) or {},
            )
            for row in rows
        ]

    def count_samples(self, user_id: str) -> int:
        row = self._db.connection.execute(
            "SELECT COUNT(*) FROM metric_samples WHERE user_id = ?", (user_id,)
        ).fetchone()
        return row[0]

    # ------------------------------------------------------------------
    # Baselines
    # ------------------------------------------------------------------

    def upsert_baseline(self, user_id: str, baseline: UserBaseline) -> None:
        """Overwrite the baseline for (user, metric_type) wholesale."""
        conn = self._db.connection
        conn.execute(
            """INSERT INTO user_baselines
                   (id, user_id, metric_type, mean_value, std_deviation,
                    sample_count, calculated_at, next_recalc_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(user_id, metric_type) DO UPDATE SET
                   mean_value = excluded.mean_value,
                   std_deviation = excluded.std_deviation,
                   sample_count = excluded.sample_count,
                   calculated_at = excluded.calculated_at,
                   next_recalc_at = excluded.next_recalc_at""",
            (
                self._new_id(),
                user_id,
                baseline.metric_type,
                baseline.mean,
                baseline.std_deviation,
                baseline.sample_count,
                baseline.calculated_at,
                baseline.next_recalc_at,
            ),
        )
        conn.commit()

    def get_baselines(self, user_id: str) -> dict[str, UserBaseline]:
        """Return the user's baselines keyed by metric type."""
        rows = self._db.connection.execute(
            """SELECT metric_type, mean_value, std_deviation, sample_count,
                      calculated_at, next_recalc_at
               FROM user_baselines WHERE user_id = ? ORDER BY metric_type""",
            (user_id,),
        ).fetchall()
        return {
            row["metric_type"]: UserBaseline(
                metric_type=row["metric_type"],
                mean=row["mean_value"],
                std_deviation=row["std_deviation"],
                sample_count=row["sample_count"],
                calculated_at=row["calculated_at"],
                next_recalc_at=row["next_recalc_at"],
            )
            for row in rows
        }

    # ------------------------------------------------------------------
    # Anomaly alerts
    # ------------------------------------------------------------------

    def save_alert(self, user_id: str, alert: AnomalyAlert) -> str:
        """Insert an alert and return its ID."""
        alert_id = alert.id or self._new_id()
        conn = self._db.connection
        conn.execute(
            """INSERT INTO anomaly_alerts
                   (id, user_id, metric_type, detected_value, baseline_value,
                    deviation_amount, severity, seen, detected_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                alert_id,
                user_id,
                alert.metric_type,
                alert.detected_value,
                alert.baseline_value,
                alert.deviation_amount,
                alert.severity,
                int(alert.seen),
                alert.detected_at,
            ),
        )
        conn.commit()
        return alert_id

    def get_alerts(
        self,
        user_id: str,
        *,
        unseen_only: bool = True,
        limit: int = 50,
    ) -> list[AnomalyAlert]:
        """Return alerts newest first."""
        query = "SELECT * FROM anomaly_alerts WHERE user_id = ?"
        if unseen_only:
            query += " AND seen = 0"
        query += " ORDER BY detected_at DESC, created_at DESC LIMIT ?"
        rows = self._db.connection.execute(query, (user_id, limit)).fetchall()
        return [
            AnomalyAlert(
                id=row["id"],
                metric_type=row["metric_type"],
                detected_value=row["detected_value"],
                baseline_value=row["baseline_value"],
                deviation_amount=row["deviation_amount"],
                severity=row["severity"],
                seen=bool(row["seen"]),
                detected_at=row["detected_at"],
            )
            for row in rows
        ]

    def mark_alert_seen(self, user_id: str, alert_id: str) -> bool:
        """Flag one alert as seen. Returns False if it does not exist."""
        conn = self._db.connection
        cursor = conn.execute(
            "UPDATE anomaly_alerts SET seen = 1 WHERE id = ? AND user_id = ?",
            (alert_id, user_id),
        )
        conn.commit()
        return cursor.rowcount > 0

    def mark_all_alerts_seen(self, user_id: str) -> int:
        """Flag every unseen alert as seen. Returns the number updated."""
        conn = self._db.connection
        cursor = conn.execute(
            "UPDATE anomaly_alerts SET seen = 1 WHERE user_id = ? AND seen = 0",
            (user_id,),
        )
        conn.commit()
        return cursor.rowcount

    # ------------------------------------------------------------------
    # Personal records
    # ------------------------------------------------------------------

    def get_record(
        self, user_id: str, metric_type: str, scope: str = "all_time"
    ) -> PersonalRecord | None:
        row = self._db.connection.execute(
            """SELECT metric_type, record_value, previous_record, achieved_date, record_scope
               FROM personal_records
               WHERE user_id = ? AND metric_type = ? AND record_scope = ?""",
            (user_id, metric_type, scope),
        ).fetchone()
        return self._row_to_record(row) if row is not None else None

    def get_records(self, user_id: str, scope: str | None = None) -> list[PersonalRecord]:
        """Return a user's records, most recently achieved first."""
        query = (
            "SELECT metric_type, record_value, previous_record, achieved_date, record_scope "
            "FROM personal_records WHERE user_id = ?"
        )
        params: list[Any] = [user_id]
        if scope:
            query += " AND record_scope = ?"
            params.append(scope)
        query += " ORDER BY achieved_date DESC, metric_type ASC"
        rows = self._db.connection.execute(query, params).fetchall()
        return [self._row_to_record(row) for row in rows]

    def compare_and_set_record(
        self,
        user_id: str,
        metric_type: str,
        value: float,
        achieved_date: str,
        *,
        higher_is_better: bool,
        scope: str = "all_time",
    ) -> PersonalRecord | None:
        """Write ``value`` as the record only if it strictly beats the stored one.

        The comparison happens inside a single conditional upsert, so two
        racing writers can never replace a better stored value with a worse
        one. ``previous_record`` receives the value that was replaced.

        Returns:
            The new record if this call won, otherwise None.
        """
        if scope not in _RECORD_SCOPES:
            raise RepositoryError(
                f"Invalid record scope: {scope!r}. Valid: {_RECORD_SCOPES}"
            )
        # Operator chosen from a fixed pair, never from input.
        beats = ">" if higher_is_better else "<"
        conn = self._db.connection
        cursor = conn.execute(
            f"""INSERT INTO personal_records
                    (id, user_id, metric_type, record_value, previous_record,
                     achieved_date, record_scope)
                VALUES (?, ?, ?, ?, NULL, ?, ?)
                ON CONFLICT(user_id, metric_type, record_scope) DO UPDATE SET
                    previous_record = personal_records.record_value,
                    record_value = excluded.record_value,
                    achieved_date = excluded.achieved_date
                WHERE excluded.record_value {beats} personal_records.record_value""",
            (self._new_id(), user_id, metric_type, value, achieved_date, scope),
        )
        conn.commit()
        if cursor.rowcount == 0:
            return None
        return self.get_record(user_id, metric_type, scope)

    # ------------------------------------------------------------------
    # Health scores
    # ------------------------------------------------------------------

    def upsert_health_score(self, user_id: str, score: HealthScore) -> None:
        """Create or replace the score for (user, date)."""
        conn = self._db.connection
        conn.execute(
            """INSERT INTO health_scores
                   (id, user_id, score_date, overall_score,
                    hrv_score, sleep_score, recovery_score, activity_score,
                    hrv_weight, sleep_weight, recovery_weight, activity_weight, reasoning)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(user_id, score_date) DO UPDATE SET
                   overall_score = excluded.overall_score,
                   hrv_score = excluded.hrv_score,
                   sleep_score = excluded.sleep_score,
                   recovery_score = excluded.recovery_score,
                   activity_score = excluded.activity_score,
                   hrv_weight = excluded.hrv_weight,
                   sleep_weight = excluded.sleep_weight,
                   recovery_weight = excluded.recovery_weight,
                   activity_weight = excluded.activity_weight,
                   reasoning = excluded.reasoning""",
            (
                self._new_id(),
                user_id,
                score.date,
                score.overall_score,
                score.hrv.score,
                score.sleep.score,
                score.recovery.score,
                score.activity.score,
                score.hrv.weight,
                score.sleep.weight,
                score.recovery.weight,
                score.activity.weight,
                score.reasoning,
            ),
        )
        conn.commit()

    def get_health_scores(
        self,
        user_id: str,
        *,
        since: str | None = None,
        limit: int = 30,
    ) -> list[HealthScore]:
        """Return daily scores newest first."""
        query = "SELECT * FROM health_scores WHERE user_id = ?"
        params: list[Any] = [user_id]
        if since:
            query += " AND score_date >= ?"
            params.append(since)
        query += " ORDER BY score_date DESC LIMIT ?"
        params.append(limit)
        rows = self._db.connection.execute(query, params).fetchall()
        return [
            HealthScore(
                date=row["score_date"],
                overall_score=row["overall_score"],
                hrv=ComponentScore(row["hrv_score"], row["hrv_weight"]),
                sleep=ComponentScore(row["sleep_score"], row["sleep_weight"]),
                recovery=ComponentScore(row["recovery_score"], row["recovery_weight"]),
                activity=ComponentScore(row["activity_score"], row["activity_weight"]),
                reasoning=row["reasoning"] or "",
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Key rotation
    # ------------------------------------------------------------------

    def rotate_encryption(self) -> int:
        """Re-encrypt every stored blob under the primary key.

        Returns:
            Number of rows rewritten.
        """
        conn = self._db.connection
        count = 0
        for row in conn.execute("SELECT user_id, profile_enc FROM intake_profiles").fetchall():
            conn.execute(
                "UPDATE intake_profiles SET profile_enc = ? WHERE user_id = ?",
                (self._enc.rotate(row["profile_enc"]), row["user_id"]),
            )
            count += 1
        for row in conn.execute("SELECT id, values_enc FROM metric_samples").fetchall():
            conn.execute(
                "UPDATE metric_samples SET values_enc = ? WHERE id = ?",
                (self._enc.rotate(row["values_enc"]), row["id"]),
            )
            count += 1
        conn.commit()
        logger.info("Re-encrypted %d rows under the primary key", count)
        return count

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_record(row: Any) -> PersonalRecord:
        return PersonalRecord(
            metric_type=row["metric_type"],
            record_value=row["record_value"],
            previous_record=row["previous_record"],
            achieved_date=row["achieved_date"],
            record_scope=row["record_scope"],
        )
