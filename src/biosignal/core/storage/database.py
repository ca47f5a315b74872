"""SQLite database management for the biosignal data bank.

Handles connection lifecycle, schema creation, and migrations.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)

# Current schema version
SCHEMA_VERSION = 2

# ---------------------------------------------------------------------------
# Schema DDL
# ---------------------------------------------------------------------------

_SCHEMA_V1 = """
-- One row per user; the profile itself is an encrypted JSON blob
CREATE TABLE IF NOT EXISTS intake_profiles (
    user_id     TEXT PRIMARY KEY,
    profile_enc TEXT NOT NULL,
    created_at  TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at  TEXT NOT NULL DEFAULT (datetime('now'))
);

-- One row per (user, day, source); later uploads overwrite
CREATE TABLE IF NOT EXISTS metric_samples (
    id          TEXT PRIMARY KEY,
    user_id     TEXT NOT NULL,
    sample_date TEXT NOT NULL,
    source      TEXT NOT NULL,
    values_enc  TEXT NOT NULL,
    created_at  TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE(user_id, sample_date, source)
);

CREATE TABLE IF NOT EXISTS user_baselines (
    id             TEXT PRIMARY KEY,
    user_id        TEXT NOT NULL,
    metric_type    TEXT NOT NULL,
    mean_value     REAL NOT NULL,
    std_deviation  REAL NOT NULL,
    sample_count   INTEGER NOT NULL DEFAULT 0,
    calculated_at  TEXT NOT NULL,
    next_recalc_at TEXT NOT NULL,
    UNIQUE(user_id, metric_type)
);

CREATE TABLE IF NOT EXISTS anomaly_alerts (
    id               TEXT PRIMARY KEY,
    user_id          TEXT NOT NULL,
    metric_type      TEXT NOT NULL,
    detected_value   REAL NOT NULL,
    baseline_value   REAL NOT NULL,
    deviation_amount REAL NOT NULL,
    severity         TEXT NOT NULL CHECK (severity IN ('warning', 'critical')),
    seen             INTEGER NOT NULL DEFAULT 0,
    detected_at      TEXT NOT NULL,
    created_at       TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS personal_records (
    id              TEXT PRIMARY KEY,
    user_id         TEXT NOT NULL,
    metric_type     TEXT NOT NULL,
    record_value    REAL NOT NULL,
    previous_record REAL,
    achieved_date   TEXT NOT NULL,
    record_scope    TEXT NOT NULL DEFAULT 'all_time'
                    CHECK (record_scope IN ('all_time', 'monthly')),
    created_at      TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE(user_id, metric_type, record_scope)
);

CREATE TABLE IF NOT EXISTS schema_version (
    version    INTEGER NOT NULL,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_samples_user_date   ON metric_samples(user_id, sample_date);
CREATE INDEX IF NOT EXISTS idx_baselines_user      ON user_baselines(user_id, metric_type);
CREATE INDEX IF NOT EXISTS idx_alerts_user_unseen  ON anomaly_alerts(user_id, seen, detected_at);
CREATE INDEX IF NOT EXISTS idx_records_user        ON personal_records(user_id, metric_type);
"""

# ---------------------------------------------------------------------------
# V2: Daily composite health scores
# ---------------------------------------------------------------------------

_SCHEMA_V2 = """
CREATE TABLE IF NOT EXISTS health_scores (
    id              TEXT PRIMARY KEY,
    user_id         TEXT NOT NULL,
    score_date      TEXT NOT NULL,
    overall_score   INTEGER NOT NULL CHECK (overall_score >= 0 AND overall_score <= 100),
    hrv_score       REAL,
    sleep_score     REAL,
    recovery_score  REAL,
    activity_score  REAL,
    hrv_weight      REAL NOT NULL DEFAULT 0.25,
    sleep_weight    REAL NOT NULL DEFAULT 0.25,
    recovery_weight REAL NOT NULL DEFAULT 0.25,
    activity_weight REAL NOT NULL DEFAULT 0.25,
    reasoning       TEXT,
    created_at      TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE(user_id, score_date)
);

CREATE INDEX IF NOT EXISTS idx_scores_user_date ON health_scores(user_id, score_date);
"""


class DatabaseError(Exception):
    """Raised when database operations fail."""


class HealthDatabase:
    """SQLite database manager for the biosignal data bank.

    Supports both file-based and in-memory (`:memory:`) databases.
    In-memory mode is used for testing.

    Usage::

        db = HealthDatabase(":memory:")
        db.initialize()
        conn = db.connection
        # ... use connection ...
        db.close()
    """

    def __init__(self, db_path: str = ":memory:") -> None:
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None

    @property
    def connection(self) -> sqlite3.Connection:
        """Get the active database connection.

        Raises:
            DatabaseError: If the database has not been initialized.
        """
        if self._conn is None:
            raise DatabaseError("Database not initialized. Call initialize() first.")
        return self._conn

    def initialize(self) -> None:
        """Create the database connection and ensure schema exists.

        For file-based databases, creates parent directories if needed.
        Idempotent: safe to call multiple times.
        """
        if self._conn is not None:
            return

        if self._db_path != ":memory:":
            db_file = Path(self._db_path).expanduser()
            db_file.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(db_file))
        else:
            self._conn = sqlite3.connect(":memory:")

        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")

        self._ensure_schema()
        logger.info("Health database initialized: %s", self._db_path)

    def _ensure_schema(self) -> None:
        """Create tables if they don't exist and apply migrations."""
        conn = self.connection
        conn.executescript(_SCHEMA_V1)

        cursor = conn.execute("SELECT MAX(version) FROM schema_version")
        row = cursor.fetchone()
        current_version = row[0] if row[0] is not None else 0

        if current_version < 2:
            conn.executescript(_SCHEMA_V2)
            logger.info("Applied schema migration V2: health_scores table")

        if current_version < SCHEMA_VERSION:
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
            conn.commit()
            logger.info(
                "Schema updated from version %d to %d", current_version, SCHEMA_VERSION
            )

    def get_schema_version(self) -> int:
        """Return the current schema version."""
        cursor = self.connection.execute("SELECT MAX(version) FROM schema_version")
        row = cursor.fetchone()
        return row[0] if row[0] is not None else 0

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.info("Health database closed")

    def __enter__(self) -> HealthDatabase:
        self.initialize()
        return self

    def __exit__(self, *args) -> None:
        self.close()
