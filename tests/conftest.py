"""Shared test fixtures for biosignal tests."""

from __future__ import annotations

import sys
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

import pytest

# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("ENCRYPTION_KEY", "")
    monkeypatch.setenv("ENCRYPTION_PREVIOUS_KEYS", "")
    monkeypatch.setenv("DB_PATH", str(tmp_path / "health.db"))
    # Keep a developer's .env out of the settings.
    monkeypatch.chdir(tmp_path)

# Allow running tests without `pip install -e .` by making `src/` importable.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_DIR = _PROJECT_ROOT / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from biosignal.core.config.settings import Settings  # noqa: E402
from biosignal.core.storage.models import IntakeProfile, MetricSample  # noqa: E402

# Fixed clock for deterministic windows.
NOW = datetime(2026, 3, 15, 8, 0, tzinfo=timezone.utc)
TODAY = NOW.date()


def make_sample(
    day: date | str,
    user_id: str = "user-1",
    source: str = "oura",
    **values: float,
) -> MetricSample:
    """Create a sample; keyword arguments become metric values."""
    return MetricSample(
        user_id=user_id,
        date=day if isinstance(day, str) else day.isoformat(),
        source=source,
        values={k: float(v) for k, v in values.items()},
    )


def daily_series(
    days: int,
    end: date = TODAY,
    user_id: str = "user-1",
    **values: float,
) -> list[MetricSample]:
    """``days`` consecutive daily samples ending on ``end`` with identical values."""
    return [
        make_sample(end - timedelta(days=offset), user_id=user_id, **values)
        for offset in range(days - 1, -1, -1)
    ]


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def intake() -> IntakeProfile:
    return IntakeProfile(age=45, sex="female")


# ---------------------------------------------------------------------------
# In-memory storage fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def health_db():
    """Create an in-memory HealthDatabase for testing."""
    from biosignal.core.storage.database import HealthDatabase

    db = HealthDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def field_encryptor():
    """Create a FieldEncryptor with a test key."""
    from cryptography.fernet import Fernet

    from biosignal.core.storage.encryption import FieldEncryptor

    return FieldEncryptor(Fernet.generate_key().decode())


@pytest.fixture
def health_repository(health_db, field_encryptor):
    """Create a HealthRepository backed by in-memory SQLite."""
    from biosignal.core.storage.repository import HealthRepository

    return HealthRepository(health_db, field_encryptor)


@pytest.fixture
def signal_engine(health_repository, settings):
    """Create a HealthSignalEngine over the in-memory repository."""
    from biosignal.domains.health.domain_logic.engine import HealthSignalEngine

    return HealthSignalEngine(health_repository, settings)
