"""Application settings loaded from environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Biosignal engine configuration."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Server
    # Loopback by default: the MCP surface has no auth layer of its own.
    biosignal_host: str = "127.0.0.1"
    biosignal_port: int = 8001
    biosignal_log_level: str = "info"
    biosignal_allow_insecure_bind: bool = False

    # Storage
    db_path: str = "~/.biosignal/health.db"

    # Encryption (raw samples and intake profiles)
    encryption_key: str = ""
    # Comma-separated retired keys, still accepted for decryption.
    encryption_previous_keys: str = ""

    # Baseline estimator
    baseline_window_days: int = 14
    baseline_min_window_samples: int = 7
    baseline_min_metric_samples: int = 5
    baseline_recalc_days: int = 30

    # Anomaly detector (z-score bands)
    anomaly_warning_z: float = 2.0
    anomaly_critical_z: float = 3.0

    # Risk projection averaging window
    risk_window_days: int = 30

    def previous_keys(self) -> list[str]:
        """Return retired encryption keys as a list."""
        return [k.strip() for k in self.encryption_previous_keys.split(",") if k.strip()]


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
