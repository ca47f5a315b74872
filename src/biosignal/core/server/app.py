"""Biosignal MCP server: application factory.

This module provides:
- create_app() for testability (integration tests create fresh server instances)
- Module-level `mcp` variable for FastMCP discovery
"""

from __future__ import annotations

import logging

from fastmcp import FastMCP

from biosignal.core.config.settings import get_settings
from biosignal.core.storage.database import HealthDatabase
from biosignal.core.storage.encryption import EncryptionError, FieldEncryptor
from biosignal.core.storage.repository import HealthRepository
from biosignal.domains.health.domain_logic.engine import HealthSignalEngine
from biosignal.domains.health.domain_logic.risk_conditions import default_condition_table
from biosignal.domains.health.tools.signal_tools import register_signal_tools

logger = logging.getLogger(__name__)

SERVER_NAME = "Biosignal Health Engine"
SERVER_VERSION = "0.1.0"


def create_app(*, repository_override: HealthRepository | None = None) -> FastMCP:
    """Create and configure the biosignal MCP server.

    This is the main application factory. It:
    1. Creates the FastMCP server instance
    2. Loads the risk condition table
    3. Initializes the encrypted storage layer
    4. Registers the health check and, when storage is available, the signal tools
    """
    settings = get_settings()

    server = FastMCP(
        SERVER_NAME,
        instructions=(
            "Derives personal health signals from daily wearable metrics: "
            "baselines, anomaly alerts, personal records, age-adjusted HRV and "
            "deep-sleep classification, multi-horizon risk trajectories and a "
            "daily composite health score."
        ),
    )

    conditions = default_condition_table()

    # --- Initialize encrypted storage ---
    repository: HealthRepository | None = None
    if repository_override is not None:
        repository = repository_override
    elif settings.encryption_key:
        try:
            encryptor = FieldEncryptor(settings.encryption_key, settings.previous_keys())
            health_db = HealthDatabase(settings.db_path)
            health_db.initialize()
            repository = HealthRepository(health_db, encryptor)
            logger.info(
                "Health data bank initialized: %s (schema v%d)",
                settings.db_path,
                health_db.get_schema_version(),
            )
        except EncryptionError as exc:
            logger.error("Failed to initialize storage: %s", exc)
            logger.warning("Continuing without persistence; signal tools are disabled")
    else:
        logger.info(
            "No ENCRYPTION_KEY configured; running without persistence. "
            "Set ENCRYPTION_KEY to enable the signal tools."
        )

    @server.tool
    def health_check() -> dict:
        """Check server health and return basic status information."""
        return {
            "status": "ok",
            "server": SERVER_NAME,
            "version": SERVER_VERSION,
            "conditions_loaded": len(conditions.conditions),
            "condition_table_version": conditions.version,
            "storage_enabled": repository is not None,
        }

    if repository is not None:
        engine = HealthSignalEngine(repository, settings, condition_table=conditions)
        register_signal_tools(server, engine)
        logger.info("Health signal tools registered")

    return server


# Module-level instance for FastMCP discovery.
# Lazy: only created when this module is loaded directly (not when tests import create_app).
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
