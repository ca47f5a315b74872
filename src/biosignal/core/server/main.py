"""Server entry point: ``python -m biosignal.core.server.main``."""

from __future__ import annotations

import logging
from ipaddress import ip_address

from biosignal.core.config.settings import get_settings
from biosignal.core.server.app import SERVER_NAME, create_app


def _is_loopback_host(host: str) -> bool:
    if host == "localhost":
        return True
    try:
        return ip_address(host).is_loopback
    except ValueError:
        return False


def run() -> None:
    """Start the biosignal MCP server with Streamable HTTP transport."""
    settings = get_settings()
    logging.basicConfig(level=getattr(logging, settings.biosignal_log_level.upper(), logging.INFO))

    logger = logging.getLogger(__name__)
    if not settings.biosignal_allow_insecure_bind and not _is_loopback_host(settings.biosignal_host):
        raise RuntimeError(
            "Refusing to bind to a non-loopback host without an auth layer. "
            "Set BIOSIGNAL_ALLOW_INSECURE_BIND=true to override (unsafe)."
        )
    logger.info(
        "Starting %s on %s:%d",
        SERVER_NAME,
        settings.biosignal_host,
        settings.biosignal_port,
    )

    mcp = create_app()
    mcp.run(
        transport="streamable-http",
        host=settings.biosignal_host,
        port=settings.biosignal_port,
    )


if __name__ == "__main__":
    run()
