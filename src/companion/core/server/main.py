"""Wellness Companion entry point: ``python -m companion.core.server.main``.

The server holds readings about one person and has no auth layer, so it only
binds to loopback unless ``COMPANION_ALLOW_INSECURE_BIND`` is set.
"""

from __future__ import annotations

import logging
from ipaddress import ip_address
from typing import Any

from companion.core.config.settings import Settings, get_settings
from companion.core.server.app import create_app

logger = logging.getLogger(__name__)


def _is_loopback_host(host: str) -> bool:
    host = host.strip().strip("[]").lower()
    if host == "localhost":
        return True
    try:
        return ip_address(host).is_loopback
    except ValueError:
        return False


def startup_summary(settings: Settings) -> dict[str, Any]:
    """What this process will do with readings, for the startup log."""
    interval = settings.reevaluation_interval_seconds
    quiet = settings.quiet_hours_start != settings.quiet_hours_end
    return {
        "storage": f"sqlite ({settings.db_path})" if settings.encryption_key else "memory",
        "reevaluation": f"every {interval}s" if interval > 0 else "disabled",
        "quiet_hours": (
            f"{settings.quiet_hours_start:02d}:00-{settings.quiet_hours_end:02d}:00"
            if quiet else "off"
        ),
        "insight_retention": settings.insight_retention,
    }


def run() -> None:
    """Start the Wellness Companion MCP server with Streamable HTTP transport."""
    settings = get_settings()
    logging.basicConfig(level=getattr(logging, settings.companion_log_level.upper(), logging.INFO))

    if not _is_loopback_host(settings.companion_host):
        if not settings.companion_allow_insecure_bind:
            raise RuntimeError(
                "Refusing to bind the companion server to a non-loopback host: it has no auth "
                "layer and serves personal health readings. "
                "Set COMPANION_ALLOW_INSECURE_BIND=true to override (unsafe)."
            )
        logger.warning("Binding to non-loopback host %s without authentication",
                       settings.companion_host)

    summary = startup_summary(settings)
    logger.info(
        "Starting Wellness Companion on %s:%d (storage: %s, re-evaluation: %s, quiet hours: %s)",
        settings.companion_host,
        settings.companion_port,
        summary["storage"],
        summary["reevaluation"],
        summary["quiet_hours"],
    )
    if not settings.encryption_key:
        logger.warning("ENCRYPTION_KEY is not set; readings are kept in memory only")

    mcp = create_app()
    mcp.run(
        transport="streamable-http",
        host=settings.companion_host,
        port=settings.companion_port,
    )


if __name__ == "__main__":
    run()
