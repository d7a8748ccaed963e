"""Wellness Companion MCP Server: application factory.

This module provides:
- create_app() for testability (integration tests create fresh server instances)
- Module-level `mcp` variable for FastMCP discovery
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncIterator
from datetime import datetime

from fastmcp import FastMCP

from companion.core.audit.logger import AuditLogger
from companion.core.config.settings import get_settings
from companion.core.storage.backend import MemoryStoreBackend, StoreBackend
from companion.core.storage.database import DatabaseError, WellnessDatabase
from companion.core.storage.encryption import EncryptionError, PayloadCipher
from companion.core.storage.sqlite_backend import SQLiteStoreBackend
from companion.domains.wellness.notifications import LoggingTransport, QuietHoursTransport
from companion.domains.wellness.scheduler import ReevaluationScheduler
from companion.domains.wellness.service import WellnessCompanion
from companion.domains.wellness.store import MetricStore
from companion.domains.wellness.tools.audit_tools import register_audit_tools
from companion.domains.wellness.tools.wellness_tools import register_wellness_tools

logger = logging.getLogger(__name__)


def _local_now() -> datetime:
    return datetime.now().astimezone()


def create_app(
    *,
    companion_override: WellnessCompanion | None = None,
    backend_override: StoreBackend | None = None,
) -> FastMCP:
    """Create and configure the Wellness Companion MCP server.

    This is the main application factory. It:
    1. Opens the encrypted SQLite store, or an in-memory one without a key
    2. Builds the analytics facade over it
    3. Wires the notification transport with the quiet-hours throttle
    4. Attaches the periodic re-evaluation task to the server lifespan
    5. Registers all tools
    """
    settings = get_settings()

    # --- Audit trail and store ---
    database: WellnessDatabase | None = None
    backend: StoreBackend | None = backend_override
    if backend is None and settings.encryption_key:
        try:
            cipher = PayloadCipher(settings.encryption_key)
            database = WellnessDatabase(settings.db_path)
            database.initialize()
            backend = SQLiteStoreBackend(database, cipher)
            logger.info(
                "Wellness store initialized: %s (schema v%d)",
                settings.db_path,
                database.get_schema_version(),
            )
        except (EncryptionError, DatabaseError) as exc:
            logger.error("Failed to initialize storage: %s", exc)
            logger.warning("Continuing with in-memory storage; readings will not persist")
            database = None
    elif backend is None:
        logger.info(
            "No ENCRYPTION_KEY configured, keeping readings in memory. "
            "Set ENCRYPTION_KEY to enable the encrypted wellness store."
        )

    if backend is None:
        backend = MemoryStoreBackend()
    if database is None:
        database = WellnessDatabase(":memory:")
        database.initialize()
    audit_logger = AuditLogger(database)

    # --- Analytics core ---
    if companion_override is not None:
        companion = companion_override
    else:
        transport = QuietHoursTransport(
            LoggingTransport(),
            start_hour=settings.quiet_hours_start,
            end_hour=settings.quiet_hours_end,
            clock=_local_now,
        )
        companion = WellnessCompanion(
            MetricStore(backend),
            transport,
            audit_logger=audit_logger,
            insight_retention=settings.insight_retention,
        )

    scheduler = ReevaluationScheduler(
        companion,
        settings.reevaluation_interval_seconds,
        sample_retention_days=settings.sample_retention_days,
    )

    @contextlib.asynccontextmanager
    async def lifespan(server: FastMCP) -> AsyncIterator[None]:
        scheduler.start()
        try:
            yield
        finally:
            await scheduler.stop()

    # --- Server instance ---
    server = FastMCP(
        "Wellness Companion",
        instructions=(
            "Personal wellness companion. Records health and emotion readings, "
            "reports trends, correlations, goal progress and insights, and "
            "escalates concerning check-ins and vital signs to caregivers."
        ),
        lifespan=lifespan if settings.reevaluation_interval_seconds > 0 else None,
    )

    # --- Register tools ---
    @server.tool
    def health_check() -> dict:
        """Check server health and return basic status information."""
        return {
            "status": "ok",
            "server": "Wellness Companion",
            "version": "0.1.0",
            "storage": "sqlite" if isinstance(backend, SQLiteStoreBackend) else "memory",
            "reevaluation_interval_seconds": settings.reevaluation_interval_seconds,
            "caregivers": len(companion.escalation.caregivers()),
        }

    register_wellness_tools(server, companion, audit_logger, scheduler)
    logger.info("Wellness tools registered")

    register_audit_tools(server, audit_logger)

    return server


# Module-level instance for FastMCP discovery.
# Lazy: only created when this module is loaded directly (not when tests import create_app).
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
