"""MCP tools for viewing the audit trail.

The trail records tool usage and every caregiver escalation: alert type,
priority and how many caregivers were reached. Readings never appear in it,
only hashed input references.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

if TYPE_CHECKING:
    from companion.core.audit.logger import AuditLogger

logger = logging.getLogger(__name__)


def register_audit_tools(
    mcp: FastMCP,
    audit_logger: AuditLogger,
) -> None:
    """Register audit trail tools on the MCP server."""

    @mcp.tool
    async def escalation_log(
        ctx: Context,
        days: int = 30,
    ) -> str:
        """Review recent caregiver escalations and tool usage.

        Args:
            days: Number of days to look back (default: 30).
        """
        since = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()

        escalations = audit_logger.get_events(action="escalation", since=since, limit=20)
        display = [
            {
                "timestamp": event.get("timestamp"),
                "alert_type": event.get("alert_type"),
                "priority": event.get("priority"),
                "recipients": event.get("recipients"),
                "status": event.get("status"),
            }
            for event in escalations
        ]

        return json.dumps({
            "status": "ok",
            "period_days": days,
            "total_events": audit_logger.count_events(since=since),
            "escalation_count": audit_logger.count_events(action="escalation", since=since),
            "recent_escalations": display,
            "note": "This audit trail contains no readings, only hashed references.",
        }, indent=2)
