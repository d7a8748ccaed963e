"""Audit logger: escalation and access trail without raw readings.

Every caregiver notification decision and every tool invocation is
recorded in the ``audit_log`` table:

* ``tool_input_hash``: SHA-256 of canonical JSON (no raw readings in logs).
* ``alert_type`` / ``priority`` / ``recipients``: what was escalated, and to
  how many caregivers it was delivered.
"""

from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from companion.core.storage.database import DatabaseError, WellnessDatabase

logger = logging.getLogger(__name__)


def _hash_input(data: Any) -> str:
    """SHA-256 hash of canonical JSON, or empty string if not serializable."""
    try:
        canonical = json.dumps(data, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()
    except (TypeError, ValueError):
        return ""


@dataclass
class AuditEvent:
    """A single audit log entry."""

    action: str                          # 'tool_invocation' | 'escalation' | 'checkin_flagged'
    tool_name: str = ""
    tool_input_hash: str = ""
    alert_type: str | None = None
    priority: str | None = None
    recipients: int = 0
    subject_id: str | None = None        # check-in id, alert id, ...
    duration_ms: float | None = None
    status: str = "success"              # 'success' | 'failure' | 'skipped'
    error_type: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class AuditLogger:
    """Records audit events to the ``audit_log`` SQLite table.

    Writes are committed immediately. A failed write is logged and reported
    as an empty event id; auditing never breaks the caller.

    Usage::

        audit = AuditLogger(db)
        audit.log_escalation(alert_type="vital_signs_critical", priority="critical",
                             recipients=2, subject_id=alert.id)
    """

    def __init__(self, database: WellnessDatabase) -> None:
        self._db = database

    def log_event(self, event: AuditEvent) -> str:
        """Insert an audit event and return its UUID."""
        event_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc).isoformat()
        metadata_json = (
            json.dumps(event.metadata, separators=(",", ":"), default=str)
            if event.metadata
            else None
        )

        try:
            with self._db.lock:
                conn = self._db.connection
                conn.execute(
                    """INSERT INTO audit_log
                       (id, timestamp, action, tool_name, tool_input_hash,
                        alert_type, priority, recipients, subject_id,
                        duration_ms, status, error_type, metadata_json)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        event_id,
                        now,
                        event.action,
                        event.tool_name or None,
                        event.tool_input_hash or None,
                        event.alert_type,
                        event.priority,
                        event.recipients,
                        event.subject_id,
                        event.duration_ms,
                        event.status,
                        event.error_type,
                        metadata_json,
                    ),
                )
                conn.commit()
        except (sqlite3.Error, DatabaseError):
            logger.exception("Failed to write audit event (action=%s)", event.action)
            return ""

        return event_id

    def log_tool_call(
        self,
        tool_name: str,
        tool_input: Any = None,
        *,
        duration_ms: float | None = None,
        status: str = "success",
        error_type: str | None = None,
    ) -> str:
        """Log a tool invocation; the input is hashed, never stored."""
        return self.log_event(AuditEvent(
            action="tool_invocation",
            tool_name=tool_name,
            tool_input_hash=_hash_input(tool_input) if tool_input else "",
            duration_ms=duration_ms,
            status=status,
            error_type=error_type,
        ))

    def log_escalation(
        self,
        *,
        alert_type: str,
        priority: str,
        recipients: int,
        subject_id: str | None = None,
        status: str = "success",
        error_type: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Log a caregiver notification fan-out.

        Args:
            alert_type: Alert category (e.g. 'vital_signs_critical').
            priority: 'low' | 'medium' | 'high' | 'critical'.
            recipients: Number of caregivers the alert was delivered to.
            subject_id: Alert or check-in id.
            status: 'success', 'failure' (queued for retry) or 'skipped'.
        """
        return self.log_event(AuditEvent(
            action="escalation",
            alert_type=alert_type,
            priority=priority,
            recipients=recipients,
            subject_id=subject_id,
            status=status,
            error_type=error_type,
            metadata=metadata or {},
        ))

    def get_events(
        self,
        *,
        action: str | None = None,
        since: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Query audit events, newest first."""
        conditions: list[str] = []
        params: list[Any] = []

        if action:
            conditions.append("action = ?")
            params.append(action)
        if since:
            conditions.append("timestamp >= ?")
            params.append(since)

        where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
        query = f"SELECT * FROM audit_log{where} ORDER BY timestamp DESC LIMIT ?"
        params.append(limit)

        with self._db.lock:
            rows = self._db.connection.execute(query, params).fetchall()
        return [dict(row) for row in rows]

    def count_events(self, *, action: str | None = None, since: str | None = None) -> int:
        """Count audit events, optionally of one action type or since a timestamp."""
        conditions: list[str] = []
        params: list[Any] = []
        if action:
            conditions.append("action = ?")
            params.append(action)
        if since:
            conditions.append("timestamp >= ?")
            params.append(since)

        where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
        with self._db.lock:
            row = self._db.connection.execute(
                f"SELECT COUNT(*) FROM audit_log{where}", params
            ).fetchone()
        return row[0]
